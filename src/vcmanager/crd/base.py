"""Base classes for CRD specifications."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


class CRDCondition(BaseModel):
    """Kubernetes-style status condition."""

    type: str
    status: str  # True, False, Unknown
    reason: str
    message: str
    lastTransitionTime: Optional[datetime] = None

    @classmethod
    def build(cls, type, status, reason, message=""):
        if isinstance(status, bool):
            status = "True" if status else "False"
        return cls(
            type=type,
            status=status,
            reason=reason,
            message=message,
            lastTransitionTime=datetime.now(timezone.utc).replace(microsecond=0),
        )


class CRDStatus(BaseModel):
    """Base class for all CRD status objects."""

    phase: Optional[str] = None
    conditions: List[CRDCondition] = Field(default_factory=list)
    observedGeneration: Optional[int] = None

    class Config:
        extra = "allow"

    def get_condition(self, type):
        return next((c for c in self.conditions if c.type == type), None)

    def set_condition(self, condition):
        """Insert or replace a condition, keeping the transition time when status is unchanged."""
        existing = self.get_condition(condition.type)
        if existing is None:
            self.conditions.append(condition)
            return True
        if (existing.status, existing.reason, existing.message) == (
            condition.status,
            condition.reason,
            condition.message,
        ):
            return False
        if existing.status == condition.status:
            condition.lastTransitionTime = existing.lastTransitionTime
        self.conditions[self.conditions.index(existing)] = condition
        return True


class CRDSpec(BaseModel):
    """Base class for all CRD spec objects."""

    class Config:
        extra = "forbid"
        validate_assignment = True
