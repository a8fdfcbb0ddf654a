"""CRD management system for the VirtualCluster operator."""

from .registry import CRDRegistry
from .base import CRDCondition, CRDSpec, CRDStatus

__all__ = ["CRDRegistry", "CRDCondition", "CRDSpec", "CRDStatus"]
