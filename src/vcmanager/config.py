"""Operator settings read from the environment."""

import os

from pydantic import BaseModel, Field, ValidationError, field_validator

from vcmanager.errors import ConfigError

ENV_VARS = {
    "log_level": "LOG_LEVEL",
    "worker_limit": "WORKER_LIMIT",
    "posting_enabled": "POSTING_ENABLED",
    "server_timeout": "SERVER_TIMEOUT",
    "manage_crds": "MANAGE_CRDS",
    "generate_crd_files": "GENERATE_CRD_FILES",
    "resync_period": "RESYNC_PERIOD",
    "backoff_base": "BACKOFF_BASE",
    "backoff_max": "BACKOFF_MAX",
    "error_retry_threshold": "ERROR_RETRY_THRESHOLD",
    "pki_expire_days": "PKI_EXPIRE_DAYS",
    "gate_on_readiness": "GATE_ON_READINESS",
    "field_manager": "FIELD_MANAGER",
}


class OperatorConfig(BaseModel):
    """Runtime settings for the operator and its reconcile workers."""

    log_level: str = "INFO"
    worker_limit: int = Field(default=5, ge=1)
    posting_enabled: bool = False
    server_timeout: int = Field(default=60, ge=1)
    manage_crds: bool = True
    generate_crd_files: bool = False
    resync_period: float = Field(default=300.0, gt=0)
    backoff_base: float = Field(default=1.0, gt=0)
    backoff_max: float = Field(default=300.0, gt=0)
    error_retry_threshold: int = Field(default=5, ge=1)
    pki_expire_days: int = Field(default=365, ge=1)
    gate_on_readiness: bool = True
    field_manager: str = "vcmanager"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value):
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value}")
        return value

    @classmethod
    def from_env(cls, environ=None):
        """Build settings from environment variables, ignoring unset ones."""
        environ = os.environ if environ is None else environ
        values = {
            field: environ[var]
            for field, var in ENV_VARS.items()
            if environ.get(var) not in (None, "")
        }
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid operator configuration: {e}") from e
