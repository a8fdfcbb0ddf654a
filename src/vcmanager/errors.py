"""Error taxonomy for VirtualCluster reconciliation.

Each class maps to one retry policy in the controller:

- ``TransientError``: retried with exponential backoff, never terminal.
- ``ConfigurationError``: retried with backoff, phase moves to Error once
  the retry threshold is exceeded.
- ``InvariantViolation``: phase moves to Error immediately, no requeue.
"""


class VCManagerError(Exception):
    """Base exception for the operator."""

    def __init__(self, message, kind=None, namespace=None, name=None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name

    def __str__(self):
        if self.kind and self.name:
            loc = f"{self.kind}/{self.name}"
            if self.namespace:
                loc = f"{self.namespace}/{loc}"
            return f"{self.message} [{loc}]"
        return self.message


class ConfigError(VCManagerError):
    """Invalid operator settings."""


class TransientError(VCManagerError):
    """Conflicts, rate limits, timeouts and server-side failures."""

    def __init__(self, message, status=None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class HostAPIError(VCManagerError):
    """Non-retryable response from the host API server."""

    def __init__(self, message, status=None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class ConfigurationError(VCManagerError):
    """The VirtualCluster or its ClusterVersion cannot be turned into objects."""

    reason = "ConfigurationError"


class ClusterVersionNotFound(ConfigurationError):
    reason = "ClusterVersionNotFound"

    def __init__(self, name):
        super().__init__(
            f"ClusterVersion '{name}' not found", kind="ClusterVersion", name=name
        )


class MalformedTemplate(ConfigurationError):
    reason = "MalformedTemplate"


class InvariantViolation(VCManagerError):
    """State that only an operator can repair."""

    reason = "InvariantViolation"


class NamespaceCollision(InvariantViolation):
    reason = "NamespaceCollision"

    def __init__(self, namespace, owner_uid):
        super().__init__(
            f"Namespace '{namespace}' is owned by another VirtualCluster ({owner_uid})",
            kind="Namespace",
            name=namespace,
        )
        self.owner_uid = owner_uid


class PKIError(VCManagerError):
    """Certificate issuance failed."""
