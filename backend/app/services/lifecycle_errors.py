"""Error taxonomy for lifecycle actions, scans and schedule management."""

from typing import Any


class LifecycleError(Exception):
    """Base lifecycle error with a stable machine-readable code."""

    code = "LIFECYCLE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Facts about partial progress, copied into the failed outcome
        self.details: dict[str, Any] = {}


class CredentialsMissing(LifecycleError):
    """No usable provider credentials resolve for the owner."""

    code = "NO_AWS_CREDENTIALS"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "AWS credentials not configured. Please configure your AWS credentials "
            "in Settings before scheduling resource actions."
        )


class NoCredentials(CredentialsMissing):
    """Raised by user-facing operations before anything is persisted."""


class ResourceNotFound(LifecycleError):
    """The external resource does not exist (or no longer exists)."""

    code = "RESOURCE_NOT_FOUND"


class InvalidState(LifecycleError):
    """The resource or record is not in a state that allows the transition."""

    code = "INVALID_STATE"


class Unauthorized(LifecycleError):
    """The provider credentials lack permission for the operation."""

    code = "UNAUTHORIZED"


class ProviderError(LifecycleError):
    """Opaque upstream failure; keeps the provider's native error code."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, provider_code: str | None = None) -> None:
        super().__init__(message)
        self.provider_code = provider_code


class ResizeTimedOut(LifecycleError):
    """The instance did not converge to the expected state in time."""

    code = "RESIZE_TIMED_OUT"


class NotFoundOrUnauthorized(LifecycleError):
    """Record is missing or belongs to another owner (deliberately indistinguishable)."""

    code = "NOT_FOUND_OR_UNAUTHORIZED"


class HighRiskRequiresForce(LifecycleError):
    """Cleanup of a high-risk orphan needs an explicit force flag."""

    code = "HIGH_RISK_REQUIRES_FORCE"

    def __init__(self, resource_id: str) -> None:
        super().__init__(
            f"High-risk resource {resource_id} requires force flag for cleanup"
        )
        self.resource_id = resource_id
