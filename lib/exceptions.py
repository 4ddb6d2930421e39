"""
Custom exceptions for OSD cluster lifecycle automation.
"""

from enum import Enum
from typing import Optional


class LifecycleError(Exception):
    """Base class for all lifecycle errors."""


class TransientError(LifecycleError):
    """
    Error that might be resolved by retrying.
    Examples: Network timeouts, 503 Service Unavailable, a resource not created yet.
    """


class FatalError(LifecycleError):
    """
    Error that cannot be resolved by retrying.
    Examples: Malformed request, missing permissions, exhausted poll budget.
    """


class ErrorKind(Enum):
    """Classification attached to every API error."""

    TRANSPORT = "transport"
    PROVIDER = "provider"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    SERVER = "server"

    @classmethod
    def from_status(cls, status: Optional[int]) -> "ErrorKind":
        """Map an HTTP status code to an error kind."""
        if status is None:
            return cls.TRANSPORT
        if status in (401, 403):
            return cls.FORBIDDEN
        if status == 404:
            return cls.NOT_FOUND
        if status == 409:
            return cls.CONFLICT
        if status >= 500:
            return cls.SERVER
        return cls.PROVIDER


class APIError(TransientError):
    """Failure reported by the provider API or the cluster API."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER,
        status: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.reason = reason

    @property
    def is_forbidden(self) -> bool:
        return self.kind is ErrorKind.FORBIDDEN

    @property
    def is_not_found(self) -> bool:
        return self.kind is ErrorKind.NOT_FOUND


class TransportError(APIError):
    """Network or serialization failure while calling an API."""

    def __init__(self, message: str) -> None:
        super().__init__(message, kind=ErrorKind.TRANSPORT)


class ProviderError(APIError):
    """The provider answered, but flagged the request as failed."""


class NotReadyError(TransientError):
    """A convergence check has not been satisfied yet."""


class ValidationError(FatalError):
    """Invalid input value."""


class ConfigurationError(FatalError):
    """Invalid configuration or arguments."""


class BuildError(FatalError):
    """A provider request could not be constructed."""


class VerificationError(FatalError):
    """A write was accepted but the re-read state does not match it."""


class MalformedResponseError(FatalError):
    """A provider record holds a value that cannot be interpreted."""


class PermissionDeniedError(FatalError):
    """Access to a resource was refused."""


class PollTimeoutError(FatalError):
    """A convergence check did not succeed within its time budget."""


class OperationCancelledError(FatalError):
    """A wait was interrupted by a cancellation request."""


class RetryExhaustedError(FatalError):
    """An operation kept failing for every allowed attempt."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(f"{message} (after {attempts} attempts): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class UpgradeStepError(FatalError):
    """A step of the operator upgrade workflow failed."""

    def __init__(self, step: str, version: str, cause: BaseException) -> None:
        super().__init__(f"Operator upgrade step '{step}' failed for {version}: {cause}")
        self.step = step
        self.version = version


class SecurityValidationError(ValidationError):
    """Input rejected because it could escape its intended location."""
