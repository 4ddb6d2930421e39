"""Generic wait/poll utilities for cluster convergence checks."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from lib.exceptions import (
    APIError,
    FatalError,
    LifecycleError,
    PermissionDeniedError,
    PollTimeoutError,
    ValidationError,
)
from lib.utils import CancellationToken, format_duration

logger = logging.getLogger("osd_lifecycle")

T = TypeVar("T")

CheckFn = Callable[[], T]


@dataclass(frozen=True)
class PollSpec:
    """Total time budget and spacing of a polling loop, in seconds."""

    timeout: float
    interval: float

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValidationError(f"Poll interval must be positive, got {self.interval}")
        if self.interval >= self.timeout:
            raise ValidationError(f"Poll interval ({self.interval}s) must be shorter than timeout ({self.timeout}s)")

    @classmethod
    def from_minutes(cls, timeout_minutes: float, interval: float) -> "PollSpec":
        return cls(timeout=timeout_minutes * 60, interval=interval)


def _is_permission_error(error: BaseException) -> bool:
    if isinstance(error, PermissionDeniedError):
        return True
    return isinstance(error, APIError) and error.is_forbidden


class ConvergencePoller:
    """Repeats a check until it succeeds, is refused, or runs out of time.

    A check signals "not yet" by raising any ``LifecycleError`` that is not
    fatal. Permission errors end the poll at once; other fatal errors
    (cancellation included) propagate unchanged.
    """

    def __init__(self, spec: PollSpec, cancel_token: Optional[CancellationToken] = None) -> None:
        self.spec = spec
        self.cancel_token = cancel_token

    def _sleep(self, seconds: float) -> None:
        if self.cancel_token is not None:
            self.cancel_token.sleep(seconds)
        else:
            time.sleep(seconds)

    def poll(self, description: str, check: CheckFn) -> T:
        """Run ``check`` until it returns, then return its value.

        Raises:
            PermissionDeniedError: The check was refused access
            PollTimeoutError: The check kept failing for the whole timeout
        """
        start_time = time.time()
        logger.debug("Polling for %s (timeout: %s)", description, format_duration(self.spec.timeout))

        while True:
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()

            try:
                result = check()
            except LifecycleError as e:
                if _is_permission_error(e):
                    logger.error("Access denied while waiting for %s: %s", description, e)
                    raise PermissionDeniedError(f"Access denied while waiting for {description}: {e}") from e
                if isinstance(e, FatalError):
                    raise
                last_error: Optional[LifecycleError] = e
            else:
                logger.debug("%s complete", description)
                return result

            elapsed = time.time() - start_time
            if elapsed >= self.spec.timeout:
                logger.warning("%s not complete after %s timeout", description, format_duration(self.spec.timeout))
                raise PollTimeoutError(
                    f"Failed to get {description} before timeout ({format_duration(self.spec.timeout)}): {last_error}"
                ) from last_error

            logger.info(
                "Waiting %s for %s (%s)",
                format_duration(self.spec.timeout - elapsed),
                description,
                last_error,
            )
            self._sleep(self.spec.interval)


def poll_until(
    description: str,
    check: CheckFn,
    spec: PollSpec,
    cancel_token: Optional[CancellationToken] = None,
) -> T:
    """Shortcut for a one-off ``ConvergencePoller(spec).poll(...)``."""
    return ConvergencePoller(spec, cancel_token).poll(description, check)
