"""Bounded retry execution for provider API calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from lib.constants import PROVIDER_RETRY_ATTEMPTS, PROVIDER_RETRY_DELAY
from lib.exceptions import RetryExhaustedError, TransientError, ValidationError
from lib.utils import CancellationToken

logger = logging.getLogger("osd_lifecycle")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an operation and how long to wait in between."""

    attempts: int = PROVIDER_RETRY_ATTEMPTS
    delay: float = PROVIDER_RETRY_DELAY
    backoff: bool = False
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValidationError(f"Retry attempts must be at least 1, got {self.attempts}")
        if self.delay < 0:
            raise ValidationError(f"Retry delay cannot be negative, got {self.delay}")

    def wait_strategy(self):
        if self.backoff:
            return wait_exponential(multiplier=self.delay, min=self.delay, max=self.max_delay)
        return wait_fixed(self.delay)


class RetryExecutor:
    """Runs an operation until it succeeds, fails permanently, or runs out of attempts."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.cancel_token = cancel_token
        if sleep is not None:
            self._sleep = sleep
        elif cancel_token is not None:
            self._sleep = cancel_token.sleep
        else:
            self._sleep = time.sleep

    def run(self, operation: Callable[[], T], description: str = "operation") -> T:
        """Execute ``operation`` under the retry policy.

        Raises:
            Exception: Anything other than a TransientError, re-raised without retrying
            RetryExhaustedError: When every attempt failed
        """

        def _log_failure(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "%s failed (attempt %s/%s): %s",
                description,
                retry_state.attempt_number,
                self.policy.attempts,
                exc,
            )

        retrying = Retrying(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(self.policy.attempts),
            wait=self.policy.wait_strategy(),
            sleep=self._sleep,
            after=_log_failure,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=False,
        )

        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

        try:
            return retrying(operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetryExhaustedError(description, self.policy.attempts, last_error) from last_error
