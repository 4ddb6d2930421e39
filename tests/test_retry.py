"""Unit tests for lib/retry.py.

Tests bounded retry of provider calls, fatal error short-circuit and cancellation.
"""

from unittest.mock import Mock

import pytest

from lib.exceptions import (
    BuildError,
    OperationCancelledError,
    ProviderError,
    RetryExhaustedError,
    TransportError,
    ValidationError,
)
from lib.retry import RetryExecutor, RetryPolicy
from lib.utils import CancellationToken


@pytest.fixture
def no_sleep():
    return Mock()


def _executor(attempts, sleep, **kwargs):
    return RetryExecutor(RetryPolicy(attempts=attempts, delay=0), sleep=sleep, **kwargs)


@pytest.mark.unit
class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.attempts == 5
        assert policy.delay == 2

    @pytest.mark.parametrize("attempts", [0, -1])
    def test_attempts_must_be_positive(self, attempts):
        with pytest.raises(ValidationError):
            RetryPolicy(attempts=attempts)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValidationError):
            RetryPolicy(delay=-1)


@pytest.mark.unit
class TestRetryExecutor:
    """Tests for RetryExecutor.run."""

    def test_success_first_attempt(self, no_sleep):
        operation = Mock(return_value="ok")

        assert _executor(3, no_sleep).run(operation, "op") == "ok"
        assert operation.call_count == 1
        no_sleep.assert_not_called()

    def test_succeeds_on_last_attempt(self, no_sleep):
        """N-1 failures followed by success use exactly N attempts."""
        operation = Mock(
            side_effect=[
                TransportError("connection reset"),
                ProviderError("status 500"),
                TransportError("timeout"),
                {"id": "abc"},
            ]
        )

        result = _executor(4, no_sleep).run(operation, "create cluster")

        assert result == {"id": "abc"}
        assert operation.call_count == 4
        assert no_sleep.call_count == 3

    def test_exhausted_after_exactly_n_attempts(self, no_sleep):
        last = ProviderError("status 503")
        operation = Mock(side_effect=[TransportError("t1"), TransportError("t2"), last])

        with pytest.raises(RetryExhaustedError) as exc_info:
            _executor(3, no_sleep).run(operation, "delete cluster")

        assert operation.call_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert exc_info.value.__cause__ is last
        assert "delete cluster" in str(exc_info.value)

    def test_single_attempt_policy(self, no_sleep):
        operation = Mock(side_effect=TransportError("down"))

        with pytest.raises(RetryExhaustedError):
            _executor(1, no_sleep).run(operation)

        assert operation.call_count == 1
        no_sleep.assert_not_called()

    def test_fatal_error_not_retried(self, no_sleep):
        operation = Mock(side_effect=BuildError("bad request body"))

        with pytest.raises(BuildError):
            _executor(5, no_sleep).run(operation)

        assert operation.call_count == 1

    @pytest.mark.parametrize("error", [KeyError("items"), TypeError("bad operand"), AttributeError("no attr")])
    def test_programming_error_propagates_unwrapped(self, no_sleep, error):
        operation = Mock(side_effect=error)

        with pytest.raises(type(error)) as exc_info:
            _executor(5, no_sleep).run(operation)

        assert exc_info.value is error
        assert operation.call_count == 1
        no_sleep.assert_not_called()

    def test_failures_logged_as_warnings(self, no_sleep, caplog):
        operation = Mock(side_effect=[TransportError("flaky"), "ok"])

        with caplog.at_level("WARNING", logger="osd_lifecycle"):
            _executor(3, no_sleep).run(operation, "list regions")

        assert "list regions failed (attempt 1/3): flaky" in caplog.text

    def test_cancelled_before_start(self, no_sleep):
        token = CancellationToken()
        token.cancel()
        operation = Mock()

        with pytest.raises(OperationCancelledError):
            _executor(3, no_sleep, cancel_token=token).run(operation)

        operation.assert_not_called()

    def test_cancel_interrupts_wait(self):
        token = CancellationToken()

        def operation():
            token.cancel()
            raise TransportError("unreachable")

        executor = RetryExecutor(RetryPolicy(attempts=5, delay=60), cancel_token=token)

        with pytest.raises(OperationCancelledError):
            executor.run(operation)
