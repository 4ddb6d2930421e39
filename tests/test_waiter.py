"""Unit tests for lib/waiter.py.

Tests the convergence poller: success, timeout, permission short-circuit.
"""

from unittest.mock import Mock, patch

import pytest

from lib.exceptions import (
    APIError,
    ErrorKind,
    NotReadyError,
    OperationCancelledError,
    PermissionDeniedError,
    PollTimeoutError,
    ValidationError,
    VerificationError,
)
from lib.utils import CancellationToken
from lib.waiter import ConvergencePoller, PollSpec, poll_until


@pytest.mark.unit
class TestPollSpec:
    """Tests for PollSpec validation."""

    def test_from_minutes(self):
        spec = PollSpec.from_minutes(30, 5)
        assert spec.timeout == 1800
        assert spec.interval == 5

    @pytest.mark.parametrize("interval", [0, -1])
    def test_interval_must_be_positive(self, interval):
        with pytest.raises(ValidationError):
            PollSpec(timeout=10, interval=interval)

    def test_interval_shorter_than_timeout(self):
        with pytest.raises(ValidationError):
            PollSpec(timeout=5, interval=5)


@pytest.mark.unit
class TestConvergencePoller:
    """Tests for ConvergencePoller.poll."""

    @patch("lib.waiter.time")
    def test_success_immediate(self, mock_time):
        mock_time.time.return_value = 0

        result = poll_until("deployment", lambda: {"ready": True}, PollSpec(60, 5))

        assert result == {"ready": True}
        mock_time.sleep.assert_not_called()

    @patch("lib.waiter.time")
    def test_success_after_retry(self, mock_time):
        # time.time() calls:
        # 1. start_time = 0
        # 2. loop 1 elapsed = 5
        mock_time.time.side_effect = [0, 5]
        check = Mock(side_effect=[NotReadyError("not yet"), "done"])

        result = poll_until("configMap", check, PollSpec(60, 5))

        assert result == "done"
        assert check.call_count == 2
        mock_time.sleep.assert_called_once_with(5)

    @patch("lib.waiter.time")
    def test_timeout(self, mock_time):
        # start, loop 1 elapsed 30, loop 2 elapsed 61
        mock_time.time.side_effect = [0, 30, 61]
        check = Mock(side_effect=NotReadyError("still missing"))

        with pytest.raises(PollTimeoutError) as exc_info:
            poll_until("roleBinding", check, PollSpec(60, 30))

        assert check.call_count == 2
        assert mock_time.sleep.call_count == 1
        assert "Failed to get roleBinding before timeout" in str(exc_info.value)
        assert "still missing" in str(exc_info.value)

    @patch("lib.waiter.time")
    def test_transient_api_error_keeps_polling(self, mock_time):
        mock_time.time.side_effect = [0, 1]
        check = Mock(side_effect=[APIError("server error", kind=ErrorKind.SERVER, status=500), "ok"])

        assert poll_until("csv", check, PollSpec(60, 5)) == "ok"

    @pytest.mark.parametrize("status", [401, 403])
    @patch("lib.waiter.time")
    def test_forbidden_fails_without_waiting(self, mock_time, status):
        mock_time.time.return_value = 0
        forbidden = APIError("forbidden", kind=ErrorKind.from_status(status), status=status)
        check = Mock(side_effect=forbidden)

        with pytest.raises(PermissionDeniedError) as exc_info:
            poll_until("clusterRoleBinding", check, PollSpec(600, 5))

        assert exc_info.value.__cause__ is forbidden
        assert check.call_count == 1
        mock_time.sleep.assert_not_called()

    @patch("lib.waiter.time")
    def test_fatal_error_propagates(self, mock_time):
        mock_time.time.return_value = 0
        check = Mock(side_effect=VerificationError("mismatch"))

        with pytest.raises(VerificationError):
            poll_until("thing", check, PollSpec(600, 5))

        mock_time.sleep.assert_not_called()

    @patch("lib.waiter.time")
    def test_cancelled_token_stops_poll(self, mock_time):
        mock_time.time.return_value = 0
        token = CancellationToken()
        token.cancel()
        check = Mock()

        with pytest.raises(OperationCancelledError):
            ConvergencePoller(PollSpec(60, 5), token).poll("thing", check)

        check.assert_not_called()


class FakeClock:
    """Stands in for the time module; sleeping advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.unit
class TestConvergenceBounds:
    """Tests for when the poller notices success and when it gives up."""

    @pytest.mark.parametrize("ready_at", [1, 29, 30, 31, 95, 570])
    def test_success_observed_within_one_interval(self, ready_at):
        clock = FakeClock()

        def check():
            if clock.now < ready_at:
                raise NotReadyError(f"not ready at {clock.now}")
            return clock.now

        with patch("lib.waiter.time", clock):
            observed_at = poll_until("addon", check, PollSpec(600, 30))

        assert ready_at <= observed_at <= ready_at + 30

    @patch("lib.waiter.time")
    def test_elapsed_equal_to_timeout_fails(self, mock_time):
        mock_time.time.side_effect = [0, 60]
        check = Mock(side_effect=NotReadyError("still missing"))

        with pytest.raises(PollTimeoutError):
            poll_until("subscription", check, PollSpec(60, 30))

        assert check.call_count == 1
        mock_time.sleep.assert_not_called()

    @patch("lib.waiter.time")
    def test_elapsed_just_below_timeout_polls_again(self, mock_time):
        mock_time.time.side_effect = [0, 59.9, 60]
        check = Mock(side_effect=NotReadyError("still missing"))

        with pytest.raises(PollTimeoutError):
            poll_until("subscription", check, PollSpec(60, 30))

        assert check.call_count == 2
        mock_time.sleep.assert_called_once_with(30)

    def test_never_ready_gives_up_at_timeout(self):
        clock = FakeClock()
        check = Mock(side_effect=NotReadyError("still missing"))

        with patch("lib.waiter.time", clock):
            with pytest.raises(PollTimeoutError):
                poll_until("csv", check, PollSpec(120, 30))

        assert clock.now == 120
        assert check.call_count == 5
        assert clock.sleeps == [30, 30, 30, 30]
