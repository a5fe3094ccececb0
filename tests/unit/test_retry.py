"""
Unit tests for retry_call and wait_for_state.
"""
import pytest

from shared.retry import RetryPolicy, retry_call, wait_for_state


class FlakyOperation:
    """Fails `failures` times, then returns 'ok'."""

    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"attempt {self.calls} failed")
        return 'ok'


class OffAfter:
    """Reports 'running' until the nth poll, then 'off'."""

    def __init__(self, n):
        self.n = n
        self.polls = 0

    def __call__(self):
        self.polls += 1
        return 'off' if self.polls >= self.n else 'running'


class TestRetryPolicy:

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay == 2.0

    def test_budget(self):
        assert RetryPolicy(30, 5).budget == 145
        assert RetryPolicy(1, 5).budget == 0


class TestRetryCall:
    """Tests for retry_call."""

    def test_succeeds_first_try(self):
        op = FlakyOperation(0)
        sleeps = []
        assert retry_call(op, RetryPolicy(3, 2), sleep=sleeps.append) == 'ok'
        assert op.calls == 1
        assert sleeps == []

    def test_succeeds_after_failures(self):
        op = FlakyOperation(2)
        sleeps = []
        assert retry_call(op, RetryPolicy(3, 2), sleep=sleeps.append) == 'ok'
        assert op.calls == 3
        assert sleeps == [2, 2]

    def test_raises_last_error(self):
        op = FlakyOperation(5)
        with pytest.raises(ConnectionError, match="attempt 3"):
            retry_call(op, RetryPolicy(3, 0), sleep=lambda s: None)
        assert op.calls == 3

    def test_unlisted_error_not_retried(self):
        op = FlakyOperation(1, error=KeyError)
        with pytest.raises(KeyError):
            retry_call(op, RetryPolicy(3, 0), retry_on=(ConnectionError,), sleep=lambda s: None)
        assert op.calls == 1

    def test_zero_attempts_still_calls_once(self):
        op = FlakyOperation(0)
        assert retry_call(op, RetryPolicy(0, 2), sleep=lambda s: None) == 'ok'
        assert op.calls == 1

    def test_logs_each_failed_attempt(self, caplog):
        op = FlakyOperation(2)
        with caplog.at_level('WARNING', logger='shared.retry'):
            retry_call(op, RetryPolicy(3, 0), description="delete record", sleep=lambda s: None)
        messages = [r.getMessage() for r in caplog.records]
        assert messages == [
            "delete record failed (attempt 1/3): attempt 1 failed",
            "delete record failed (attempt 2/3): attempt 2 failed",
        ]


class TestWaitForState:
    """Tests for the convergence loop."""

    def test_reached_when_bound_exceeds_n(self):
        poll = OffAfter(3)
        reached, observed = wait_for_state(poll, lambda s: s == 'off', RetryPolicy(5, 0), sleep=lambda s: None)
        assert reached is True
        assert observed == 'off'
        assert poll.polls == 3

    def test_not_reached_when_bound_below_n(self):
        """Hitting the bound returns reached=False instead of raising."""
        poll = OffAfter(5)
        reached, observed = wait_for_state(poll, lambda s: s == 'off', RetryPolicy(3, 0), sleep=lambda s: None)
        assert reached is False
        assert observed == 'running'
        assert poll.polls == 3

    def test_fixed_interval(self):
        sleeps = []
        wait_for_state(OffAfter(10), lambda s: s == 'off', RetryPolicy(4, 5), sleep=sleeps.append)
        assert sleeps == [5, 5, 5]

    def test_tolerated_errors_count_as_attempts(self):
        calls = []

        def poll():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionError("blip")
            return 'off'

        reached, observed = wait_for_state(
            poll, lambda s: s == 'off', RetryPolicy(3, 0),
            tolerate=(ConnectionError,), sleep=lambda s: None
        )
        assert reached is True
        assert len(calls) == 2

    def test_failed_final_poll_observes_nothing(self):
        """A stale earlier observation is not reported once the last poll fails."""
        calls = []

        def poll():
            calls.append(1)
            if len(calls) == 1:
                return 'running'
            raise ConnectionError("blip")

        reached, observed = wait_for_state(
            poll, lambda s: s == 'off', RetryPolicy(3, 0),
            tolerate=(ConnectionError,), sleep=lambda s: None
        )
        assert reached is False
        assert observed is None
        assert len(calls) == 3

    def test_untolerated_errors_propagate(self):
        def poll():
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            wait_for_state(poll, lambda s: True, RetryPolicy(3, 0), sleep=lambda s: None)
