"""Tests for the rate-limited retry executor."""

from __future__ import annotations

import pytest

from pure_ingest.config import RetryConfig
from pure_ingest.errors import RetryExhaustedError
from pure_ingest.ingestion.retry import RetryPolicy, with_retry_and_rate_limit


class FlakyOperation:
    """Fails ``failures`` times, then returns ``result``."""

    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return self.result


@pytest.fixture
def sleeps() -> list[float]:
    return []


class TestWaitSequence:
    def test_success_first_try_only_waits_rate_limit_delay(self, sleeps):
        op = FlakyOperation(failures=0)
        policy = RetryPolicy(max_retries=10, initial_backoff=6.0, rate_limit_delay=6.0)

        assert with_retry_and_rate_limit(op, policy, "ctx", sleep=sleeps.append) == "ok"
        assert op.calls == 1
        assert sleeps == [6.0]

    def test_backoff_doubles_after_each_failure(self, sleeps):
        op = FlakyOperation(failures=3)
        policy = RetryPolicy(max_retries=10, initial_backoff=6.0, rate_limit_delay=6.0)

        with_retry_and_rate_limit(op, policy, "ctx", sleep=sleeps.append)

        assert op.calls == 4
        assert sleeps == [6.0, 6.0, 12.0, 24.0]

    def test_delay_and_backoff_are_independent(self, sleeps):
        op = FlakyOperation(failures=2)
        policy = RetryPolicy(max_retries=5, initial_backoff=1.5, rate_limit_delay=0.5)

        with_retry_and_rate_limit(op, policy, "ctx", sleep=sleeps.append)

        assert sleeps == [0.5, 1.5, 3.0]


class TestExhaustion:
    def test_attempts_are_max_retries_plus_one(self, sleeps):
        op = FlakyOperation(failures=100)
        policy = RetryPolicy(max_retries=3, initial_backoff=1.0, rate_limit_delay=2.0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            with_retry_and_rate_limit(op, policy, "Fetch things", sleep=sleeps.append)

        assert op.calls == 4
        assert sleeps == [2.0, 1.0, 2.0, 4.0]
        assert exc_info.value.attempts == 4
        assert exc_info.value.context == "Fetch things"

    def test_error_chains_last_failure(self):
        op = FlakyOperation(failures=100)
        policy = RetryPolicy(max_retries=1, initial_backoff=0, rate_limit_delay=0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            with_retry_and_rate_limit(op, policy, "ctx", sleep=lambda _s: None)

        assert str(exc_info.value.last_error) == "failure 2"
        assert exc_info.value.__cause__ is exc_info.value.last_error

    def test_zero_retries_means_single_attempt(self, sleeps):
        op = FlakyOperation(failures=1)
        policy = RetryPolicy(max_retries=0, initial_backoff=5.0, rate_limit_delay=1.0)

        with pytest.raises(RetryExhaustedError):
            with_retry_and_rate_limit(op, policy, "ctx", sleep=sleeps.append)

        assert op.calls == 1
        assert sleeps == [1.0]

    def test_success_on_last_allowed_attempt(self):
        op = FlakyOperation(failures=2, result="late")
        policy = RetryPolicy(max_retries=2, initial_backoff=0, rate_limit_delay=0)

        assert with_retry_and_rate_limit(op, policy, "ctx", sleep=lambda _s: None) == "late"
        assert op.calls == 3


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert (policy.max_retries, policy.initial_backoff, policy.rate_limit_delay) == (10, 6.0, 6.0)

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            RetryConfig(max_retries=4, initial_backoff_seconds=2.5, rate_limit_delay_seconds=1.0)
        )
        assert policy == RetryPolicy(max_retries=4, initial_backoff=2.5, rate_limit_delay=1.0)
