"""Tests for the store retry helper."""

import asyncio

import pytest

from shared.domain.exceptions import ErrorCode, InvariantViolationError, StoreUnavailableError
from shared.resilience.retry import RetryConfig, run_with_retry


class FlakyUnit:
    def __init__(self, failures, error=StoreUnavailableError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error("flaky")
        return "done"


def test_retries_until_success():
    unit = FlakyUnit(failures=2)

    result = asyncio.run(run_with_retry(unit, "test", RetryConfig(attempts=3, base_delay=0)))

    assert result == "done"
    assert unit.calls == 3


def test_gives_up_after_last_attempt():
    unit = FlakyUnit(failures=5)

    with pytest.raises(StoreUnavailableError) as exc_info:
        asyncio.run(run_with_retry(unit, "test", RetryConfig(attempts=2, base_delay=0)))

    assert unit.calls == 2
    assert exc_info.value.retryable
    assert exc_info.value.to_dict()["error"] == ErrorCode.STORE_UNAVAILABLE.value


def test_invariant_violations_are_not_retried():
    unit = FlakyUnit(failures=1, error=InvariantViolationError)

    with pytest.raises(InvariantViolationError):
        asyncio.run(run_with_retry(unit, "test", RetryConfig(attempts=3, base_delay=0)))

    assert unit.calls == 1
