"""Unit tests for bounded retry/backoff behavior."""

from __future__ import annotations

import httpx
import pytest

from curriculum_import.infrastructure.drive.errors import DriveRateLimitError
from curriculum_import.infrastructure.retry import (
    RetryExecutor,
    RetryExhaustedError,
    RetryPolicy,
    is_retryable_remote_error,
)


def test_retry_executor_retries_timeout_then_succeeds() -> None:
    attempts = {"count": 0}
    sleep_calls: list[float] = []

    def operation() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise httpx.ReadTimeout("timed out")
        return "ok"

    executor = RetryExecutor(
        RetryPolicy(
            max_attempts=4,
            base_delay_seconds=0.1,
            max_delay_seconds=1.0,
            backoff_multiplier=2.0,
        ),
        sleep=sleep_calls.append,
    )

    result = executor.run(operation)

    assert result == "ok"
    assert attempts["count"] == 3
    assert sleep_calls == [0.1, 0.2]


def test_retry_executor_raises_when_retry_budget_exhausted() -> None:
    sleep_calls: list[float] = []
    executor = RetryExecutor(
        RetryPolicy(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
        sleep=sleep_calls.append,
    )

    with pytest.raises(RetryExhaustedError) as exc_info:
        executor.run(lambda: (_ for _ in ()).throw(DriveRateLimitError("429")))

    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, DriveRateLimitError)
    assert sleep_calls == [0.0, 0.0]


def test_retry_executor_does_not_retry_non_retryable_error() -> None:
    sleep_calls: list[float] = []
    executor = RetryExecutor(RetryPolicy(max_attempts=3), sleep=sleep_calls.append)

    with pytest.raises(ValueError, match="bad input"):
        executor.run(lambda: (_ for _ in ()).throw(ValueError("bad input")))

    assert sleep_calls == []


def test_retry_executor_accepts_custom_predicate() -> None:
    attempts = {"count": 0}

    def operation() -> int:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise KeyError("first")
        return attempts["count"]

    executor = RetryExecutor(RetryPolicy(max_attempts=2), sleep=lambda _: None)

    assert executor.run(operation, is_retryable=lambda exc: isinstance(exc, KeyError)) == 2


def test_delay_is_capped_by_max_delay() -> None:
    policy = RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=3.0, backoff_multiplier=2.0)

    assert [policy.delay_for(attempt) for attempt in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_invalid_policy_is_rejected() -> None:
    with pytest.raises(ValueError, match="max_attempts"):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError, match="backoff_multiplier"):
        RetryPolicy(backoff_multiplier=0.5)


def test_remote_error_classification() -> None:
    assert is_retryable_remote_error(DriveRateLimitError("429")) is True
    assert is_retryable_remote_error(httpx.ConnectError("refused")) is True
    assert is_retryable_remote_error(RuntimeError("bug")) is False
