"""Bounded exponential backoff for Drive requests and runner invocations."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

LOGGER = logging.getLogger(__name__)

TResult = TypeVar("TResult")


class RetryableError(RuntimeError):
    """Base for failures that may go away on a later attempt."""


class RetryExhaustedError(RuntimeError):
    """Every allowed attempt failed with a retryable error."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and backoff curve; delays grow by ``backoff_multiplier`` up to the cap."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.25
    max_delay_seconds: float = 2.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_for(self, failed_attempt: int) -> float:
        growth = self.backoff_multiplier ** (failed_attempt - 1)
        return min(self.max_delay_seconds, self.base_delay_seconds * growth)


def is_retryable_remote_error(error: Exception) -> bool:
    """Transport failures and errors marked retryable by their type."""
    return isinstance(error, (RetryableError, httpx.TransportError))


class RetryExecutor:
    """Call an operation until it succeeds, fails permanently or runs out of attempts."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._policy = policy
        self._sleep = sleep

    def run(
        self,
        operation: Callable[[], TResult],
        *,
        is_retryable: Callable[[Exception], bool] = is_retryable_remote_error,
    ) -> TResult:
        for attempt in range(1, self._policy.max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                if not is_retryable(exc):
                    raise
                if attempt == self._policy.max_attempts:
                    raise RetryExhaustedError(
                        f"Gave up after {attempt} attempts: {exc.__class__.__name__}.",
                        attempts=attempt,
                    ) from exc

                delay = self._policy.delay_for(attempt)
                LOGGER.warning(
                    "event=retry_scheduled attempt=%s delay_seconds=%.2f error_type=%s",
                    attempt,
                    delay,
                    exc.__class__.__name__,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")
