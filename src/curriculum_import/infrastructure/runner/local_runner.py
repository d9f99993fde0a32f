"""In-process background runner with durable-step semantics for import events."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from uuid import uuid4

from curriculum_import.application.import_jobs import ImportRequestedEvent, ImportRunner
from curriculum_import.application.import_orchestrator import (
    ImportOrchestrator,
    ImportRunResult,
    ImportRunStatus,
)
from curriculum_import.domain.errors import (
    CourseNotFoundError,
    ImportConflictError,
    InvalidCursorError,
    InvalidSourceError,
    RunnerError,
)
from curriculum_import.infrastructure.retry import (
    RetryExecutor,
    RetryExhaustedError,
    RetryPolicy,
)

LOGGER = logging.getLogger(__name__)

NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    InvalidSourceError,
    InvalidCursorError,
    CourseNotFoundError,
    ImportConflictError,
)
DEFAULT_MAX_INVOCATIONS = 10_000


def is_retryable_invocation_error(error: Exception) -> bool:
    """Every invocation failure is retried except invalid input and conflicts."""
    return not isinstance(error, NON_RETRYABLE_ERRORS)


class InProcessImportRunner(ImportRunner):
    """Queue of import events executed one invocation at a time.

    Each invocation is retried with backoff. A ``partial`` result re-enqueues
    the same event with the returned resume state; exhaustion moves the
    import to the error phase and releases its course.
    """

    def __init__(
        self,
        orchestrator: ImportOrchestrator,
        *,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_invocations: int = DEFAULT_MAX_INVOCATIONS,
    ) -> None:
        if max_invocations < 1:
            raise ValueError("max_invocations must be >= 1")
        self._orchestrator = orchestrator
        self._executor = RetryExecutor(retry_policy or RetryPolicy(), sleep=sleep)
        self._max_invocations = max_invocations
        self._queue: deque[ImportRequestedEvent] = deque()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        return len(self._queue)

    def send(self, event: ImportRequestedEvent) -> None:
        """Enqueue event for execution."""
        with self._lock:
            self._queue.append(event)
        LOGGER.info(
            "event=import_event_enqueued name=%s import_id=%s course_id=%s resumed=%s",
            event.name,
            event.import_id,
            event.course_id,
            event.resume_state is not None,
        )

    def drain(self) -> list[ImportRunResult]:
        """Execute queued events, including continuations, until none remain."""
        results: list[ImportRunResult] = []
        invocations = 0
        while True:
            with self._lock:
                if not self._queue:
                    break
                event = self._queue.popleft()

            invocations += 1
            if invocations > self._max_invocations:
                results.append(self._give_up(event, "Invocation limit reached."))
                continue

            try:
                result = self._invoke(event)
            except RunnerError as exc:
                results.append(self._give_up(event, str(exc)))
                continue

            results.append(result)
            if result.status is ImportRunStatus.PARTIAL:
                self.send(event.continued(result.resume_state))
        return results

    def _invoke(self, event: ImportRequestedEvent) -> ImportRunResult:
        correlation_id = str(uuid4())
        command = event.to_command()
        try:
            return self._executor.run(
                lambda: self._orchestrator.run(command),
                is_retryable=is_retryable_invocation_error,
            )
        except RetryExhaustedError as exc:
            cause = exc.__cause__
            LOGGER.error(
                (
                    "event=import_invocation_exhausted correlation_id=%s import_id=%s "
                    "attempts=%s error_type=%s"
                ),
                correlation_id,
                event.import_id,
                exc.attempts,
                cause.__class__.__name__ if cause is not None else "-",
            )
            raise RunnerError(
                f"Import failed after {exc.attempts} attempts: {cause}",
                attempts=exc.attempts,
            ) from exc
        except NON_RETRYABLE_ERRORS as exc:
            LOGGER.error(
                "event=import_invocation_rejected correlation_id=%s import_id=%s error_type=%s",
                correlation_id,
                event.import_id,
                exc.__class__.__name__,
            )
            raise RunnerError(str(exc), attempts=1) from exc

    def _give_up(self, event: ImportRequestedEvent, message: str) -> ImportRunResult:
        self._orchestrator.fail(event.to_command(), message)
        return ImportRunResult(status=ImportRunStatus.FAILED, import_id=event.import_id)
