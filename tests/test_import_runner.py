"""Background runner tests: continuation, retries and give-up."""

from __future__ import annotations

from datetime import UTC, datetime

from curriculum_import.application.import_jobs import (
    IMPORT_REQUESTED_EVENT,
    StartImportCommand,
)
from curriculum_import.application.import_orchestrator import (
    ImportBudget,
    ImportOrchestrator,
    ImportRunResult,
    ImportRunStatus,
    RunImportCommand,
)
from curriculum_import.application.import_persistence import ImportUnitOfWorkFactory
from curriculum_import.domain.errors import ImportConflictError, InvalidCursorError
from curriculum_import.domain.progress import ImportPhase, ImportProgress
from curriculum_import.infrastructure.factory import ImportServices, build_import_services
from curriculum_import.infrastructure.retry import RetryPolicy
from curriculum_import.infrastructure.runner.local_runner import (
    InProcessImportRunner,
    is_retryable_invocation_error,
)
from tests.drive_fixtures import make_course_tree

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
DRIVE_URL = "https://drive.google.com/drive/folders/root"


class _FlakyOrchestrator(ImportOrchestrator):
    """Raise a transient error for the first ``failures`` invocations."""

    def __init__(self, inner: ImportOrchestrator, failures: int) -> None:
        self._inner = inner
        self._failures = failures
        self.calls = 0

    def run(self, command: RunImportCommand) -> ImportRunResult:
        self.calls += 1
        if self.calls <= self._failures:
            raise ConnectionError("store unavailable")
        return self._inner.run(command)

    def fail(self, command: RunImportCommand, message: str) -> ImportProgress | None:
        return self._inner.fail(command, message)


def _services(uow_factory: ImportUnitOfWorkFactory, budget: ImportBudget) -> ImportServices:
    sleep_calls: list[float] = []
    return build_import_services(
        uow_factory=uow_factory,
        source=make_course_tree(),
        budget=budget,
        runner_factory=lambda orchestrator: InProcessImportRunner(
            orchestrator,
            retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.0),
            sleep=sleep_calls.append,
        ),
        now=lambda: FIXED_NOW,
    )


def _start_command() -> StartImportCommand:
    return StartImportCommand(drive_url=DRIVE_URL, course_id="course-1", user_id="user-1")


def test_runner_reenqueues_partial_runs_until_completed(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, ImportBudget(max_tasks=2))
    started = services.starter.execute(_start_command())

    services.runner.send(started.event)
    results = services.runner.drain()

    assert started.event.name == IMPORT_REQUESTED_EVENT
    assert [result.status for result in results] == [
        ImportRunStatus.PARTIAL,
        ImportRunStatus.PARTIAL,
        ImportRunStatus.COMPLETED,
    ]
    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert progress.completed is True


def test_runner_retries_transient_invocation_failure(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, ImportBudget())
    started = services.starter.execute(_start_command())
    flaky = _FlakyOrchestrator(services.orchestrator, failures=2)
    sleep_calls: list[float] = []
    runner = InProcessImportRunner(
        flaky,
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.1),
        sleep=sleep_calls.append,
    )

    runner.send(started.event)
    results = runner.drain()

    assert [result.status for result in results] == [ImportRunStatus.COMPLETED]
    assert flaky.calls == 3
    assert sleep_calls == [0.1, 0.2]


def test_runner_gives_up_after_retry_budget(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, ImportBudget())
    started = services.starter.execute(_start_command())
    flaky = _FlakyOrchestrator(services.orchestrator, failures=10)
    runner = InProcessImportRunner(
        flaky,
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.0),
        sleep=lambda _: None,
    )

    runner.send(started.event)
    results = runner.drain()

    assert [result.status for result in results] == [ImportRunStatus.FAILED]
    assert flaky.calls == 3
    assert runner.pending == 0
    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert progress.phase is ImportPhase.ERROR
    assert "after 3 attempts" in progress.errors[-1]

    retry = services.starter.execute(_start_command())
    assert retry.import_id != started.import_id


def test_runner_does_not_retry_malformed_resume_state(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, ImportBudget())
    started = services.starter.execute(_start_command())

    services.runner.send(started.event.continued("not-a-resume-state"))
    results = services.runner.drain()

    assert [result.status for result in results] == [ImportRunStatus.FAILED]
    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert progress.phase is ImportPhase.ERROR


def test_invocation_limit_stops_endless_continuations(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, ImportBudget(max_tasks=1))
    started = services.starter.execute(_start_command())
    runner = InProcessImportRunner(services.orchestrator, max_invocations=2)

    runner.send(started.event)
    results = runner.drain()

    assert [result.status for result in results] == [
        ImportRunStatus.PARTIAL,
        ImportRunStatus.PARTIAL,
        ImportRunStatus.FAILED,
    ]
    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert progress.phase is ImportPhase.ERROR


def test_retryable_invocation_errors() -> None:
    assert is_retryable_invocation_error(ConnectionError("down")) is True
    assert is_retryable_invocation_error(InvalidCursorError("bad")) is False
    assert is_retryable_invocation_error(ImportConflictError("busy")) is False
