"""Budgeted, resumable execution of one Drive import."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from uuid import uuid4

from pydantic import Field

from curriculum_import.application.import_persistence import (
    CourseImportLocks,
    ImportUnitOfWorkFactory,
    JobStatus,
    PersistenceError,
    UpsertConflictError,
    UpsertOutcome,
    UpsertResult,
)
from curriculum_import.application.progress_store import ProgressStore
from curriculum_import.application.task_list_builder import DEFAULT_LISTING_BATCH, TaskListBuilder
from curriculum_import.domain.classification import resolve_folder_id
from curriculum_import.domain.errors import InvalidSourceError, WriteError
from curriculum_import.domain.import_tasks import (
    ImportModel,
    ImportSummary,
    ImportTask,
    LessonTask,
    ModuleTask,
    ProgressSnapshot,
    SubjectTask,
    TestTask,
    decode_opaque,
    encode_opaque,
)
from curriculum_import.domain.progress import (
    ImportPhase,
    ImportProgress,
    ProgressUpdate,
    compute_percentage,
)

LOGGER = logging.getLogger(__name__)

IN_FLIGHT_PERCENTAGE_CAP = 99


@dataclass(frozen=True)
class ImportBudget:
    """Work allowed in a single invocation."""

    max_tasks: int = 50
    max_seconds: float = 20.0
    listing_batch: int = DEFAULT_LISTING_BATCH

    def __post_init__(self) -> None:
        if self.max_tasks < 1:
            raise ValueError("max_tasks must be >= 1")
        if self.max_seconds <= 0:
            raise ValueError("max_seconds must be > 0")
        if self.listing_batch < 1:
            raise ValueError("listing_batch must be >= 1")


@dataclass(frozen=True)
class RunImportCommand:
    drive_url: str
    course_id: str
    import_id: str
    user_id: str
    folder_id: str
    job_id: str | None = None
    resume_state: str | None = None


class ImportRunStatus(StrEnum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportRunResult:
    """Outcome of one invocation; ``resume_state`` is set only for partial runs."""

    status: ImportRunStatus
    import_id: str
    resume_state: str | None = None
    written: int = 0
    created: int = 0
    failed: int = 0


class OrchestratorState(ImportModel):
    """Everything the next invocation needs; carried as opaque resume state."""

    listing_cursor: str | None = None
    listing_started: bool = False
    listing_done: bool = False
    pending: list[ImportTask] = Field(default_factory=list)
    snapshot: ProgressSnapshot = Field(default_factory=ProgressSnapshot)
    totals: ImportSummary = Field(default_factory=ImportSummary)

    def encode(self) -> str:
        return encode_opaque(self)

    @classmethod
    def decode(cls, raw: str) -> OrchestratorState:
        return decode_opaque(cls, raw)


class ImportOrchestrator:
    """Drive one import forward within a task and wall-clock budget.

    Tasks are written in hierarchy order, each in its own transaction, as
    upserts keyed by the structural key. A failing task is recorded in the
    progress errors and skipped; listing and progress failures propagate so
    the runner can retry the invocation.
    """

    def __init__(
        self,
        builder: TaskListBuilder,
        progress: ProgressStore,
        locks: CourseImportLocks,
        uow_factory: ImportUnitOfWorkFactory,
        *,
        budget: ImportBudget | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._builder = builder
        self._progress = progress
        self._locks = locks
        self._uow_factory = uow_factory
        self._budget = budget or ImportBudget()
        self._clock = clock

    def run(self, command: RunImportCommand) -> ImportRunResult:
        """Execute one invocation and report whether the import finished."""
        correlation_id = str(uuid4())
        if resolve_folder_id(command.drive_url) != command.folder_id:
            raise InvalidSourceError("Folder id does not match the Drive URL.")

        progress = self._progress.get(command.import_id)
        if progress is None:
            progress = self._progress.create(
                command.import_id,
                command.user_id,
                course_id=command.course_id,
                job_id=command.job_id,
            )
        if progress.phase is ImportPhase.CANCELLED:
            self._finish(command, JobStatus.CANCELLED)
            LOGGER.info(
                "event=import_run_cancelled correlation_id=%s import_id=%s course_id=%s",
                correlation_id,
                command.import_id,
                command.course_id,
            )
            return ImportRunResult(status=ImportRunStatus.CANCELLED, import_id=command.import_id)
        if progress.is_terminal:
            status = (
                ImportRunStatus.COMPLETED if progress.completed else ImportRunStatus.FAILED
            )
            return ImportRunResult(status=status, import_id=command.import_id)

        self._locks.acquire(command.course_id, command.import_id)
        self._set_job_status(command, JobStatus.RUNNING)

        state = (
            OrchestratorState.decode(command.resume_state)
            if command.resume_state
            else OrchestratorState()
        )
        deadline = self._clock() + self._budget.max_seconds
        written = 0
        created = 0
        failed = 0

        while True:
            if not state.pending and state.listing_done:
                break
            if written >= self._budget.max_tasks or self._clock() >= deadline:
                return self._pause(command, state, correlation_id, written, created, failed)

            if not state.pending:
                state = self._list_next(command, state)
                continue

            task = state.pending[0]
            try:
                outcome = self._write_with_retry(command.course_id, task)
            except (WriteError, PersistenceError) as exc:
                failed += 1
                message = f"{_task_label(task)}: {exc}"
                LOGGER.warning(
                    (
                        "event=import_task_failed correlation_id=%s import_id=%s course_id=%s "
                        "task_id=%s error_type=%s"
                    ),
                    correlation_id,
                    command.import_id,
                    command.course_id,
                    task.id,
                    exc.__class__.__name__,
                )
                errors: tuple[str, ...] = (message,)
            else:
                if outcome is UpsertOutcome.CREATED:
                    created += 1
                errors = ()

            written += 1
            snapshot = state.snapshot.with_processed(task.type)
            state = state.model_copy(update={"pending": state.pending[1:], "snapshot": snapshot})
            self._progress.update(
                command.import_id,
                ProgressUpdate(
                    current_step="Writing curriculum",
                    current_item=_task_label(task),
                    phase=ImportPhase.WRITING,
                    percentage=_in_flight_percentage(snapshot),
                    errors=errors,
                    **_counters(snapshot),
                ),
            )

        self._progress.update(
            command.import_id,
            ProgressUpdate(
                current_step="Import completed",
                current_item=None,
                phase=ImportPhase.COMPLETED,
                completed=True,
                percentage=100,
                **_counters(state.snapshot),
            ),
        )
        self._finish(command, JobStatus.COMPLETED)
        LOGGER.info(
            (
                "event=import_run_completed correlation_id=%s import_id=%s course_id=%s "
                "written=%s created=%s failed=%s"
            ),
            correlation_id,
            command.import_id,
            command.course_id,
            written,
            created,
            failed,
        )
        return ImportRunResult(
            status=ImportRunStatus.COMPLETED,
            import_id=command.import_id,
            written=written,
            created=created,
            failed=failed,
        )

    def fail(self, command: RunImportCommand, message: str) -> ImportProgress | None:
        """Move import to the error phase and free the course for other imports."""
        progress: ImportProgress | None = None
        if self._progress.get(command.import_id) is not None:
            progress = self._progress.update(
                command.import_id,
                ProgressUpdate(
                    current_step="Import failed",
                    phase=ImportPhase.ERROR,
                    errors=(message,),
                ),
            )
        self._finish(command, JobStatus.FAILED)
        return progress

    def _list_next(self, command: RunImportCommand, state: OrchestratorState) -> OrchestratorState:
        self._progress.update(
            command.import_id,
            ProgressUpdate(
                current_step="Listing Drive folder",
                phase=ImportPhase.CONTINUING if state.listing_started else ImportPhase.LISTING,
            ),
        )
        listing = self._builder.build(
            command.drive_url,
            command.course_id,
            command.user_id,
            state.listing_cursor,
            max_items=self._budget.listing_batch,
        )
        snapshot = state.snapshot.with_totals(listing.totals)
        self._progress.update(
            command.import_id,
            ProgressUpdate(
                current_step="Drive folder listed",
                errors=tuple(listing.warnings),
                percentage=_in_flight_percentage(snapshot),
                **_counters(snapshot),
            ),
        )
        return state.model_copy(
            update={
                "pending": listing.tasks,
                "listing_cursor": listing.next_cursor,
                "listing_started": True,
                "listing_done": listing.next_cursor is None,
                "totals": listing.totals,
                "snapshot": snapshot,
            }
        )

    def _write_with_retry(self, course_id: str, task: ImportTask) -> UpsertOutcome:
        try:
            return self._write(course_id, task).outcome
        except UpsertConflictError:
            # a concurrent writer inserted the same key; the retry updates it
            return self._write(course_id, task).outcome

    def _write(self, course_id: str, task: ImportTask) -> UpsertResult:
        with self._uow_factory() as uow:
            curriculum = uow.curriculum
            match task:
                case ModuleTask():
                    result = curriculum.upsert_module(course_id, task.module)
                case SubjectTask():
                    module_id = _resolve_parent(
                        curriculum.find_module_ids(course_id, [task.module.import_key]),
                        task.module.import_key,
                        task,
                    )
                    result = curriculum.upsert_subject(course_id, module_id, task.subject)
                case LessonTask():
                    subject_id = _resolve_parent(
                        curriculum.find_subject_ids(course_id, [task.subject.import_key]),
                        task.subject.import_key,
                        task,
                    )
                    result = curriculum.upsert_lesson(course_id, subject_id, task.lesson)
                case TestTask():
                    subject_id = _resolve_parent(
                        curriculum.find_subject_ids(course_id, [task.subject.import_key]),
                        task.subject.import_key,
                        task,
                    )
                    result = curriculum.upsert_test(course_id, subject_id, task.test)
            uow.commit()
        return result

    def _pause(
        self,
        command: RunImportCommand,
        state: OrchestratorState,
        correlation_id: str,
        written: int,
        created: int,
        failed: int,
    ) -> ImportRunResult:
        self._progress.update(
            command.import_id,
            ProgressUpdate(
                current_step="Continuing in the next invocation",
                phase=ImportPhase.CONTINUING,
            ),
        )
        LOGGER.info(
            (
                "event=import_run_partial correlation_id=%s import_id=%s course_id=%s "
                "written=%s pending=%s listing_done=%s"
            ),
            correlation_id,
            command.import_id,
            command.course_id,
            written,
            len(state.pending),
            state.listing_done,
        )
        return ImportRunResult(
            status=ImportRunStatus.PARTIAL,
            import_id=command.import_id,
            resume_state=state.encode(),
            written=written,
            created=created,
            failed=failed,
        )

    def _finish(self, command: RunImportCommand, job_status: JobStatus) -> None:
        self._locks.release(command.course_id, command.import_id)
        self._set_job_status(command, job_status)

    def _set_job_status(self, command: RunImportCommand, status: JobStatus) -> None:
        if command.job_id is None:
            return
        with self._uow_factory() as uow:
            uow.jobs.set_status(command.job_id, status)
            uow.commit()


def _resolve_parent(found: dict[str, str], import_key: str, task: ImportTask) -> str:
    parent_id = found.get(import_key)
    if parent_id is None:
        raise WriteError(f"Parent '{import_key}' is not stored.", task_id=task.id)
    return parent_id


def _counters(snapshot: ProgressSnapshot) -> dict[str, int]:
    return snapshot.model_dump(by_alias=False)


def _in_flight_percentage(snapshot: ProgressSnapshot) -> int:
    processed = (
        snapshot.processed_modules
        + snapshot.processed_subjects
        + snapshot.processed_lessons
        + snapshot.processed_tests
    )
    total = (
        snapshot.total_modules
        + snapshot.total_subjects
        + snapshot.total_lessons
        + snapshot.total_tests
    )
    return min(IN_FLIGHT_PERCENTAGE_CAP, compute_percentage(processed, total))


def _task_label(task: ImportTask) -> str:
    match task:
        case ModuleTask():
            return f"module '{task.module.name}'"
        case SubjectTask():
            return f"subject '{task.subject.name}'"
        case LessonTask():
            return f"lesson '{task.lesson.name}'"
        case TestTask():
            return f"test '{task.test.name}'"
