"""End-to-end orchestrator tests against SQLite and an in-memory Drive tree."""

from __future__ import annotations

import itertools
from collections.abc import Collection
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from curriculum_import.application.drive_source import DriveSource
from curriculum_import.application.import_jobs import StartedImport, StartImportCommand
from curriculum_import.application.import_orchestrator import (
    ImportBudget,
    ImportOrchestrator,
    ImportRunStatus,
    RunImportCommand,
)
from curriculum_import.application.import_persistence import (
    CourseImportLocks,
    CourseRecord,
    CurriculumRepository,
    ImportUnitOfWorkFactory,
    JobStatus,
    PersistenceError,
    UpsertResult,
)
from curriculum_import.domain.errors import ImportConflictError
from curriculum_import.domain.import_tasks import (
    LessonInfo,
    ModuleRef,
    ModuleTask,
    SubjectRef,
    TestInfo,
)
from curriculum_import.domain.progress import ImportPhase
from curriculum_import.infrastructure.db.models import (
    CourseImportLockModel,
    LessonModel,
    ModuleModel,
    SubjectModel,
    TestModel,
)
from curriculum_import.infrastructure.db.unit_of_work import SqlAlchemyImportUnitOfWork
from curriculum_import.infrastructure.factory import ImportServices, build_import_services
from tests.drive_fixtures import make_course_tree

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
DRIVE_URL = "https://drive.google.com/drive/folders/root"


class _RejectingCurriculum(CurriculumRepository):
    """Delegate to the real repository but fail lessons with selected keys."""

    def __init__(self, inner: CurriculumRepository, rejected_keys: set[str]) -> None:
        self._inner = inner
        self._rejected_keys = rejected_keys

    def get_course(self, course_id: str) -> CourseRecord | None:
        return self._inner.get_course(course_id)

    def find_module_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        return self._inner.find_module_ids(course_id, import_keys)

    def find_subject_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        return self._inner.find_subject_ids(course_id, import_keys)

    def upsert_module(self, course_id: str, module: ModuleRef) -> UpsertResult:
        return self._inner.upsert_module(course_id, module)

    def upsert_subject(self, course_id: str, module_id: str, subject: SubjectRef) -> UpsertResult:
        return self._inner.upsert_subject(course_id, module_id, subject)

    def upsert_lesson(self, course_id: str, subject_id: str, lesson: LessonInfo) -> UpsertResult:
        if lesson.import_key in self._rejected_keys:
            raise PersistenceError("Database write failed: OperationalError.")
        return self._inner.upsert_lesson(course_id, subject_id, lesson)

    def upsert_test(self, course_id: str, subject_id: str, test: TestInfo) -> UpsertResult:
        return self._inner.upsert_test(course_id, subject_id, test)


class _RejectingUnitOfWork(SqlAlchemyImportUnitOfWork):
    def __init__(self, session_factory: sessionmaker[Session], rejected_keys: set[str]) -> None:
        super().__init__(session_factory)
        self._rejected_keys = rejected_keys

    def __enter__(self) -> _RejectingUnitOfWork:
        super().__enter__()
        self.curriculum = _RejectingCurriculum(self.curriculum, self._rejected_keys)
        return self


def _services(
    uow_factory: ImportUnitOfWorkFactory,
    source: DriveSource,
    budget: ImportBudget | None = None,
) -> ImportServices:
    return build_import_services(
        uow_factory=uow_factory,
        source=source,
        budget=budget or ImportBudget(),
        now=lambda: FIXED_NOW,
    )


def _start(services: ImportServices, course_id: str = "course-1") -> StartedImport:
    return services.starter.execute(
        StartImportCommand(drive_url=DRIVE_URL, course_id=course_id, user_id="user-1")
    )


def _count(session_factory: sessionmaker[Session], model: type[object]) -> int:
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(model)) or 0


def _row_counts(session_factory: sessionmaker[Session]) -> tuple[int, int, int, int]:
    return (
        _count(session_factory, ModuleModel),
        _count(session_factory, SubjectModel),
        _count(session_factory, LessonModel),
        _count(session_factory, TestModel),
    )


def _job_status(uow_factory: ImportUnitOfWorkFactory, job_id: str) -> JobStatus | None:
    with uow_factory() as uow:
        job = uow.jobs.get(job_id)
    return job.status if job is not None else None


def test_import_writes_hierarchy_and_completes(
    session_factory: sessionmaker[Session],
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree())
    started = _start(services)

    result = services.orchestrator.run(started.event.to_command())

    assert result.status is ImportRunStatus.COMPLETED
    assert (result.written, result.created, result.failed) == (5, 5, 0)
    assert _row_counts(session_factory) == (1, 1, 2, 1)
    assert _count(session_factory, CourseImportLockModel) == 0
    assert _job_status(uow_factory, started.job_id) is JobStatus.COMPLETED

    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert progress.phase is ImportPhase.COMPLETED
    assert progress.completed is True
    assert progress.percentage == 100
    assert (progress.processed_lessons, progress.total_lessons) == (2, 2)
    assert progress.errors == ()

    with session_factory() as session:
        test_row = session.scalars(select(TestModel)).one()
        lesson_positions = sorted(session.scalars(select(LessonModel.position)))
    assert test_row.requires_manual_answer_key is False
    assert test_row.answer_key_json is not None
    assert '"correctAnswer": "B"' in test_row.answer_key_json
    assert lesson_positions == [1, 2]


def test_second_import_of_unchanged_tree_creates_no_rows(
    session_factory: sessionmaker[Session],
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree())
    first = _start(services)
    services.orchestrator.run(first.event.to_command())
    counts_after_first = _row_counts(session_factory)

    listing = services.builder.build(DRIVE_URL, "course-1", "user-1")
    second = _start(services)
    result = services.orchestrator.run(second.event.to_command())

    module_task = listing.tasks[0]
    assert isinstance(module_task, ModuleTask)
    assert module_task.module.existing_id is not None
    assert result.status is ImportRunStatus.COMPLETED
    assert result.created == 0
    assert result.written == 5
    assert _row_counts(session_factory) == counts_after_first


def test_task_budget_pauses_and_resume_finishes(
    session_factory: sessionmaker[Session],
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree(), ImportBudget(max_tasks=2))
    started = _start(services)
    event = started.event

    statuses: list[ImportRunStatus] = []
    for _ in range(10):
        result = services.orchestrator.run(event.to_command())
        statuses.append(result.status)
        if result.status is not ImportRunStatus.PARTIAL:
            break
        assert result.resume_state is not None
        progress = services.progress.get(started.import_id)
        assert progress is not None
        assert progress.phase is ImportPhase.CONTINUING
        assert progress.percentage is not None and 0 < progress.percentage <= 99
        event = event.continued(result.resume_state)

    assert statuses == [
        ImportRunStatus.PARTIAL,
        ImportRunStatus.PARTIAL,
        ImportRunStatus.COMPLETED,
    ]
    assert _row_counts(session_factory) == (1, 1, 2, 1)


def test_time_budget_keeps_listed_tasks_for_next_invocation(
    session_factory: sessionmaker[Session],
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    source = make_course_tree()
    services = _services(uow_factory, source)
    started = _start(services)
    ticks = itertools.count(0.0, 0.6)
    slow = ImportOrchestrator(
        services.builder,
        services.progress,
        CourseImportLocks(uow_factory, now=lambda: FIXED_NOW),
        uow_factory,
        budget=ImportBudget(max_seconds=1.0),
        clock=lambda: next(ticks),
    )

    paused = slow.run(started.event.to_command())
    list_calls_after_pause = len(source.list_calls)
    finished = services.orchestrator.run(
        started.event.continued(paused.resume_state).to_command()
    )

    assert paused.status is ImportRunStatus.PARTIAL
    assert paused.written == 0
    assert finished.status is ImportRunStatus.COMPLETED
    assert len(source.list_calls) == list_calls_after_pause
    assert _row_counts(session_factory) == (1, 1, 2, 1)


def test_failing_task_is_recorded_and_batch_continues(
    session_factory: sessionmaker[Session],
) -> None:
    rejected = {"MAT010101"}
    uow_factory: ImportUnitOfWorkFactory = lambda: _RejectingUnitOfWork(session_factory, rejected)
    services = _services(uow_factory, make_course_tree())
    started = _start(services)

    result = services.orchestrator.run(started.event.to_command())

    assert result.status is ImportRunStatus.COMPLETED
    assert result.failed == 1
    assert _row_counts(session_factory) == (1, 1, 1, 1)
    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert progress.completed is True
    assert len(progress.errors) == 1
    assert progress.errors[0].startswith("lesson 'MAT010101 Introdução.mp4'")


def test_cancelled_import_stops_at_next_invocation(
    session_factory: sessionmaker[Session],
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree(), ImportBudget(max_tasks=1))
    started = _start(services)
    partial = services.orchestrator.run(started.event.to_command())

    services.progress.cancel(started.import_id, "user-1")
    result = services.orchestrator.run(
        started.event.continued(partial.resume_state).to_command()
    )

    assert partial.status is ImportRunStatus.PARTIAL
    assert result.status is ImportRunStatus.CANCELLED
    assert _row_counts(session_factory) == (1, 0, 0, 0)
    assert _count(session_factory, CourseImportLockModel) == 0
    assert _job_status(uow_factory, started.job_id) is JobStatus.CANCELLED


def test_second_live_import_of_same_course_conflicts(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree())
    first = _start(services)

    with pytest.raises(ImportConflictError):
        _start(services)

    services.orchestrator.run(first.event.to_command())
    second = _start(services)
    assert second.import_id != first.import_id


def test_orchestrator_refuses_course_held_by_other_import(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree())
    _start(services)
    services.progress.create("intruder", "user-2", course_id="course-1")
    intruder = RunImportCommand(
        drive_url=DRIVE_URL,
        course_id="course-1",
        import_id="intruder",
        user_id="user-2",
        folder_id="root",
    )

    with pytest.raises(ImportConflictError):
        services.orchestrator.run(intruder)


def test_fail_moves_import_to_error_and_frees_course(
    session_factory: sessionmaker[Session],
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    services = _services(uow_factory, make_course_tree())
    started = _start(services)

    progress = services.orchestrator.fail(started.event.to_command(), "Drive unavailable")
    rerun = services.orchestrator.run(started.event.to_command())

    assert progress is not None
    assert progress.phase is ImportPhase.ERROR
    assert progress.errors == ("Drive unavailable",)
    assert rerun.status is ImportRunStatus.FAILED
    assert _count(session_factory, CourseImportLockModel) == 0
    assert _job_status(uow_factory, started.job_id) is JobStatus.FAILED



def test_replayed_invocation_does_not_repeat_task_errors(
    session_factory: sessionmaker[Session],
) -> None:
    rejected = {"MAT010101"}
    uow_factory: ImportUnitOfWorkFactory = lambda: _RejectingUnitOfWork(session_factory, rejected)
    services = _services(uow_factory, make_course_tree(), ImportBudget(max_tasks=3))
    started = _start(services)

    first = services.orchestrator.run(started.event.to_command())
    replay = services.orchestrator.run(started.event.to_command())
    event = started.event.continued(replay.resume_state)
    final = services.orchestrator.run(event.to_command())

    assert (first.status, replay.status) == (ImportRunStatus.PARTIAL, ImportRunStatus.PARTIAL)
    assert first.failed == replay.failed == 1
    assert final.status is ImportRunStatus.COMPLETED
    progress = services.progress.get(started.import_id)
    assert progress is not None
    assert len(progress.errors) == 1
    assert progress.errors[0].startswith("lesson 'MAT010101 Introdução.mp4'")
