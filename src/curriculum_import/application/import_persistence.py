"""Application ports for curriculum, progress, job and lock persistence."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from types import TracebackType
from typing import Protocol

from curriculum_import.domain.errors import ImportConflictError
from curriculum_import.domain.import_tasks import LessonInfo, ModuleRef, SubjectRef, TestInfo
from curriculum_import.domain.progress import ImportProgress

LOGGER = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Storage failure surfaced to the application layer."""


class UpsertConflictError(PersistenceError):
    """A concurrent writer inserted the same structural key first."""


class UpsertOutcome(StrEnum):
    """What an idempotent write did to the stored row."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class UpsertResult:
    entity_id: str
    outcome: UpsertOutcome


@dataclass(frozen=True)
class CourseRecord:
    """Target course of an import."""

    course_id: str
    title: str


class JobStatus(StrEnum):
    """Lifecycle of the background job behind an import."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ImportJob:
    """Background job record; ``metadata`` binds the import id and capability token."""

    job_id: str
    user_id: str
    course_id: str
    status: JobStatus
    created_at: datetime
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def import_id(self) -> str | None:
        return self.metadata.get("importId")

    @property
    def progress_token(self) -> str | None:
        return self.metadata.get("progressToken")


@dataclass(frozen=True)
class CourseImportLock:
    course_id: str
    import_id: str
    acquired_at: datetime


class CurriculumRepository(Protocol):
    """Repository port for the module/subject/lesson/test hierarchy."""

    def get_course(self, course_id: str) -> CourseRecord | None:
        """Return course by id."""
        ...

    def find_module_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        """Map structural keys to stored module ids for the keys that exist."""
        ...

    def find_subject_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        """Map structural keys to stored subject ids for the keys that exist."""
        ...

    def upsert_module(self, course_id: str, module: ModuleRef) -> UpsertResult:
        """Insert or update module by structural key."""
        ...

    def upsert_subject(self, course_id: str, module_id: str, subject: SubjectRef) -> UpsertResult:
        """Insert or update subject by structural key."""
        ...

    def upsert_lesson(self, course_id: str, subject_id: str, lesson: LessonInfo) -> UpsertResult:
        """Insert or update lesson by structural key."""
        ...

    def upsert_test(self, course_id: str, subject_id: str, test: TestInfo) -> UpsertResult:
        """Insert or update test by structural key."""
        ...


class ProgressRepository(Protocol):
    """Repository port for import progress rows."""

    def get(self, import_id: str) -> ImportProgress | None:
        """Return progress row by import id."""
        ...

    def add(self, progress: ImportProgress) -> None:
        """Insert a new progress row."""
        ...

    def save(self, progress: ImportProgress) -> None:
        """Overwrite an existing progress row."""
        ...


class JobRepository(Protocol):
    """Repository port for background import jobs."""

    def add(self, job: ImportJob) -> None:
        """Insert job record."""
        ...

    def get(self, job_id: str) -> ImportJob | None:
        """Return job by id."""
        ...

    def set_status(self, job_id: str, status: JobStatus) -> None:
        """Update job status; unknown ids are ignored."""
        ...


class CourseLockRepository(Protocol):
    """Repository port for per-course advisory import locks."""

    def get(self, course_id: str) -> CourseImportLock | None:
        """Return current lock holder for course."""
        ...

    def put(self, lock: CourseImportLock) -> None:
        """Insert or replace lock for course."""
        ...

    def delete(self, course_id: str, import_id: str) -> bool:
        """Delete lock when held by import_id. Returns True when a row was removed."""
        ...


class ImportUnitOfWork(Protocol):
    """Unit-of-work port around import persistence operations."""

    curriculum: CurriculumRepository
    progress: ProgressRepository
    jobs: JobRepository
    locks: CourseLockRepository

    def __enter__(self) -> ImportUnitOfWork:
        """Start transactional scope."""
        ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Finalize transactional scope."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


ImportUnitOfWorkFactory = Callable[[], ImportUnitOfWork]


class CourseImportLocks:
    """Per-course advisory lock so that only one live import writes a course.

    A lock whose holder reached a terminal phase, or whose holder has no
    progress row, is taken over by the next import.
    """

    def __init__(
        self,
        uow_factory: ImportUnitOfWorkFactory,
        *,
        now: Callable[[], datetime],
    ) -> None:
        self._uow_factory = uow_factory
        self._now = now

    def acquire(self, course_id: str, import_id: str) -> None:
        """Acquire lock for import; re-acquiring an own lock is a no-op."""
        with self._uow_factory() as uow:
            self.acquire_in(uow, course_id, import_id)
            uow.commit()

    def acquire_in(self, uow: ImportUnitOfWork, course_id: str, import_id: str) -> None:
        """Acquire lock inside a caller-owned transaction."""
        current = uow.locks.get(course_id)
        if current is not None:
            if hmac.compare_digest(current.import_id, import_id):
                return
            holder = uow.progress.get(current.import_id)
            if holder is not None and not holder.is_terminal:
                raise ImportConflictError(
                    f"Course {course_id} is already being imported by another request."
                )
            LOGGER.info(
                "event=course_lock_taken_over course_id=%s previous_import_id=%s import_id=%s",
                course_id,
                current.import_id,
                import_id,
            )

        try:
            uow.locks.put(
                CourseImportLock(course_id=course_id, import_id=import_id, acquired_at=self._now())
            )
        except UpsertConflictError as exc:
            raise ImportConflictError(
                f"Course {course_id} is already being imported by another request."
            ) from exc

    def release(self, course_id: str, import_id: str) -> bool:
        """Release lock if held by import_id."""
        with self._uow_factory() as uow:
            released = uow.locks.delete(course_id, import_id)
            uow.commit()
        return released
