"""SQLAlchemy unit-of-work implementation for import persistence."""

from __future__ import annotations

from collections.abc import Collection
from types import TracebackType

from sqlalchemy.orm import Session, sessionmaker

from curriculum_import.application.import_persistence import (
    CourseImportLock,
    CourseLockRepository,
    CourseRecord,
    CurriculumRepository,
    ImportJob,
    ImportUnitOfWork,
    JobRepository,
    JobStatus,
    ProgressRepository,
    UpsertResult,
)
from curriculum_import.domain.import_tasks import LessonInfo, ModuleRef, SubjectRef, TestInfo
from curriculum_import.domain.progress import ImportProgress
from curriculum_import.infrastructure.db.curriculum_repository import (
    SqlAlchemyCurriculumRepository,
)
from curriculum_import.infrastructure.db.session import commit_session
from curriculum_import.infrastructure.db.tracking_repository import (
    SqlAlchemyCourseLockRepository,
    SqlAlchemyJobRepository,
    SqlAlchemyProgressRepository,
)


class _UninitializedCurriculumRepository(CurriculumRepository):
    """Placeholder repository before entering unit-of-work context."""

    def get_course(self, course_id: str) -> CourseRecord | None:
        raise RuntimeError("Unit of work is not active.")

    def find_module_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        raise RuntimeError("Unit of work is not active.")

    def find_subject_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        raise RuntimeError("Unit of work is not active.")

    def upsert_module(self, course_id: str, module: ModuleRef) -> UpsertResult:
        raise RuntimeError("Unit of work is not active.")

    def upsert_subject(self, course_id: str, module_id: str, subject: SubjectRef) -> UpsertResult:
        raise RuntimeError("Unit of work is not active.")

    def upsert_lesson(self, course_id: str, subject_id: str, lesson: LessonInfo) -> UpsertResult:
        raise RuntimeError("Unit of work is not active.")

    def upsert_test(self, course_id: str, subject_id: str, test: TestInfo) -> UpsertResult:
        raise RuntimeError("Unit of work is not active.")


class _UninitializedProgressRepository(ProgressRepository):
    def get(self, import_id: str) -> ImportProgress | None:
        raise RuntimeError("Unit of work is not active.")

    def add(self, progress: ImportProgress) -> None:
        raise RuntimeError("Unit of work is not active.")

    def save(self, progress: ImportProgress) -> None:
        raise RuntimeError("Unit of work is not active.")


class _UninitializedJobRepository(JobRepository):
    def add(self, job: ImportJob) -> None:
        raise RuntimeError("Unit of work is not active.")

    def get(self, job_id: str) -> ImportJob | None:
        raise RuntimeError("Unit of work is not active.")

    def set_status(self, job_id: str, status: JobStatus) -> None:
        raise RuntimeError("Unit of work is not active.")


class _UninitializedCourseLockRepository(CourseLockRepository):
    def get(self, course_id: str) -> CourseImportLock | None:
        raise RuntimeError("Unit of work is not active.")

    def put(self, lock: CourseImportLock) -> None:
        raise RuntimeError("Unit of work is not active.")

    def delete(self, course_id: str, import_id: str) -> bool:
        raise RuntimeError("Unit of work is not active.")


class SqlAlchemyImportUnitOfWork(ImportUnitOfWork):
    """Manage transactional scope for curriculum writes and import tracking."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._session: Session | None = None
        self._reset_repositories()

    def __enter__(self) -> SqlAlchemyImportUnitOfWork:
        self._session = self._session_factory()
        self.curriculum = SqlAlchemyCurriculumRepository(self._session)
        self.progress = SqlAlchemyProgressRepository(self._session)
        self.jobs = SqlAlchemyJobRepository(self._session)
        self.locks = SqlAlchemyCourseLockRepository(self._session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if exc is not None:
            self.rollback()

        session = self._session
        self._session = None
        self._reset_repositories()
        if session is not None:
            session.close()

    def commit(self) -> None:
        session = self._require_session()
        commit_session(session)

    def rollback(self) -> None:
        session = self._session
        if session is not None:
            session.rollback()

    def _require_session(self) -> Session:
        if self._session is None:
            raise RuntimeError("Unit of work is not active.")
        return self._session

    def _reset_repositories(self) -> None:
        self.curriculum: CurriculumRepository = _UninitializedCurriculumRepository()
        self.progress: ProgressRepository = _UninitializedProgressRepository()
        self.jobs: JobRepository = _UninitializedJobRepository()
        self.locks: CourseLockRepository = _UninitializedCourseLockRepository()
