"""SQLAlchemy repositories for import progress, jobs and course locks."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import cast

from sqlalchemy import delete
from sqlalchemy.orm import Session

from curriculum_import.application.import_persistence import (
    CourseImportLock,
    CourseLockRepository,
    ImportJob,
    JobRepository,
    JobStatus,
    ProgressRepository,
)
from curriculum_import.domain.progress import COUNTER_FIELDS, ImportPhase, ImportProgress
from curriculum_import.infrastructure.db.models import (
    CourseImportLockModel,
    DriveImportJobModel,
    ImportProgressModel,
)
from curriculum_import.infrastructure.db.session import flush_session


class SqlAlchemyProgressRepository(ProgressRepository):
    """Persist ``ImportProgress`` rows; errors are stored as a JSON array."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, import_id: str) -> ImportProgress | None:
        row = self._session.get(ImportProgressModel, import_id)
        if row is None:
            return None
        return _to_progress(row)

    def add(self, progress: ImportProgress) -> None:
        row = ImportProgressModel(import_id=progress.import_id)
        _apply_progress(row, progress)
        row.created_at = progress.created_at
        self._session.add(row)
        flush_session(self._session)

    def save(self, progress: ImportProgress) -> None:
        row = self._session.get(ImportProgressModel, progress.import_id)
        if row is None:
            raise LookupError(f"Progress row {progress.import_id} does not exist.")
        _apply_progress(row, progress)
        flush_session(self._session)


class SqlAlchemyJobRepository(JobRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, job: ImportJob) -> None:
        self._session.add(
            DriveImportJobModel(
                job_id=job.job_id,
                user_id=job.user_id,
                course_id=job.course_id,
                status=job.status.value,
                metadata_json=json.dumps(job.metadata, sort_keys=True),
                created_at=job.created_at,
            )
        )
        flush_session(self._session)

    def get(self, job_id: str) -> ImportJob | None:
        row = self._session.get(DriveImportJobModel, job_id)
        if row is None:
            return None

        metadata = json.loads(row.metadata_json or "{}")
        if not isinstance(metadata, dict):
            metadata = {}
        return ImportJob(
            job_id=row.job_id,
            user_id=row.user_id,
            course_id=row.course_id,
            status=JobStatus(row.status),
            created_at=row.created_at,
            metadata={
                str(key): str(value)
                for key, value in cast(dict[object, object], metadata).items()
            },
        )

    def set_status(self, job_id: str, status: JobStatus) -> None:
        row = self._session.get(DriveImportJobModel, job_id)
        if row is None:
            return
        row.status = status.value
        flush_session(self._session)


class SqlAlchemyCourseLockRepository(CourseLockRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, course_id: str) -> CourseImportLock | None:
        row = self._session.get(CourseImportLockModel, course_id)
        if row is None:
            return None
        return CourseImportLock(
            course_id=row.course_id,
            import_id=row.import_id,
            acquired_at=row.acquired_at,
        )

    def put(self, lock: CourseImportLock) -> None:
        row = self._session.get(CourseImportLockModel, lock.course_id)
        if row is None:
            self._session.add(
                CourseImportLockModel(
                    course_id=lock.course_id,
                    import_id=lock.import_id,
                    acquired_at=lock.acquired_at,
                )
            )
        else:
            row.import_id = lock.import_id
            row.acquired_at = lock.acquired_at
        flush_session(self._session)

    def delete(self, course_id: str, import_id: str) -> bool:
        result = self._session.execute(
            delete(CourseImportLockModel).where(
                CourseImportLockModel.course_id == course_id,
                CourseImportLockModel.import_id == import_id,
            )
        )
        return bool(getattr(result, "rowcount", 0))


def _apply_progress(row: ImportProgressModel, progress: ImportProgress) -> None:
    row.user_id = progress.user_id
    row.course_id = progress.course_id
    row.job_id = progress.job_id
    row.current_step = progress.current_step
    row.current_item = progress.current_item
    row.phase = progress.phase.value
    row.completed = progress.completed
    row.percentage = progress.percentage
    for name in COUNTER_FIELDS:
        setattr(row, name, getattr(progress, name))
    row.errors_json = json.dumps(list(progress.errors), ensure_ascii=False)
    row.updated_at = progress.updated_at


def _to_progress(row: ImportProgressModel) -> ImportProgress:
    errors = json.loads(row.errors_json or "[]")
    return ImportProgress(
        import_id=row.import_id,
        user_id=row.user_id,
        course_id=row.course_id,
        job_id=row.job_id,
        current_step=row.current_step,
        current_item=row.current_item,
        phase=ImportPhase(row.phase),
        completed=row.completed,
        percentage=row.percentage,
        total_modules=row.total_modules,
        processed_modules=row.processed_modules,
        total_subjects=row.total_subjects,
        processed_subjects=row.processed_subjects,
        total_lessons=row.total_lessons,
        processed_lessons=row.processed_lessons,
        total_tests=row.total_tests,
        processed_tests=row.processed_tests,
        errors=tuple(str(error) for error in errors) if isinstance(errors, list) else (),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
