"""Import trigger: job creation, capability token minting and runner events."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol
from uuid import uuid4

from curriculum_import.application.import_orchestrator import ImportRunResult, RunImportCommand
from curriculum_import.application.import_persistence import (
    CourseImportLocks,
    ImportJob,
    ImportUnitOfWorkFactory,
    JobStatus,
)
from curriculum_import.domain.classification import resolve_folder_id
from curriculum_import.domain.errors import CourseNotFoundError
from curriculum_import.domain.progress import new_progress

LOGGER = logging.getLogger(__name__)

IMPORT_REQUESTED_EVENT = "drive/import.requested"
PROGRESS_TOKEN_BYTES = 32


@dataclass(frozen=True)
class ImportRequestedEvent:
    """Message handed to the background runner for one invocation."""

    drive_url: str
    course_id: str
    import_id: str
    user_id: str
    folder_id: str
    job_id: str | None = None
    resume_state: str | None = None
    name: str = IMPORT_REQUESTED_EVENT

    def to_command(self) -> RunImportCommand:
        return RunImportCommand(
            drive_url=self.drive_url,
            course_id=self.course_id,
            import_id=self.import_id,
            user_id=self.user_id,
            folder_id=self.folder_id,
            job_id=self.job_id,
            resume_state=self.resume_state,
        )

    def continued(self, resume_state: str | None) -> ImportRequestedEvent:
        """Same parameters plus the resume state of a partial run."""
        return replace(self, resume_state=resume_state)


class ImportRunner(Protocol):
    """Background runner port."""

    def send(self, event: ImportRequestedEvent) -> None:
        """Enqueue event for execution."""
        ...

    def drain(self) -> list[ImportRunResult]:
        """Execute queued events until none remain."""
        ...


@dataclass(frozen=True)
class StartImportCommand:
    drive_url: str
    course_id: str
    user_id: str


@dataclass(frozen=True)
class StartedImport:
    """Identifiers returned to the client; ``progress_token`` lets other devices poll."""

    import_id: str
    job_id: str
    progress_token: str
    event: ImportRequestedEvent


class StartDriveImportUseCase:
    """Validate the request, reserve the course and persist job and progress rows."""

    def __init__(
        self,
        uow_factory: ImportUnitOfWorkFactory,
        locks: CourseImportLocks,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
        token_factory: Callable[[], str] = lambda: secrets.token_urlsafe(PROGRESS_TOKEN_BYTES),
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._uow_factory = uow_factory
        self._locks = locks
        self._now = now
        self._token_factory = token_factory
        self._id_factory = id_factory

    def execute(self, command: StartImportCommand) -> StartedImport:
        """Create the import; another live import of the course raises ``ImportConflictError``."""
        correlation_id = str(uuid4())
        folder_id = resolve_folder_id(command.drive_url)
        import_id = self._id_factory()
        job_id = self._id_factory()
        progress_token = self._token_factory()
        created_at = self._now()

        try:
            with self._uow_factory() as uow:
                if uow.curriculum.get_course(command.course_id) is None:
                    raise CourseNotFoundError(f"Course {command.course_id} does not exist.")

                self._locks.acquire_in(uow, command.course_id, import_id)
                uow.jobs.add(
                    ImportJob(
                        job_id=job_id,
                        user_id=command.user_id,
                        course_id=command.course_id,
                        status=JobStatus.QUEUED,
                        created_at=created_at,
                        metadata={
                            "importId": import_id,
                            "progressToken": progress_token,
                            "driveUrl": command.drive_url,
                            "folderId": folder_id,
                        },
                    )
                )
                uow.progress.add(
                    new_progress(
                        import_id,
                        command.user_id,
                        course_id=command.course_id,
                        job_id=job_id,
                        created_at=created_at,
                    )
                )
                uow.commit()
        except Exception as exc:
            LOGGER.exception(
                (
                    "event=import_start_failed correlation_id=%s course_id=%s user_id=%s "
                    "folder_id=%s error_type=%s"
                ),
                correlation_id,
                command.course_id,
                command.user_id,
                folder_id,
                exc.__class__.__name__,
            )
            raise

        LOGGER.info(
            (
                "event=import_started correlation_id=%s course_id=%s user_id=%s "
                "import_id=%s job_id=%s folder_id=%s"
            ),
            correlation_id,
            command.course_id,
            command.user_id,
            import_id,
            job_id,
            folder_id,
        )
        return StartedImport(
            import_id=import_id,
            job_id=job_id,
            progress_token=progress_token,
            event=ImportRequestedEvent(
                drive_url=command.drive_url,
                course_id=command.course_id,
                import_id=import_id,
                user_id=command.user_id,
                folder_id=folder_id,
                job_id=job_id,
            ),
        )
