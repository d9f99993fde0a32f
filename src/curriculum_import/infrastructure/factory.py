"""Wiring of the import engine from its default infrastructure."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.orm import Session, sessionmaker

from curriculum_import.application.drive_source import DriveSource
from curriculum_import.application.import_jobs import ImportRunner, StartDriveImportUseCase
from curriculum_import.application.import_orchestrator import ImportBudget, ImportOrchestrator
from curriculum_import.application.import_persistence import (
    CourseImportLocks,
    ImportUnitOfWorkFactory,
)
from curriculum_import.application.progress_store import ProgressStore
from curriculum_import.application.task_list_builder import TaskListBuilder
from curriculum_import.infrastructure.db.session import create_default_session_factory
from curriculum_import.infrastructure.db.unit_of_work import SqlAlchemyImportUnitOfWork
from curriculum_import.infrastructure.drive.factory import create_default_drive_client
from curriculum_import.infrastructure.import_config import (
    default_cursor_key,
    default_import_budget,
)
from curriculum_import.infrastructure.runner.local_runner import InProcessImportRunner


@dataclass(frozen=True)
class ImportServices:
    """Collaborators behind the HTTP endpoints."""

    builder: TaskListBuilder
    progress: ProgressStore
    starter: StartDriveImportUseCase
    orchestrator: ImportOrchestrator
    runner: ImportRunner


def build_import_services(
    *,
    uow_factory: ImportUnitOfWorkFactory,
    source: DriveSource,
    budget: ImportBudget,
    runner_factory: Callable[[ImportOrchestrator], ImportRunner] = InProcessImportRunner,
    now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    cursor_key: bytes | None = None,
) -> ImportServices:
    """Assemble engine components around one unit-of-work factory."""
    locks = CourseImportLocks(uow_factory, now=now)
    progress = ProgressStore(uow_factory, now=now)
    builder = TaskListBuilder(
        source,
        uow_factory,
        max_items=budget.listing_batch,
        cursor_key=cursor_key,
    )
    orchestrator = ImportOrchestrator(builder, progress, locks, uow_factory, budget=budget)
    return ImportServices(
        builder=builder,
        progress=progress,
        starter=StartDriveImportUseCase(uow_factory, locks, now=now),
        orchestrator=orchestrator,
        runner=runner_factory(orchestrator),
    )


def create_default_import_services(
    *,
    session_factory: sessionmaker[Session] | None = None,
    source: DriveSource | None = None,
    budget: ImportBudget | None = None,
) -> ImportServices:
    """Construct services with SQLite persistence, keyring-backed Drive client and env budget."""
    resolved_session_factory = session_factory or create_default_session_factory()
    return build_import_services(
        uow_factory=lambda: SqlAlchemyImportUnitOfWork(resolved_session_factory),
        source=source or create_default_drive_client(),
        budget=budget or default_import_budget(),
        cursor_key=default_cursor_key(),
    )
