"""Shared pytest fixtures for SQLite-backed import tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from curriculum_import.application.import_persistence import ImportUnitOfWorkFactory
from curriculum_import.infrastructure.db.unit_of_work import SqlAlchemyImportUnitOfWork
from tests.drive_fixtures import create_test_session_factory, seed_course


@pytest.fixture
def session_factory() -> Iterator[sessionmaker[Session]]:
    """Fresh SQLite database with the full schema and one seeded course."""
    db_path = Path("tests") / f"_runtime_import_{uuid4().hex}.db"
    factory, engine = create_test_session_factory(db_path)
    try:
        seed_course(factory)
        yield factory
    finally:
        engine.dispose()
        db_path.unlink(missing_ok=True)


@pytest.fixture
def uow_factory(session_factory: sessionmaker[Session]) -> ImportUnitOfWorkFactory:
    return lambda: SqlAlchemyImportUnitOfWork(session_factory)
