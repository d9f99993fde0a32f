"""Database infrastructure package."""

from curriculum_import.infrastructure.db.config import get_database_path, make_sqlite_url
from curriculum_import.infrastructure.db.session import (
    create_default_session_factory,
    create_session_factory,
    create_sqlite_engine,
)
from curriculum_import.infrastructure.db.unit_of_work import SqlAlchemyImportUnitOfWork

__all__ = [
    "SqlAlchemyImportUnitOfWork",
    "create_default_session_factory",
    "create_session_factory",
    "create_sqlite_engine",
    "get_database_path",
    "make_sqlite_url",
]
