"""Engine/session bootstrap for SQLite persistence."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from curriculum_import.application.import_persistence import PersistenceError, UpsertConflictError
from curriculum_import.infrastructure.db.config import get_database_path, make_sqlite_url


def create_sqlite_engine(database_path: Path) -> Engine:
    """Create SQLite engine for provided database path with foreign keys enforced."""
    database_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        make_sqlite_url(database_path),
        future=True,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create typed SQLAlchemy session factory."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        class_=Session,
    )


def create_default_session_factory() -> sessionmaker[Session]:
    """Create session factory using configured local database path."""
    return create_session_factory(create_sqlite_engine(get_database_path()))


def _enable_foreign_keys(dbapi_connection: object, _: object) -> None:
    cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def flush_session(session: Session) -> None:
    """Flush pending writes, mapping driver errors to application persistence errors."""
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise UpsertConflictError("Row with the same key was written concurrently.") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Database write failed: {exc.__class__.__name__}.") from exc


def commit_session(session: Session) -> None:
    """Commit, mapping driver errors to application persistence errors."""
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise UpsertConflictError("Row with the same key was written concurrently.") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Database commit failed: {exc.__class__.__name__}.") from exc
