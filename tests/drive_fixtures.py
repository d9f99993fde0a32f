"""In-memory Drive tree and SQLite helpers shared by import tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from curriculum_import.application.drive_source import (
    GOOGLE_DOC_MIME_TYPE,
    DriveSource,
    DriveSourceRejectedError,
    RemoteFolderPage,
)
from curriculum_import.domain.classification import FOLDER_MIME_TYPE, RemoteItem
from curriculum_import.infrastructure.db.base import Base
from curriculum_import.infrastructure.db.models import CourseModel
from curriculum_import.infrastructure.db.session import create_session_factory, create_sqlite_engine

VIDEO_MIME_TYPE = "video/mp4"
PDF_MIME_TYPE = "application/pdf"

SAMPLE_TEST_DOCUMENT = """Avaliação do módulo

1. Quanto é 2 + 2?
a) 3
b) 4
c) 5

2. A Terra é plana? (Verdadeiro ou Falso)

GABARITO
1. B
2. Falso
"""


def folder(item_id: str, name: str) -> RemoteItem:
    return RemoteItem(id=item_id, name=name, mime_type=FOLDER_MIME_TYPE)


def video(item_id: str, name: str) -> RemoteItem:
    return RemoteItem(id=item_id, name=name, mime_type=VIDEO_MIME_TYPE)


def document(item_id: str, name: str) -> RemoteItem:
    return RemoteItem(id=item_id, name=name, mime_type=GOOGLE_DOC_MIME_TYPE)


@dataclass
class FakeDriveSource(DriveSource):
    """Folder tree served in fixed-size pages; ``failing`` folders reject listing."""

    tree: dict[str, list[RemoteItem]]
    documents: dict[str, str] = field(default_factory=dict)
    page_size: int = 100
    failing: set[str] = field(default_factory=set)
    list_calls: list[tuple[str, str | None]] = field(default_factory=list)
    export_calls: list[str] = field(default_factory=list)

    def list_children(self, folder_id: str, page_token: str | None = None) -> RemoteFolderPage:
        self.list_calls.append((folder_id, page_token))
        if folder_id in self.failing:
            raise DriveSourceRejectedError(f"folder {folder_id} is not shared")

        children = self.tree.get(folder_id, [])
        start = int(page_token) if page_token else 0
        end = start + self.page_size
        return RemoteFolderPage(
            items=tuple(children[start:end]),
            next_page_token=str(end) if end < len(children) else None,
        )

    def export_text(self, file_id: str) -> str:
        self.export_calls.append(file_id)
        if file_id not in self.documents:
            raise DriveSourceRejectedError(f"file {file_id} cannot be exported")
        return self.documents[file_id]


def make_course_tree() -> FakeDriveSource:
    """One module with one subject holding two lessons and a test."""
    return FakeDriveSource(
        tree={
            "root": [folder("m1", "MAT01 Fundamentos")],
            "m1": [folder("s1", "MAT0101 Álgebra")],
            "s1": [
                video("l1", "MAT010101 Introdução.mp4"),
                video("l2", "MAT010102 Equações.mp4"),
                document("t1", "Teste final"),
            ],
        },
        documents={"t1": SAMPLE_TEST_DOCUMENT},
    )


def create_test_session_factory(db_path: Path) -> tuple[sessionmaker[Session], Engine]:
    engine = create_sqlite_engine(db_path)
    Base.metadata.create_all(engine)
    return create_session_factory(engine), engine


def seed_course(
    session_factory: sessionmaker[Session],
    course_id: str = "course-1",
    title: str = "Matemática Básica",
) -> str:
    with session_factory() as session:
        session.add(CourseModel(id=course_id, title=title, created_at=datetime.now(tz=UTC)))
        session.commit()
    return course_id
