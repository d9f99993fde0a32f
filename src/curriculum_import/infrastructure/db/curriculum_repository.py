"""SQLAlchemy repository for the imported curriculum hierarchy."""

from __future__ import annotations

import json
from collections.abc import Collection
from datetime import UTC, datetime
from typing import TypeVar
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from curriculum_import.application.import_persistence import (
    CourseRecord,
    CurriculumRepository,
    UpsertOutcome,
    UpsertResult,
)
from curriculum_import.domain.import_tasks import LessonInfo, ModuleRef, SubjectRef, TestInfo
from curriculum_import.infrastructure.db.models import (
    CourseModel,
    LessonModel,
    ModuleModel,
    SubjectModel,
    TestModel,
)
from curriculum_import.infrastructure.db.session import flush_session

TKeyed = TypeVar("TKeyed", ModuleModel, SubjectModel, LessonModel, TestModel)


class SqlAlchemyCurriculumRepository(CurriculumRepository):
    """Upsert curriculum rows keyed by ``(course_id, import_key)``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_course(self, course_id: str) -> CourseRecord | None:
        course = self._session.get(CourseModel, course_id)
        if course is None:
            return None
        return CourseRecord(course_id=course.id, title=course.title)

    def find_module_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        return self._find_ids(ModuleModel, course_id, import_keys)

    def find_subject_ids(self, course_id: str, import_keys: Collection[str]) -> dict[str, str]:
        return self._find_ids(SubjectModel, course_id, import_keys)

    def upsert_module(self, course_id: str, module: ModuleRef) -> UpsertResult:
        return self._upsert(
            ModuleModel,
            course_id,
            module.import_key,
            {
                "code": module.code,
                "title": module.name,
                "position": module.order,
                "drive_id": module.drive_id,
            },
        )

    def upsert_subject(self, course_id: str, module_id: str, subject: SubjectRef) -> UpsertResult:
        return self._upsert(
            SubjectModel,
            course_id,
            subject.import_key,
            {
                "module_id": module_id,
                "code": subject.code,
                "module_code": subject.module_code,
                "title": subject.name,
                "position": subject.order,
                "drive_id": subject.drive_id,
            },
        )

    def upsert_lesson(self, course_id: str, subject_id: str, lesson: LessonInfo) -> UpsertResult:
        return self._upsert(
            LessonModel,
            course_id,
            lesson.import_key,
            {
                "subject_id": subject_id,
                "code": lesson.code,
                "title": lesson.name,
                "position": lesson.order,
                "content_type": lesson.content_type.value,
                "content_url": lesson.content_url,
                "mime_type": lesson.mime_type,
                "description": lesson.description,
                "drive_id": lesson.drive_id,
            },
        )

    def upsert_test(self, course_id: str, subject_id: str, test: TestInfo) -> UpsertResult:
        answer_key_json = (
            _dump_json([entry.model_dump(by_alias=True) for entry in test.answer_key])
            if test.answer_key
            else None
        )
        questions_json = (
            _dump_json([question.model_dump(by_alias=True) for question in test.questions])
            if test.questions
            else None
        )
        return self._upsert(
            TestModel,
            course_id,
            test.import_key,
            {
                "subject_id": subject_id,
                "code": test.code,
                "title": test.name,
                "position": test.order,
                "content_url": test.content_url,
                "mime_type": test.mime_type,
                "description": test.description,
                "drive_id": test.drive_id,
                "answer_key_json": answer_key_json,
                "questions_json": questions_json,
                "requires_manual_answer_key": test.requires_manual_answer_key,
            },
        )

    def _find_ids(
        self,
        model: type[TKeyed],
        course_id: str,
        import_keys: Collection[str],
    ) -> dict[str, str]:
        keys = list(dict.fromkeys(import_keys))
        if not keys:
            return {}

        statement = select(model.import_key, model.id).where(
            model.course_id == course_id,
            model.import_key.in_(keys),
        )
        return {import_key: row_id for import_key, row_id in self._session.execute(statement)}

    def _upsert(
        self,
        model: type[TKeyed],
        course_id: str,
        import_key: str,
        values: dict[str, object],
    ) -> UpsertResult:
        statement = select(model).where(
            model.course_id == course_id,
            model.import_key == import_key,
        )
        row = self._session.execute(statement).scalars().first()
        now = datetime.now(tz=UTC)

        if row is None:
            row = model(
                id=_new_id(),
                course_id=course_id,
                import_key=import_key,
                created_at=now,
                updated_at=now,
                **values,
            )
            self._session.add(row)
            flush_session(self._session)
            return UpsertResult(entity_id=row.id, outcome=UpsertOutcome.CREATED)

        changed = {name: value for name, value in values.items() if getattr(row, name) != value}
        if not changed:
            return UpsertResult(entity_id=row.id, outcome=UpsertOutcome.UNCHANGED)

        for name, value in changed.items():
            setattr(row, name, value)
        row.updated_at = now
        flush_session(self._session)
        return UpsertResult(entity_id=row.id, outcome=UpsertOutcome.UPDATED)


def _dump_json(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _new_id() -> str:
    return str(uuid4())
