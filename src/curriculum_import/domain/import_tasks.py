"""Import task list contracts, listing cursor and their opaque encoding."""

from __future__ import annotations

import base64
import binascii
from enum import StrEnum
from typing import Annotated, ClassVar, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from curriculum_import.domain.classification import ItemType
from curriculum_import.domain.errors import InvalidCursorError


class ImportModel(BaseModel):
    """Base for wire-facing models: camelCase aliases, unknown keys rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class ContentType(StrEnum):
    """Stored content kind for lessons and tests."""

    VIDEO = "video"
    TEXT = "text"
    TEST = "test"


class FolderLevel(StrEnum):
    """Depth of a folder in the expected Drive layout."""

    ROOT = "root"
    MODULE = "module"
    SUBJECT = "subject"


class ModuleRef(ImportModel):
    original_index: int
    name: str
    code: str | None = None
    order: int
    import_key: str
    drive_id: str
    existing_id: str | None = None


class SubjectRef(ImportModel):
    original_index: int
    name: str
    code: str | None = None
    order: int
    import_key: str
    drive_id: str
    module_code: str | None = None
    existing_id: str | None = None


class AnswerKeyEntry(ImportModel):
    question_number: int = Field(ge=1, le=100)
    correct_answer: str
    points: int = 10
    justification: str | None = None


class QuestionDraft(ImportModel):
    question: str
    type: Literal["multiple_choice", "true_false"] = "multiple_choice"
    options: list[str] = Field(default_factory=list)
    correct_answer: int | bool | None = None
    points: int = 1
    order: int


class LessonInfo(ImportModel):
    name: str
    code: str | None = None
    order: int
    import_key: str
    drive_id: str
    mime_type: str
    content_type: ContentType
    content_url: str
    description: str | None = None


class TestInfo(ImportModel):
    __test__: ClassVar[bool] = False

    name: str
    code: str | None = None
    order: int
    import_key: str
    drive_id: str
    mime_type: str
    content_type: ContentType = ContentType.TEST
    content_url: str
    description: str | None = None
    answer_key: list[AnswerKeyEntry] | None = None
    questions: list[QuestionDraft] | None = None
    requires_manual_answer_key: bool = False


class ModuleTask(ImportModel):
    id: str
    type: Literal["module"] = "module"
    module: ModuleRef


class SubjectTask(ImportModel):
    id: str
    type: Literal["subject"] = "subject"
    module: ModuleRef
    subject: SubjectRef


class LessonTask(ImportModel):
    id: str
    type: Literal["lesson"] = "lesson"
    module: ModuleRef
    subject: SubjectRef
    lesson: LessonInfo


class TestTask(ImportModel):
    __test__: ClassVar[bool] = False

    id: str
    type: Literal["test"] = "test"
    module: ModuleRef
    subject: SubjectRef
    test: TestInfo


ImportTask = Annotated[
    ModuleTask | SubjectTask | LessonTask | TestTask,
    Field(discriminator="type"),
]


class ImportSummary(ImportModel):
    """Per-level counters; ``unknown`` counts items that did not classify."""

    modules: int = 0
    subjects: int = 0
    lessons: int = 0
    tests: int = 0
    unknown: int = 0

    def plus(self, other: ImportSummary) -> ImportSummary:
        return ImportSummary(
            modules=self.modules + other.modules,
            subjects=self.subjects + other.subjects,
            lessons=self.lessons + other.lessons,
            tests=self.tests + other.tests,
            unknown=self.unknown + other.unknown,
        )

    def incremented(self, item_type: ItemType) -> ImportSummary:
        field_name = {
            ItemType.MODULE: "modules",
            ItemType.SUBJECT: "subjects",
            ItemType.LESSON: "lessons",
            ItemType.TEST: "tests",
            ItemType.UNKNOWN: "unknown",
        }[item_type]
        return self.model_copy(update={field_name: getattr(self, field_name) + 1})


class ProgressSnapshot(ImportModel):
    processed_modules: int = 0
    processed_subjects: int = 0
    processed_lessons: int = 0
    processed_tests: int = 0
    total_modules: int = 0
    total_subjects: int = 0
    total_lessons: int = 0
    total_tests: int = 0

    def with_totals(self, totals: ImportSummary) -> ProgressSnapshot:
        return self.model_copy(
            update={
                "total_modules": totals.modules,
                "total_subjects": totals.subjects,
                "total_lessons": totals.lessons,
                "total_tests": totals.tests,
            }
        )

    def with_processed(self, task_type: str) -> ProgressSnapshot:
        field_name = f"processed_{task_type}s"
        return self.model_copy(update={field_name: getattr(self, field_name) + 1})


class FolderFrame(ImportModel):
    """One directory on the traversal worklist."""

    folder_id: str
    level: FolderLevel
    page_token: str | None = None
    module: ModuleRef | None = None
    subject: SubjectRef | None = None
    seen: int = 0
    emitted: dict[str, int] = Field(default_factory=dict)
    children: list[FolderFrame] = Field(default_factory=list)


class TraversalState(ImportModel):
    """Explicit worklist; ``frames[0]`` is the directory being paged."""

    root_folder_id: str
    frames: list[FolderFrame]


class ImportCursor(ImportModel):
    resume_state: TraversalState
    progress_snapshot: ProgressSnapshot
    totals: ImportSummary

    def encode(self) -> str:
        return encode_opaque(self)

    @classmethod
    def decode(cls, raw: str) -> ImportCursor:
        return decode_opaque(cls, raw)


class TaskListing(ImportModel):
    """Result of one bounded Task List Builder call."""

    summary: ImportSummary
    tasks: list[ImportTask]
    totals: ImportSummary
    warnings: list[str] = Field(default_factory=list)
    next_cursor: str | None = None


TOpaque = TypeVar("TOpaque", bound=BaseModel)


def encode_opaque(model: BaseModel) -> str:
    """Serialize a model to URL-safe base64 JSON."""
    payload = model.model_dump_json(by_alias=True).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii")


def decode_opaque(model_type: type[TOpaque], raw: str) -> TOpaque:
    """Inverse of :func:`encode_opaque`; any malformed input is rejected."""
    try:
        payload = base64.urlsafe_b64decode(raw.encode("ascii"))
        return model_type.model_validate_json(payload)
    except (binascii.Error, ValidationError, ValueError) as exc:
        raise InvalidCursorError("Resume state is malformed.") from exc
