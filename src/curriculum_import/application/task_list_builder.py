"""Bounded, resumable enumeration of a Drive folder tree into import tasks."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from uuid import uuid4

from curriculum_import.application.answer_key import (
    apply_answer_key,
    extract_questions,
    parse_answer_key,
)
from curriculum_import.application.drive_source import (
    GOOGLE_DOC_MIME_TYPE,
    DriveSource,
    DriveSourceError,
    RemoteFolderPage,
)
from curriculum_import.application.import_persistence import ImportUnitOfWorkFactory
from curriculum_import.domain.classification import (
    ClassifiedItem,
    ItemType,
    classify_item,
    get_parent_prefix,
    order_from_code,
    resolve_folder_id,
    structural_key,
    validate_code_for_type,
    validate_parent_child_code,
)
from curriculum_import.domain.errors import (
    CourseNotFoundError,
    InvalidCursorError,
    ListingError,
    UnsupportedCodeError,
)
from curriculum_import.domain.import_tasks import (
    ContentType,
    FolderFrame,
    FolderLevel,
    ImportCursor,
    ImportSummary,
    ImportTask,
    LessonInfo,
    LessonTask,
    ModuleRef,
    ModuleTask,
    ProgressSnapshot,
    SubjectRef,
    SubjectTask,
    TaskListing,
    TestInfo,
    TestTask,
    TraversalState,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_LISTING_BATCH = 100
CURSOR_KEY_BYTES = 32
DRIVE_FILE_URL = "https://drive.google.com/file/d/{file_id}/view"

_EXPECTED_CHILD = {
    FolderLevel.ROOT: (ItemType.MODULE, True),
    FolderLevel.MODULE: (ItemType.SUBJECT, True),
    FolderLevel.SUBJECT: (ItemType.LESSON, False),
}


@dataclass
class _PageResult:
    frame: FolderFrame
    tasks: list[ImportTask] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)
    warnings: list[str] = field(default_factory=list)


class TaskListBuilder:
    """Walk the remote tree with an explicit worklist, one page at a time.

    ``frames[0]`` of the worklist is paged until the remote reports no
    further page; its child folders are then pushed to the front so the
    walk stays depth-first and tasks come out in hierarchy order. The call
    stops between pages once the item budget is spent and returns an
    opaque cursor holding the worklist, signed with ``cursor_key``. Without
    a key, a random one is drawn and cursors only resume within this
    builder.
    """

    def __init__(
        self,
        source: DriveSource,
        uow_factory: ImportUnitOfWorkFactory,
        *,
        max_items: int = DEFAULT_LISTING_BATCH,
        cursor_key: bytes | None = None,
    ) -> None:
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        self._source = source
        self._uow_factory = uow_factory
        self._max_items = max_items
        self._cursor_key = cursor_key or secrets.token_bytes(CURSOR_KEY_BYTES)

    def build(
        self,
        drive_url: str,
        course_id: str,
        user_id: str,
        cursor: str | None = None,
        *,
        max_items: int | None = None,
    ) -> TaskListing:
        """Return the next bounded batch of tasks for the folder behind ``drive_url``."""
        correlation_id = str(uuid4())
        folder_id = resolve_folder_id(drive_url)
        with self._uow_factory() as uow:
            course = uow.curriculum.get_course(course_id)
        if course is None:
            raise CourseNotFoundError(f"Course {course_id} does not exist.")

        if cursor:
            state = self.read_cursor(cursor)
            if state.resume_state.root_folder_id != folder_id:
                raise InvalidCursorError("Cursor belongs to a different Drive folder.")
            frames = list(state.resume_state.frames)
            totals = state.totals
            snapshot = state.progress_snapshot
        else:
            frames = [FolderFrame(folder_id=folder_id, level=FolderLevel.ROOT)]
            totals = ImportSummary()
            snapshot = ProgressSnapshot()

        budget = max_items if max_items is not None else self._max_items
        if budget < 1:
            raise ValueError("max_items must be >= 1")
        summary = ImportSummary()
        tasks: list[ImportTask] = []
        warnings: list[str] = []
        seen = 0

        while frames and seen < budget:
            frame = frames[0]
            try:
                page = self._source.list_children(frame.folder_id, frame.page_token)
            except DriveSourceError as exc:
                if frame.level is FolderLevel.ROOT:
                    LOGGER.exception(
                        (
                            "event=drive_listing_failed correlation_id=%s course_id=%s "
                            "user_id=%s folder_id=%s error_type=%s"
                        ),
                        correlation_id,
                        course_id,
                        user_id,
                        frame.folder_id,
                        exc.__class__.__name__,
                    )
                    raise ListingError(
                        f"Could not list Drive folder {frame.folder_id}: {exc}",
                        folder_id=frame.folder_id,
                    ) from exc

                warnings.append(f"Skipped folder '{_frame_label(frame)}': {exc}")
                LOGGER.warning(
                    (
                        "event=drive_subtree_skipped correlation_id=%s course_id=%s "
                        "folder_id=%s error_type=%s"
                    ),
                    correlation_id,
                    course_id,
                    frame.folder_id,
                    exc.__class__.__name__,
                )
                frames[0:1] = _detach_children(frame)
                continue

            result = self._process_page(course_id, frame, page)
            tasks.extend(result.tasks)
            warnings.extend(result.warnings)
            summary = summary.plus(result.summary)
            seen += len(page.items)

            if page.next_page_token:
                frames[0] = result.frame.model_copy(update={"page_token": page.next_page_token})
            else:
                frames[0:1] = _detach_children(result.frame)

        totals = totals.plus(summary)
        next_cursor: str | None = None
        if frames:
            next_cursor = self._write_cursor(
                ImportCursor(
                    resume_state=TraversalState(root_folder_id=folder_id, frames=frames),
                    progress_snapshot=snapshot.with_totals(totals),
                    totals=totals,
                )
            )

        LOGGER.info(
            (
                "event=drive_listing_batch correlation_id=%s course_id=%s user_id=%s "
                "folder_id=%s items_seen=%s tasks=%s warnings=%s has_more=%s"
            ),
            correlation_id,
            course_id,
            user_id,
            folder_id,
            seen,
            len(tasks),
            len(warnings),
            next_cursor is not None,
        )
        return TaskListing(
            summary=summary,
            tasks=tasks,
            totals=totals,
            warnings=warnings,
            next_cursor=next_cursor,
        )

    def read_cursor(self, raw: str) -> ImportCursor:
        """Verify and decode a cursor issued by this builder's key."""
        payload, _, signature = raw.rpartition(".")
        if not payload or not hmac.compare_digest(
            signature.encode("utf-8"), self._signature(payload).encode("ascii")
        ):
            raise InvalidCursorError("Resume state is malformed.")
        return ImportCursor.decode(payload)

    def _write_cursor(self, cursor: ImportCursor) -> str:
        payload = cursor.encode()
        return f"{payload}.{self._signature(payload)}"

    def _signature(self, payload: str) -> str:
        digest = hmac.new(self._cursor_key, payload.encode("utf-8"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def _process_page(
        self,
        course_id: str,
        frame: FolderFrame,
        page: RemoteFolderPage,
    ) -> _PageResult:
        result = _PageResult(frame=frame)
        classified = [classify_item(item) for item in page.items]

        if frame.level is FolderLevel.ROOT:
            existing = self._existing_ids(course_id, classified, module_level=True)
        elif frame.level is FolderLevel.MODULE and frame.module is not None:
            existing = self._existing_ids(
                course_id,
                classified,
                module_level=False,
                parent_key=frame.module.import_key,
            )
        else:
            existing = {}

        children = list(frame.children)
        emitted = dict(frame.emitted)
        seen = frame.seen
        for item in classified:
            seen += 1
            if item.type is ItemType.UNKNOWN:
                result.summary = result.summary.incremented(ItemType.UNKNOWN)
                result.warnings.append(
                    f"Could not classify '{item.name}' in '{_frame_label(frame)}'."
                )
                continue

            code_warning = validate_code_for_type(item.code, item.type)
            if code_warning:
                result.warnings.append(code_warning)

            if not _is_expected(frame.level, item):
                result.warnings.append(_placement_warning(frame, item))
                continue

            position = emitted.get(item.type.value, 0) + 1
            emitted[item.type.value] = position
            order = order_from_code(item.code, position)

            match frame.level:
                case FolderLevel.ROOT:
                    module = ModuleRef(
                        original_index=seen - 1,
                        name=item.name,
                        code=item.code,
                        order=order,
                        import_key=structural_key(item.code, item.name),
                        drive_id=item.id,
                    )
                    module = module.model_copy(
                        update={"existing_id": existing.get(module.import_key)}
                    )
                    result.tasks.append(ModuleTask(id=f"module:{item.id}", module=module))
                    children.append(
                        FolderFrame(folder_id=item.id, level=FolderLevel.MODULE, module=module)
                    )
                case FolderLevel.MODULE if frame.module is not None:
                    subject = self._subject_ref(frame.module, item, seen - 1, order, result)
                    subject = subject.model_copy(
                        update={"existing_id": existing.get(subject.import_key)}
                    )
                    result.tasks.append(
                        SubjectTask(id=f"subject:{item.id}", module=frame.module, subject=subject)
                    )
                    children.append(
                        FolderFrame(
                            folder_id=item.id,
                            level=FolderLevel.SUBJECT,
                            module=frame.module,
                            subject=subject,
                        )
                    )
                case FolderLevel.SUBJECT if frame.module is not None and frame.subject is not None:
                    result.tasks.append(
                        self._content_task(frame.module, frame.subject, item, order, result)
                    )
                case _:
                    result.warnings.append(_placement_warning(frame, item))
                    continue

            result.summary = result.summary.incremented(item.type)

        result.frame = frame.model_copy(
            update={"children": children, "emitted": emitted, "seen": seen}
        )
        return result

    def _existing_ids(
        self,
        course_id: str,
        items: list[ClassifiedItem],
        *,
        module_level: bool,
        parent_key: str | None = None,
    ) -> dict[str, str]:
        expected = ItemType.MODULE if module_level else ItemType.SUBJECT
        keys = [
            structural_key(item.code, item.name, parent_key)
            for item in items
            if item.type is expected and item.is_folder
        ]
        if not keys:
            return {}

        with self._uow_factory() as uow:
            if module_level:
                return uow.curriculum.find_module_ids(course_id, keys)
            return uow.curriculum.find_subject_ids(course_id, keys)

    @staticmethod
    def _subject_ref(
        module: ModuleRef,
        item: ClassifiedItem,
        index: int,
        order: int,
        result: _PageResult,
    ) -> SubjectRef:
        module_code = module.code
        if item.code:
            parent_warning = validate_parent_child_code(module.code, item.code)
            if parent_warning:
                result.warnings.append(parent_warning)
            try:
                module_code = get_parent_prefix(item.code) or module.code
            except UnsupportedCodeError as exc:
                result.warnings.append(str(exc))

        return SubjectRef(
            original_index=index,
            name=item.name,
            code=item.code,
            order=order,
            import_key=structural_key(item.code, item.name, module.import_key),
            drive_id=item.id,
            module_code=module_code,
        )

    def _content_task(
        self,
        module: ModuleRef,
        subject: SubjectRef,
        item: ClassifiedItem,
        order: int,
        result: _PageResult,
    ) -> ImportTask:
        if item.type is ItemType.LESSON and item.code:
            parent_warning = validate_parent_child_code(subject.code, item.code)
            if parent_warning:
                result.warnings.append(parent_warning)

        import_key = structural_key(item.code, item.name, subject.import_key)
        content_url = DRIVE_FILE_URL.format(file_id=item.id)
        if item.type is ItemType.LESSON:
            lesson = LessonInfo(
                name=item.name,
                code=item.code,
                order=order,
                import_key=import_key,
                drive_id=item.id,
                mime_type=item.mime_type,
                content_type=(
                    ContentType.VIDEO if "video" in item.mime_type else ContentType.TEXT
                ),
                content_url=content_url,
            )
            return LessonTask(id=f"lesson:{item.id}", module=module, subject=subject, lesson=lesson)

        test = TestInfo(
            name=item.name,
            code=item.code,
            order=order,
            import_key=import_key,
            drive_id=item.id,
            mime_type=item.mime_type,
            content_url=content_url,
        )
        test = self._with_answer_key(test, result)
        return TestTask(id=f"test:{item.id}", module=module, subject=subject, test=test)

    def _with_answer_key(self, test: TestInfo, result: _PageResult) -> TestInfo:
        if test.mime_type != GOOGLE_DOC_MIME_TYPE:
            result.warnings.append(
                f"Test '{test.name}' is not a Google Doc; answer key must be entered manually."
            )
            return test.model_copy(update={"requires_manual_answer_key": True})

        try:
            text = self._source.export_text(test.drive_id)
        except DriveSourceError as exc:
            result.warnings.append(f"Could not export test '{test.name}': {exc}")
            return test.model_copy(update={"requires_manual_answer_key": True})

        answer_key = parse_answer_key(text)
        questions = apply_answer_key(extract_questions(text), answer_key)
        if not answer_key:
            result.warnings.append(
                f"No answer key found in test '{test.name}'; it must be entered manually."
            )
        return test.model_copy(
            update={
                "answer_key": answer_key or None,
                "questions": questions or None,
                "requires_manual_answer_key": not answer_key,
            }
        )


def _is_expected(level: FolderLevel, item: ClassifiedItem) -> bool:
    expected_type, expects_folder = _EXPECTED_CHILD[level]
    if item.is_folder != expects_folder:
        return False
    if level is FolderLevel.SUBJECT:
        return item.type in {ItemType.LESSON, ItemType.TEST}
    return item.type is expected_type


def _placement_warning(frame: FolderFrame, item: ClassifiedItem) -> str:
    kind = "folder" if item.is_folder else "file"
    return (
        f"Unexpected {item.type.value} {kind} '{item.name}' inside "
        f"{frame.level.value} '{_frame_label(frame)}'; skipped."
    )


def _frame_label(frame: FolderFrame) -> str:
    if frame.subject is not None:
        return frame.subject.name
    if frame.module is not None:
        return frame.module.name
    return frame.folder_id


def _detach_children(frame: FolderFrame) -> list[FolderFrame]:
    return list(frame.children)
