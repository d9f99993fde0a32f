"""Name-based classification of remote Drive items into curriculum levels.

Structural codes look like ``MAT020101``: one to four letters followed by
two (module), four (subject) or six (lesson) digits. Every two digits
narrow the position inside the parent, so ``MAT020101`` belongs to subject
``MAT0201`` which belongs to module ``MAT02``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum, StrEnum

from curriculum_import.domain.errors import InvalidSourceError, UnsupportedCodeError

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class ItemType(StrEnum):
    """Curriculum level detected from an item name."""

    MODULE = "module"
    SUBJECT = "subject"
    LESSON = "lesson"
    TEST = "test"
    UNKNOWN = "unknown"


class CodeLevel(IntEnum):
    """Digit length of a structural code mapped to its hierarchy level."""

    MODULE = 2
    SUBJECT = 4
    LESSON = 6


@dataclass(frozen=True)
class Classification:
    """Detected type plus structural code for one name."""

    type: ItemType
    code: str | None
    prefix: str | None


@dataclass(frozen=True)
class RemoteItem:
    """Item as reported by the remote folder listing."""

    id: str
    name: str
    mime_type: str

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE


@dataclass(frozen=True)
class ClassifiedItem:
    """Remote item enriched with its classification."""

    id: str
    name: str
    mime_type: str
    type: ItemType
    code: str | None
    prefix: str | None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE


_TEST_MARKER = re.compile("test", re.IGNORECASE)
_LESSON_CODE = re.compile(r"^[A-Za-z]{1,4}\d{6}")
_SUBJECT_CODE = re.compile(r"^[A-Za-z]{1,4}\d{4}")
_MODULE_CODE = re.compile(r"^[A-Za-z]{1,4}\d{2}")
_LEADING_CODE = re.compile(r"^([A-Za-z]{1,4}\d{2,6})")

_DESCRIPTIVE_MODULE = re.compile(r"^(?:m[oó]dulo|module|mod)\s*(\d+|[a-z])\b", re.IGNORECASE)
_DESCRIPTIVE_SUBJECT = re.compile(r"^(?:disciplina|subject|disc)\s*(\d+|[a-z])\b", re.IGNORECASE)
_DESCRIPTIVE_LESSON = re.compile(r"^(?:aula|lesson|class)\s*(\d+|[a-z])\b", re.IGNORECASE)

_DESCRIPTIVE_PATTERNS: tuple[tuple[re.Pattern[str], ItemType, str, CodeLevel], ...] = (
    (_DESCRIPTIVE_MODULE, ItemType.MODULE, "MOD", CodeLevel.MODULE),
    (_DESCRIPTIVE_SUBJECT, ItemType.SUBJECT, "DISC", CodeLevel.SUBJECT),
    (_DESCRIPTIVE_LESSON, ItemType.LESSON, "AULA", CodeLevel.LESSON),
)

_FOLDER_URL_PATTERNS = (
    re.compile(r"/folders/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]+)"),
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
)
_BARE_FOLDER_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


def detect_item_type(name: str) -> ItemType:
    """Return the curriculum level for a name, first matching rule wins.

    Longer digit runs are checked before shorter ones because a lesson code
    also starts with a valid subject and module code.
    """
    if _TEST_MARKER.search(name):
        return ItemType.TEST
    if _LESSON_CODE.match(name):
        return ItemType.LESSON
    if _SUBJECT_CODE.match(name):
        return ItemType.SUBJECT
    if _MODULE_CODE.match(name):
        return ItemType.MODULE

    for pattern, item_type, _, _ in _DESCRIPTIVE_PATTERNS:
        if pattern.match(name):
            return item_type
    return ItemType.UNKNOWN


def extract_code(name: str) -> str | None:
    """Return the leading structural code of a name, if any."""
    match = _LEADING_CODE.match(name)
    if match:
        return match.group(1)

    for pattern, _, code_prefix, level in _DESCRIPTIVE_PATTERNS:
        descriptive = pattern.match(name)
        if descriptive:
            token = descriptive.group(1)
            if token.isdigit():
                return f"{code_prefix}{token.zfill(level.value)}"
            return f"{code_prefix}{token.upper()}"
    return None


def extract_prefix(code: str) -> str:
    """Strip digits from a code, keeping the letter run."""
    return re.sub(r"\d", "", code)


def extract_digits(code: str) -> str:
    return re.sub(r"[A-Za-z]", "", code)


def code_level(code: str) -> CodeLevel:
    """Map a code to its level; raise for unsupported digit lengths."""
    digits = extract_digits(code)
    try:
        return CodeLevel(len(digits))
    except ValueError:
        raise UnsupportedCodeError(
            f"Code '{code}' has {len(digits)} digits; expected 2, 4 or 6."
        ) from None


def get_parent_prefix(code: str) -> str | None:
    """Return the code of the parent level, or None for modules."""
    prefix = extract_prefix(code)
    digits = extract_digits(code)
    match code_level(code):
        case CodeLevel.LESSON:
            return prefix + digits[:4]
        case CodeLevel.SUBJECT:
            return prefix + digits[:2]
        case CodeLevel.MODULE:
            return None


def classify(name: str) -> Classification:
    """Classify a name into type, structural code and letter prefix."""
    code = extract_code(name)
    return Classification(
        type=detect_item_type(name),
        code=code,
        prefix=extract_prefix(code) if code else None,
    )


def classify_item(item: RemoteItem) -> ClassifiedItem:
    classification = classify(item.name)
    return ClassifiedItem(
        id=item.id,
        name=item.name,
        mime_type=item.mime_type,
        type=classification.type,
        code=classification.code,
        prefix=classification.prefix,
    )


def validate_code_for_type(code: str | None, item_type: ItemType) -> str | None:
    """Return a warning when the code length does not fit the detected type."""
    if not code or item_type is ItemType.UNKNOWN:
        return None

    digits = extract_digits(code)
    if not digits:
        return None

    expected = {
        ItemType.MODULE: CodeLevel.MODULE,
        ItemType.SUBJECT: CodeLevel.SUBJECT,
        ItemType.LESSON: CodeLevel.LESSON,
        ItemType.TEST: CodeLevel.LESSON,
    }[item_type]
    if len(digits) != expected.value:
        return (
            f"Code '{code}' for {item_type.value} should have {expected.value} digits "
            f"(has {len(digits)})."
        )
    return None


def validate_parent_child_code(parent_code: str | None, child_code: str | None) -> str | None:
    """Return a warning when a child code does not extend its parent code."""
    if not parent_code or not child_code:
        return None

    parent_prefix = extract_prefix(parent_code)
    child_prefix = extract_prefix(child_code)
    if parent_prefix.upper() != child_prefix.upper():
        return f"Prefix mismatch: parent '{parent_code}', child '{child_code}'."

    if not extract_digits(child_code).startswith(extract_digits(parent_code)):
        return f"Code '{child_code}' does not belong to parent '{parent_code}'."
    return None


def order_from_code(code: str | None, fallback: int) -> int:
    """Use the last two code digits as position, else the encounter order."""
    if code:
        digits = extract_digits(code)
        if len(digits) >= 2 and int(digits[-2:]) > 0:
            return int(digits[-2:])
    return fallback


def structural_key(code: str | None, name: str, parent_key: str | None = None) -> str:
    """Return the idempotency key of an item within its course."""
    if code:
        return code.upper()
    normalized = " ".join(name.split()).casefold()
    if parent_key:
        return f"{parent_key}/{normalized}"
    return normalized


def resolve_folder_id(drive_url: str) -> str:
    """Extract the folder id from a Drive folder URL or accept a bare id."""
    candidate = drive_url.strip()
    for pattern in _FOLDER_URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            return match.group(1)

    if candidate and _BARE_FOLDER_ID.match(candidate):
        return candidate
    raise InvalidSourceError("Drive URL does not point to a folder.")
