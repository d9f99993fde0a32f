"""Domain model for import progress snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class ImportPhase(StrEnum):
    """Lifecycle phase of one import."""

    LISTING = "listing"
    WRITING = "writing"
    CONTINUING = "continuing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset({ImportPhase.COMPLETED, ImportPhase.ERROR, ImportPhase.CANCELLED})


@dataclass(frozen=True)
class ImportProgress:
    """Durable progress record polled by the client."""

    import_id: str
    user_id: str
    course_id: str | None
    job_id: str | None
    current_step: str
    current_item: str | None
    phase: ImportPhase
    completed: bool
    percentage: int | None
    total_modules: int
    processed_modules: int
    total_subjects: int
    processed_subjects: int
    total_lessons: int
    processed_lessons: int
    total_tests: int
    processed_tests: int
    errors: tuple[str, ...]
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.completed or self.phase in TERMINAL_PHASES

    @property
    def processed_total(self) -> int:
        return (
            self.processed_modules
            + self.processed_subjects
            + self.processed_lessons
            + self.processed_tests
        )

    @property
    def expected_total(self) -> int:
        return self.total_modules + self.total_subjects + self.total_lessons + self.total_tests


@dataclass(frozen=True)
class ProgressUpdate:
    """Partial progress mutation; ``None`` leaves the stored value untouched."""

    current_step: str | None = None
    current_item: str | None = None
    phase: ImportPhase | None = None
    completed: bool | None = None
    percentage: int | None = None
    total_modules: int | None = None
    processed_modules: int | None = None
    total_subjects: int | None = None
    processed_subjects: int | None = None
    total_lessons: int | None = None
    processed_lessons: int | None = None
    total_tests: int | None = None
    processed_tests: int | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProgressAccess:
    """Credentials presented by a progress reader.

    A session reader supplies ``user_id``; a capability reader supplies
    ``job_id`` and ``token`` instead.
    """

    user_id: str | None = None
    job_id: str | None = None
    token: str | None = None


COUNTER_FIELDS = (
    "total_modules",
    "processed_modules",
    "total_subjects",
    "processed_subjects",
    "total_lessons",
    "processed_lessons",
    "total_tests",
    "processed_tests",
)


def compute_percentage(processed: int, total: int) -> int:
    """Return ``round(100 * processed / total)`` clamped to 0..100; zero total is 0."""
    if total <= 0:
        return 0
    return max(0, min(100, round(100 * processed / total)))


def is_valid_percentage(value: int | None) -> bool:
    return value is not None and 0 <= value <= 100


def effective_percentage(progress: ImportProgress) -> int:
    """Stored percentage if valid, otherwise derived from the counters."""
    if progress.percentage is not None and is_valid_percentage(progress.percentage):
        return progress.percentage
    return compute_percentage(progress.processed_total, progress.expected_total)


def new_progress(
    import_id: str,
    user_id: str,
    *,
    course_id: str | None,
    job_id: str | None,
    created_at: datetime,
) -> ImportProgress:
    """Initial progress row for an import that has not listed anything yet."""
    return ImportProgress(
        import_id=import_id,
        user_id=user_id,
        course_id=course_id,
        job_id=job_id,
        current_step="Import requested",
        current_item=None,
        phase=ImportPhase.LISTING,
        completed=False,
        percentage=0,
        total_modules=0,
        processed_modules=0,
        total_subjects=0,
        processed_subjects=0,
        total_lessons=0,
        processed_lessons=0,
        total_tests=0,
        processed_tests=0,
        errors=(),
        created_at=created_at,
        updated_at=created_at,
    )
