"""Error taxonomy of the Drive import engine."""

from __future__ import annotations


class ImportEngineError(RuntimeError):
    """Base error for import engine failures."""


class InvalidSourceError(ImportEngineError, ValueError):
    """Raised when the Drive URL is malformed or not a folder URL."""


class InvalidCursorError(ImportEngineError, ValueError):
    """Raised when a listing cursor or resume state cannot be decoded."""


class CourseNotFoundError(ImportEngineError):
    """Raised when the import targets a course that does not exist."""


class ClassificationWarning(ImportEngineError):
    """Item name could not be mapped to a curriculum level."""


class UnsupportedCodeError(ClassificationWarning):
    """Structural code has a digit length with no hierarchy level."""


class ListingError(ImportEngineError):
    """Remote enumeration of a folder failed."""

    def __init__(self, message: str, *, folder_id: str) -> None:
        super().__init__(message)
        self.folder_id = folder_id


class WriteError(ImportEngineError):
    """Persisting a single import task failed."""

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class AuthorizationError(ImportEngineError):
    """Caller may not read the requested progress; detail is never exposed."""

    def __init__(self) -> None:
        super().__init__("access denied")


class ProgressNotFoundError(ImportEngineError):
    """Raised when no progress row exists for the import id."""


class ImportConflictError(ImportEngineError):
    """Raised when another live import already targets the same course."""


class RunnerError(ImportEngineError):
    """Invocation-level failure after the runner's retry budget."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
