"""Background runner infrastructure package."""

from curriculum_import.infrastructure.runner.local_runner import (
    InProcessImportRunner,
    is_retryable_invocation_error,
)

__all__ = ["InProcessImportRunner", "is_retryable_invocation_error"]
