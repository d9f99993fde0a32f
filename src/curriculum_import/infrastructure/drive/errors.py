"""Exceptions for Google Drive infrastructure components."""

from __future__ import annotations

from curriculum_import.application.drive_source import (
    DriveSourceError,
    DriveSourceRejectedError,
    DriveSourceUnavailableError,
    MissingDriveCredentialsError,
)
from curriculum_import.infrastructure.retry import RetryableError


class DriveInfrastructureError(RuntimeError):
    """Base error for Drive infrastructure failures."""


class DriveConfigurationError(DriveInfrastructureError):
    """Raised when Drive client configuration is invalid."""


class MissingDriveCredentialError(MissingDriveCredentialsError, DriveInfrastructureError):
    """Raised when neither an access token nor an API key is stored."""


class DriveRequestError(DriveSourceRejectedError, DriveInfrastructureError):
    """Raised when Drive rejects request as non-retryable client error."""


class DriveNotFoundError(DriveRequestError):
    """Raised on HTTP 404: folder or file is missing or not shared."""


class DriveRateLimitError(RetryableError, DriveInfrastructureError):
    """Raised on HTTP 429 or quota 403 from Drive."""


class DriveServerError(RetryableError, DriveInfrastructureError):
    """Raised on retryable Drive server-side errors (HTTP 5xx)."""


class DriveResponseError(DriveSourceError, DriveInfrastructureError):
    """Raised when Drive response shape cannot be parsed safely."""


class DriveUnavailableError(DriveSourceUnavailableError, DriveInfrastructureError):
    """User-safe wrapper once retries of temporary Drive failures are exhausted."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
