"""Configuration for the Google Drive REST client."""

from __future__ import annotations

import os
from dataclasses import dataclass

from curriculum_import.infrastructure.drive.errors import DriveConfigurationError
from curriculum_import.infrastructure.retry import RetryPolicy

DRIVE_PAGE_SIZE_ENV_VAR = "CURRICULUM_IMPORT_DRIVE_PAGE_SIZE"
DRIVE_TIMEOUT_ENV_VAR = "CURRICULUM_IMPORT_DRIVE_TIMEOUT"
DEFAULT_BASE_URL = "https://www.googleapis.com"
DEFAULT_PAGE_SIZE = 100
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_PAGE_SIZE = 1000


@dataclass(frozen=True)
class DriveClientConfig:
    """Drive v3 endpoint, paging and retry settings."""

    base_url: str = DEFAULT_BASE_URL
    page_size: int = DEFAULT_PAGE_SIZE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_policy: RetryPolicy = RetryPolicy()

    def __post_init__(self) -> None:
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise DriveConfigurationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {self.page_size}."
            )
        if self.timeout_seconds <= 0:
            raise DriveConfigurationError("timeout_seconds must be > 0.")


def default_drive_config() -> DriveClientConfig:
    """Build config from environment overrides with safe fallbacks."""
    return DriveClientConfig(
        page_size=min(
            MAX_PAGE_SIZE,
            max(1, _resolve_int(env_var=DRIVE_PAGE_SIZE_ENV_VAR, fallback=DEFAULT_PAGE_SIZE)),
        ),
        timeout_seconds=_resolve_float(
            env_var=DRIVE_TIMEOUT_ENV_VAR,
            fallback=DEFAULT_TIMEOUT_SECONDS,
        ),
    )


def _resolve_int(*, env_var: str, fallback: int) -> int:
    resolved = os.environ.get(env_var, "").strip()
    if not resolved:
        return fallback
    try:
        return int(resolved)
    except ValueError:
        return fallback


def _resolve_float(*, env_var: str, fallback: float) -> float:
    resolved = os.environ.get(env_var, "").strip()
    if not resolved:
        return fallback
    try:
        value = float(resolved)
    except ValueError:
        return fallback
    return value if value > 0 else fallback
