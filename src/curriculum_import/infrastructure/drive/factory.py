"""Factory helpers for default Drive client wiring."""

from __future__ import annotations

from curriculum_import.application.drive_source import DriveCredentialStore
from curriculum_import.infrastructure.drive.client import GoogleDriveClient
from curriculum_import.infrastructure.drive.config import DriveClientConfig, default_drive_config
from curriculum_import.infrastructure.security.keyring_store import KeyringDriveCredentialStore


def create_default_drive_client(
    *,
    credentials: DriveCredentialStore | None = None,
    config: DriveClientConfig | None = None,
) -> GoogleDriveClient:
    """Construct Drive client with keyring credentials and environment config."""
    return GoogleDriveClient(
        credentials=credentials or KeyringDriveCredentialStore(),
        config=config or default_drive_config(),
    )
