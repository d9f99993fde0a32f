"""Google Drive infrastructure package."""

from curriculum_import.infrastructure.drive.client import GoogleDriveClient
from curriculum_import.infrastructure.drive.config import DriveClientConfig, default_drive_config
from curriculum_import.infrastructure.drive.factory import create_default_drive_client

__all__ = [
    "DriveClientConfig",
    "GoogleDriveClient",
    "create_default_drive_client",
    "default_drive_config",
]
