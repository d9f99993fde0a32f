"""Security infrastructure package."""

from curriculum_import.infrastructure.security.keyring_store import (
    KeyringDriveCredentialStore,
    KeyringStoreError,
)

__all__ = ["KeyringDriveCredentialStore", "KeyringStoreError"]
