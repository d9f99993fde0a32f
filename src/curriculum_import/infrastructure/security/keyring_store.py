"""Keyring-backed Drive credential storage adapter."""

from __future__ import annotations

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from curriculum_import.application.drive_source import DriveCredentialKind, DriveCredentialStore


class KeyringStoreError(RuntimeError):
    """Raised when keyring backend operation fails."""


class KeyringDriveCredentialStore(DriveCredentialStore):
    """Store Drive credentials using OS keyring backend."""

    def __init__(self, service_name: str = "curriculum-import") -> None:
        self._service_name = service_name

    def set_credential(self, kind: DriveCredentialKind, secret: str) -> None:
        """Persist credential for kind."""
        normalized = secret.strip()
        if not normalized:
            raise ValueError("secret must not be empty")

        try:
            keyring.set_password(self._service_name, self._username(kind), normalized)
        except KeyringError as exc:
            raise KeyringStoreError(f"Failed to persist Drive {kind.value}.") from exc

    def get_credential(self, kind: DriveCredentialKind) -> str | None:
        """Load credential or return None."""
        try:
            secret = keyring.get_password(self._service_name, self._username(kind))
        except KeyringError as exc:
            raise KeyringStoreError(f"Failed to read Drive {kind.value}.") from exc

        return secret if secret else None

    def delete_credential(self, kind: DriveCredentialKind) -> None:
        """Delete credential; no-op if it is already absent."""
        try:
            keyring.delete_password(self._service_name, self._username(kind))
        except PasswordDeleteError:
            return
        except KeyringError as exc:
            raise KeyringStoreError(f"Failed to delete Drive {kind.value}.") from exc

    @staticmethod
    def _username(kind: DriveCredentialKind) -> str:
        return f"drive:{kind.value}"
