"""Application contracts for the remote folder source."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from curriculum_import.domain.classification import RemoteItem

GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"


class DriveCredentialKind(StrEnum):
    """Supported credential flavours for the Drive REST API."""

    ACCESS_TOKEN = "access_token"
    API_KEY = "api_key"


@dataclass(frozen=True)
class RemoteFolderPage:
    """One page of direct children of a remote folder."""

    items: tuple[RemoteItem, ...]
    next_page_token: str | None = None


class DriveSourceError(RuntimeError):
    """Base error for remote source failures visible to the application layer."""


class DriveSourceUnavailableError(DriveSourceError):
    """Temporary remote failure; the same call may succeed later."""


class DriveSourceRejectedError(DriveSourceError):
    """Remote source refused the request (missing folder, no permission)."""


class MissingDriveCredentialsError(DriveSourceError):
    """No Drive credential is configured in the key store."""


class DriveSource(Protocol):
    """Port for paging a remote folder and exporting documents."""

    def list_children(self, folder_id: str, page_token: str | None = None) -> RemoteFolderPage:
        """Return one page of direct children of ``folder_id``."""
        ...

    def export_text(self, file_id: str) -> str:
        """Export a native document as plain text."""
        ...


class DriveCredentialStore(Protocol):
    """Secure credential store port for Drive access."""

    def set_credential(self, kind: DriveCredentialKind, secret: str) -> None:
        """Persist credential for kind."""
        ...

    def get_credential(self, kind: DriveCredentialKind) -> str | None:
        """Load credential for kind or return None."""
        ...

    def delete_credential(self, kind: DriveCredentialKind) -> None:
        """Delete credential for kind if present."""
        ...
