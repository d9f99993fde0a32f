"""HTTP client for the Google Drive v3 REST API behind the ``DriveSource`` port."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import cast

import httpx

from curriculum_import.application.drive_source import (
    DriveCredentialKind,
    DriveCredentialStore,
    DriveSource,
    RemoteFolderPage,
)
from curriculum_import.domain.classification import RemoteItem
from curriculum_import.infrastructure.drive.config import DriveClientConfig
from curriculum_import.infrastructure.drive.errors import (
    DriveNotFoundError,
    DriveRateLimitError,
    DriveRequestError,
    DriveResponseError,
    DriveServerError,
    DriveUnavailableError,
    MissingDriveCredentialError,
)
from curriculum_import.infrastructure.retry import RetryExecutor, RetryExhaustedError

FILES_PATH = "/drive/v3/files"
LIST_FIELDS = "nextPageToken, files(id, name, mimeType)"
EXPORT_MIME_TYPE = "text/plain"
_QUOTA_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


class GoogleDriveClient(DriveSource):
    """Drive v3 adapter: paged child listing and plain-text export."""

    def __init__(
        self,
        *,
        credentials: DriveCredentialStore,
        config: DriveClientConfig | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or DriveClientConfig()
        self._credentials = credentials
        self._http_client = http_client or httpx.Client(base_url=self._config.base_url)
        self._owns_client = http_client is None
        self._executor = RetryExecutor(self._config.retry_policy, sleep=sleep)

    def close(self) -> None:
        """Close owned HTTP client."""
        if self._owns_client:
            self._http_client.close()

    def list_children(self, folder_id: str, page_token: str | None = None) -> RemoteFolderPage:
        """Return one page of non-trashed direct children of ``folder_id``."""
        params: dict[str, str | int] = {
            "q": f"'{_quote_query_value(folder_id)}' in parents and trashed = false",
            "fields": LIST_FIELDS,
            "pageSize": self._config.page_size,
            "orderBy": "name",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        if page_token:
            params["pageToken"] = page_token

        response = self._send(FILES_PATH, params)
        payload = _read_json_object(response)
        files = payload.get("files")
        if not isinstance(files, list):
            raise DriveResponseError("drive list response is missing files array.")

        items: list[RemoteItem] = []
        for entry in cast(list[object], files):
            if not isinstance(entry, dict):
                raise DriveResponseError("drive list entry has unexpected type.")
            entry_obj = _normalize_json_object(cast(dict[object, object], entry))
            file_id = entry_obj.get("id")
            name = entry_obj.get("name")
            mime_type = entry_obj.get("mimeType")
            if not isinstance(file_id, str) or not isinstance(name, str):
                raise DriveResponseError("drive list entry is missing id or name.")
            items.append(
                RemoteItem(
                    id=file_id,
                    name=name,
                    mime_type=mime_type if isinstance(mime_type, str) else "",
                )
            )

        next_token = payload.get("nextPageToken")
        return RemoteFolderPage(
            items=tuple(items),
            next_page_token=next_token if isinstance(next_token, str) and next_token else None,
        )

    def export_text(self, file_id: str) -> str:
        """Export a Google Workspace document as plain text."""
        response = self._send(f"{FILES_PATH}/{file_id}/export", {"mimeType": EXPORT_MIME_TYPE})
        return response.text

    def _send(self, path: str, params: dict[str, str | int]) -> httpx.Response:
        headers, auth_params = self._auth()

        def operation() -> httpx.Response:
            response = self._http_client.get(
                path,
                params={**params, **auth_params},
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
            _raise_for_status(response)
            return response

        try:
            return self._executor.run(operation)
        except RetryExhaustedError as exc:
            raise DriveUnavailableError(
                f"Drive is temporarily unavailable after {exc.attempts} attempts.",
                attempts=exc.attempts,
            ) from exc

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        access_token = self._credentials.get_credential(DriveCredentialKind.ACCESS_TOKEN)
        if access_token:
            return {"Authorization": f"Bearer {access_token}"}, {}

        api_key = self._credentials.get_credential(DriveCredentialKind.API_KEY)
        if api_key:
            return {}, {"key": api_key}

        raise MissingDriveCredentialError("No Drive access token or API key is configured.")


def _raise_for_status(response: httpx.Response) -> None:
    status_code = response.status_code
    if status_code < 400:
        return

    message = f"drive request failed with status={status_code}."
    detail, reason = _extract_error_detail(response)
    if detail:
        message = f"{message} detail={detail}"
    if status_code == 429 or (status_code == 403 and reason in _QUOTA_REASONS):
        raise DriveRateLimitError(message)
    if 500 <= status_code <= 599:
        raise DriveServerError(message)
    if status_code == 404:
        raise DriveNotFoundError(message)
    raise DriveRequestError(message)


def _extract_error_detail(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return (_truncate_error_detail(text) if text else None), None

    if not isinstance(payload, dict):
        return None, None
    payload_obj = _normalize_json_object(cast(dict[object, object], payload))
    error_obj = payload_obj.get("error")
    if isinstance(error_obj, str) and error_obj.strip():
        return _truncate_error_detail(error_obj.strip()), None
    if not isinstance(error_obj, dict):
        return None, None

    error = _normalize_json_object(cast(dict[object, object], error_obj))
    message = error.get("message")
    detail = _truncate_error_detail(message.strip()) if isinstance(message, str) else None
    return detail, _first_reason(error.get("errors"))


def _first_reason(errors: object) -> str | None:
    if not isinstance(errors, list):
        return None
    for item in cast(list[object], errors):
        if isinstance(item, dict):
            reason = _normalize_json_object(cast(dict[object, object], item)).get("reason")
            if isinstance(reason, str):
                return reason
    return None


def _truncate_error_detail(value: str, *, max_length: int = 300) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[:max_length]}..."


def _read_json_object(response: httpx.Response) -> dict[str, object]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise DriveResponseError("drive returned invalid JSON payload.") from exc

    if not isinstance(payload, dict):
        raise DriveResponseError("drive response root must be a JSON object.")
    return _normalize_json_object(cast(dict[object, object], payload))


def _normalize_json_object(value: dict[object, object]) -> dict[str, object]:
    normalized: dict[str, object] = {}
    for key, item in value.items():
        normalized[str(key)] = item
    return normalized


def _quote_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")
