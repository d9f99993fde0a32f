"""HTTP API tests for the import endpoints through FastAPI's TestClient."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi.testclient import TestClient

from curriculum_import.application.import_jobs import ImportRequestedEvent
from curriculum_import.application.import_orchestrator import (
    ImportBudget,
    ImportOrchestrator,
    ImportRunResult,
)
from curriculum_import.application.import_persistence import ImportUnitOfWorkFactory
from curriculum_import.infrastructure.factory import ImportServices, build_import_services
from curriculum_import.presentation.http.app import USER_ID_HEADER, create_app
from tests.drive_fixtures import make_course_tree

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
DRIVE_URL = "https://drive.google.com/drive/folders/root"
OWNER = {USER_ID_HEADER: "user-1"}


class _HeldRunner:
    """Collect events without executing them so imports stay live."""

    def __init__(self, _: ImportOrchestrator) -> None:
        self.events: list[ImportRequestedEvent] = []

    def send(self, event: ImportRequestedEvent) -> None:
        self.events.append(event)

    def drain(self) -> list[ImportRunResult]:
        return []


def _services(uow_factory: ImportUnitOfWorkFactory, *, hold: bool = False) -> ImportServices:
    if hold:
        return build_import_services(
            uow_factory=uow_factory,
            source=make_course_tree(),
            budget=ImportBudget(),
            runner_factory=_HeldRunner,
            now=lambda: FIXED_NOW,
        )
    return build_import_services(
        uow_factory=uow_factory,
        source=make_course_tree(),
        budget=ImportBudget(),
        now=lambda: FIXED_NOW,
    )


def _start(client: TestClient, course_id: str = "course-1") -> dict[str, str]:
    response = client.post(
        "/api/import-from-drive",
        json={"driveUrl": DRIVE_URL, "courseId": course_id},
        headers=OWNER,
    )
    assert response.status_code == 202
    return response.json()


def test_health_endpoint(uow_factory: ImportUnitOfWorkFactory) -> None:
    client = TestClient(create_app(_services(uow_factory)))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_endpoints_require_session(uow_factory: ImportUnitOfWorkFactory) -> None:
    client = TestClient(create_app(_services(uow_factory)))

    listing = client.get(
        "/api/import-from-drive/list",
        params={"driveUrl": DRIVE_URL, "courseId": "course-1"},
    )
    start = client.post(
        "/api/import-from-drive",
        json={"driveUrl": DRIVE_URL, "courseId": "course-1"},
    )

    assert listing.status_code == 401
    assert start.status_code == 401


def test_list_endpoint_returns_camel_case_tasks(uow_factory: ImportUnitOfWorkFactory) -> None:
    client = TestClient(create_app(_services(uow_factory)))

    response = client.get(
        "/api/import-from-drive/list",
        params={"driveUrl": DRIVE_URL, "courseId": "course-1"},
        headers=OWNER,
    )

    assert response.status_code == 200
    payload = response.json()
    assert [task["type"] for task in payload["tasks"]] == [
        "module",
        "subject",
        "lesson",
        "lesson",
        "test",
    ]
    assert payload["nextCursor"] is None
    assert payload["totals"]["lessons"] == 2
    assert payload["tasks"][2]["lesson"]["importKey"] == "MAT010101"
    assert payload["tasks"][4]["test"]["requiresManualAnswerKey"] is False


def test_list_endpoint_rejects_bad_url_and_unknown_course(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    client = TestClient(create_app(_services(uow_factory)))

    bad_url = client.get(
        "/api/import-from-drive/list",
        params={"driveUrl": "https://example.com/a b", "courseId": "course-1"},
        headers=OWNER,
    )
    unknown_course = client.get(
        "/api/import-from-drive/list",
        params={"driveUrl": DRIVE_URL, "courseId": "missing"},
        headers=OWNER,
    )
    bad_cursor = client.get(
        "/api/import-from-drive/list",
        params={"driveUrl": DRIVE_URL, "courseId": "course-1", "resume": "garbage"},
        headers=OWNER,
    )

    assert bad_url.status_code == 400
    assert "error" in bad_url.json()
    assert unknown_course.status_code == 404
    assert bad_cursor.status_code == 400


def test_start_runs_import_and_status_is_readable_by_token(
    uow_factory: ImportUnitOfWorkFactory,
) -> None:
    client = TestClient(create_app(_services(uow_factory)))

    started = _start(client)
    by_token = client.get(
        "/api/import-from-drive/status",
        params={
            "importId": started["importId"],
            "jobId": started["jobId"],
            "token": started["progressToken"],
        },
    )
    by_session = client.get(
        "/api/import-from-drive/status",
        params={"importId": started["importId"]},
        headers=OWNER,
    )

    assert set(started) == {"importId", "jobId", "progressToken"}
    assert by_token.status_code == 200
    progress = by_token.json()
    assert progress["phase"] == "completed"
    assert progress["completed"] is True
    assert progress["percentage"] == 100
    assert progress["processedLessons"] == 2
    assert progress["errors"] == []
    assert by_session.json()["importId"] == started["importId"]


def test_status_rejections_carry_progress_shape(uow_factory: ImportUnitOfWorkFactory) -> None:
    client = TestClient(create_app(_services(uow_factory)))
    started = _start(client)

    forbidden = client.get(
        "/api/import-from-drive/status",
        params={"importId": started["importId"], "jobId": started["jobId"], "token": "wrong"},
    )
    stranger = client.get(
        "/api/import-from-drive/status",
        params={"importId": started["importId"]},
        headers={USER_ID_HEADER: "user-2"},
    )
    missing = client.get(
        "/api/import-from-drive/status",
        params={"importId": "missing"},
        headers=OWNER,
    )
    missing_with_token = client.get(
        "/api/import-from-drive/status",
        params={
            "importId": "missing",
            "jobId": started["jobId"],
            "token": started["progressToken"],
        },
    )

    assert forbidden.status_code == 403
    assert stranger.status_code == 403
    assert missing.status_code == 403
    assert missing_with_token.status_code == 403
    assert missing_with_token.json() == forbidden.json()
    for response in (forbidden, stranger, missing, missing_with_token):
        body = response.json()
        assert body["phase"] == "error"
        assert body["completed"] is False
        assert body["currentStep"] == "Progress unavailable"


def test_second_start_for_live_course_conflicts(uow_factory: ImportUnitOfWorkFactory) -> None:
    client = TestClient(create_app(_services(uow_factory, hold=True)))
    _start(client)

    response = client.post(
        "/api/import-from-drive",
        json={"driveUrl": DRIVE_URL, "courseId": "course-1"},
        headers=OWNER,
    )

    assert response.status_code == 409
    assert "error" in response.json()


def test_start_rejects_invalid_drive_url(uow_factory: ImportUnitOfWorkFactory) -> None:
    client = TestClient(create_app(_services(uow_factory)))

    response = client.post(
        "/api/import-from-drive",
        json={"driveUrl": "not a url", "courseId": "course-1"},
        headers=OWNER,
    )

    assert response.status_code == 400


def test_owner_can_cancel_live_import(uow_factory: ImportUnitOfWorkFactory) -> None:
    services = _services(uow_factory, hold=True)
    client = TestClient(create_app(services))
    started = _start(client)

    stranger = client.post(
        "/api/import-from-drive/cancel",
        json={"importId": started["importId"]},
        headers={USER_ID_HEADER: "user-2"},
    )
    cancelled = client.post(
        "/api/import-from-drive/cancel",
        json={"importId": started["importId"]},
        headers=OWNER,
    )

    assert stranger.status_code == 403
    assert cancelled.status_code == 200
    assert cancelled.json()["phase"] == "cancelled"
    assert isinstance(services.runner, _HeldRunner)
    assert len(services.runner.events) == 1
