"""FastAPI endpoints for starting, listing and polling Drive imports."""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import uuid4

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from curriculum_import.application.import_jobs import StartImportCommand
from curriculum_import.domain.errors import (
    AuthorizationError,
    CourseNotFoundError,
    ImportConflictError,
    ImportEngineError,
    InvalidCursorError,
    InvalidSourceError,
    ListingError,
    ProgressNotFoundError,
)
from curriculum_import.domain.import_tasks import ImportModel
from curriculum_import.domain.progress import ImportProgress, ProgressAccess
from curriculum_import.infrastructure.factory import ImportServices

LOGGER = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"

_ERROR_STATUS: tuple[tuple[type[ImportEngineError], int], ...] = (
    (InvalidSourceError, status.HTTP_400_BAD_REQUEST),
    (InvalidCursorError, status.HTTP_400_BAD_REQUEST),
    (CourseNotFoundError, status.HTTP_404_NOT_FOUND),
    (ProgressNotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ImportConflictError, status.HTTP_409_CONFLICT),
    (ListingError, status.HTTP_502_BAD_GATEWAY),
)


class SessionResolver(Protocol):
    """Maps a request to the authenticated user id, or None."""

    def resolve(self, request: Request) -> str | None:
        ...


class HeaderSessionResolver(SessionResolver):
    """Trust the user id header set by the upstream authentication proxy."""

    def __init__(self, header_name: str = USER_ID_HEADER) -> None:
        self._header_name = header_name

    def resolve(self, request: Request) -> str | None:
        value = request.headers.get(self._header_name, "").strip()
        return value or None


class StartImportPayload(ImportModel):
    drive_url: str
    course_id: str


class CancelImportPayload(ImportModel):
    import_id: str


class StartImportResponse(ImportModel):
    import_id: str
    job_id: str
    progress_token: str


class ProgressPayload(ImportModel):
    import_id: str
    current_step: str
    current_item: str | None
    phase: str
    completed: bool
    percentage: int
    total_modules: int
    processed_modules: int
    total_subjects: int
    processed_subjects: int
    total_lessons: int
    processed_lessons: int
    total_tests: int
    processed_tests: int
    errors: list[str]
    course_id: str | None
    job_id: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_progress(cls, progress: ImportProgress) -> ProgressPayload:
        return cls(
            import_id=progress.import_id,
            current_step=progress.current_step,
            current_item=progress.current_item,
            phase=progress.phase.value,
            completed=progress.completed,
            percentage=progress.percentage or 0,
            total_modules=progress.total_modules,
            processed_modules=progress.processed_modules,
            total_subjects=progress.total_subjects,
            processed_subjects=progress.processed_subjects,
            total_lessons=progress.total_lessons,
            processed_lessons=progress.processed_lessons,
            total_tests=progress.total_tests,
            processed_tests=progress.processed_tests,
            errors=list(progress.errors),
            course_id=progress.course_id,
            job_id=progress.job_id,
            created_at=progress.created_at.isoformat(),
            updated_at=progress.updated_at.isoformat(),
        )


def create_app(
    services: ImportServices,
    *,
    session_resolver: SessionResolver | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""
    resolver = session_resolver or HeaderSessionResolver()
    app = FastAPI(
        title="Curriculum Drive Import",
        description="Import course hierarchies from Google Drive folders",
    )

    def _require_user(request: Request) -> str:
        user_id = resolver.resolve(request)
        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
            )
        return user_id

    @app.exception_handler(ImportEngineError)
    async def _handle_engine_error(_: Request, exc: ImportEngineError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            LOGGER.error("event=http_engine_error error_type=%s", exc.__class__.__name__)
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/import-from-drive/list")
    def list_import_tasks(
        request: Request,
        drive_url: str = Query(alias="driveUrl"),
        course_id: str = Query(alias="courseId"),
        resume: str | None = Query(default=None),
    ) -> dict[str, Any]:
        user_id = _require_user(request)
        listing = services.builder.build(drive_url, course_id, user_id, resume)
        return listing.model_dump(by_alias=True, mode="json")

    @app.post("/api/import-from-drive", status_code=status.HTTP_202_ACCEPTED)
    def start_import(
        request: Request,
        payload: StartImportPayload,
        background_tasks: BackgroundTasks,
    ) -> dict[str, Any]:
        user_id = _require_user(request)
        started = services.starter.execute(
            StartImportCommand(
                drive_url=payload.drive_url,
                course_id=payload.course_id,
                user_id=user_id,
            )
        )
        services.runner.send(started.event)
        background_tasks.add_task(services.runner.drain)
        response = StartImportResponse(
            import_id=started.import_id,
            job_id=started.job_id,
            progress_token=started.progress_token,
        )
        return response.model_dump(by_alias=True)

    @app.get("/api/import-from-drive/status", response_model=None)
    def import_status(
        request: Request,
        import_id: str = Query(alias="importId"),
        job_id: str | None = Query(default=None, alias="jobId"),
        token: str | None = Query(default=None),
    ) -> dict[str, Any] | JSONResponse:
        correlation_id = str(uuid4())
        access = ProgressAccess(
            user_id=resolver.resolve(request),
            job_id=job_id,
            token=token,
        )
        try:
            progress = services.progress.read(import_id, access)
        except AuthorizationError as exc:
            LOGGER.info(
                "event=import_status_rejected correlation_id=%s import_id=%s error_type=%s",
                correlation_id,
                import_id,
                exc.__class__.__name__,
            )
            return JSONResponse(
                status_code=_status_for(exc),
                content={
                    "error": str(exc),
                    "currentStep": "Progress unavailable",
                    "phase": "error",
                    "completed": False,
                    "percentage": 0,
                },
            )
        return ProgressPayload.from_progress(progress).model_dump(by_alias=True)

    @app.post("/api/import-from-drive/cancel")
    def cancel_import(request: Request, payload: CancelImportPayload) -> dict[str, Any]:
        user_id = _require_user(request)
        progress = services.progress.cancel(payload.import_id, user_id)
        return ProgressPayload.from_progress(progress).model_dump(by_alias=True)

    return app


def _status_for(exc: ImportEngineError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR
