"""Durable, externally pollable import progress."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

from curriculum_import.application.import_persistence import ImportUnitOfWorkFactory
from curriculum_import.domain.errors import AuthorizationError, ProgressNotFoundError
from curriculum_import.domain.progress import (
    COUNTER_FIELDS,
    ImportPhase,
    ImportProgress,
    ProgressAccess,
    ProgressUpdate,
    compute_percentage,
    effective_percentage,
    is_valid_percentage,
    new_progress,
)

LOGGER = logging.getLogger(__name__)


class ProgressStore:
    """Create, merge and authorize reads of ``ImportProgress`` rows.

    ``update`` is the only mutator of an existing row. Counters and the
    percentage never move backwards, errors only grow, and a row in a
    terminal phase ignores further updates.
    """

    def __init__(
        self,
        uow_factory: ImportUnitOfWorkFactory,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._uow_factory = uow_factory
        self._now = now

    def create(
        self,
        import_id: str,
        user_id: str,
        *,
        course_id: str | None = None,
        job_id: str | None = None,
    ) -> ImportProgress:
        """Insert the initial row; an existing row is returned unchanged."""
        if not import_id:
            raise ValueError("import_id is required")

        with self._uow_factory() as uow:
            existing = uow.progress.get(import_id)
            if existing is not None:
                return existing

            progress = new_progress(
                import_id,
                user_id,
                course_id=course_id,
                job_id=job_id,
                created_at=self._now(),
            )
            uow.progress.add(progress)
            uow.commit()

        LOGGER.info(
            "event=import_progress_created import_id=%s user_id=%s course_id=%s job_id=%s",
            import_id,
            user_id,
            course_id or "-",
            job_id or "-",
        )
        return progress

    def get(self, import_id: str) -> ImportProgress | None:
        """Internal unauthenticated read for the orchestrator and runner."""
        with self._uow_factory() as uow:
            return uow.progress.get(import_id)

    def update(self, import_id: str, update: ProgressUpdate) -> ImportProgress:
        """Merge update into the stored row and return the result."""
        try:
            with self._uow_factory() as uow:
                current = uow.progress.get(import_id)
                if current is None:
                    raise ProgressNotFoundError(f"No progress for import {import_id}.")
                if current.is_terminal:
                    LOGGER.info(
                        "event=import_progress_update_ignored import_id=%s phase=%s",
                        import_id,
                        current.phase.value,
                    )
                    return current

                merged = merge_progress(current, update, updated_at=self._now())
                uow.progress.save(merged)
                uow.commit()
        except ProgressNotFoundError:
            raise
        except Exception as exc:
            LOGGER.exception(
                "event=import_progress_update_failed import_id=%s error_type=%s",
                import_id,
                exc.__class__.__name__,
            )
            raise

        return merged

    def read(self, import_id: str, access: ProgressAccess) -> ImportProgress:
        """Return progress for an owner session or a matching capability token.

        Missing imports and rejected credentials raise the same ``AuthorizationError``.
        """
        correlation_id = str(uuid4())
        with self._uow_factory() as uow:
            progress = uow.progress.get(import_id)
            allowed = (
                progress is not None
                and access.user_id is not None
                and hmac.compare_digest(access.user_id, progress.user_id)
            )
            if not allowed and access.job_id and access.token:
                job = uow.jobs.get(access.job_id)
                allowed = (
                    progress is not None
                    and job is not None
                    and hmac.compare_digest(job.import_id or "", import_id)
                    and hmac.compare_digest(job.progress_token or "", access.token)
                )

        if progress is None or not allowed:
            LOGGER.warning(
                "event=import_progress_access_denied correlation_id=%s import_id=%s",
                correlation_id,
                import_id,
            )
            raise AuthorizationError()

        return replace(progress, percentage=effective_percentage(progress))

    def cancel(self, import_id: str, user_id: str) -> ImportProgress:
        """Flag import as cancelled; the next orchestrator invocation stops."""
        progress = self.read(import_id, ProgressAccess(user_id=user_id))
        if progress.is_terminal:
            return progress

        cancelled = self.update(
            import_id,
            ProgressUpdate(
                current_step="Import cancelled",
                phase=ImportPhase.CANCELLED,
            ),
        )
        LOGGER.info("event=import_cancel_requested import_id=%s user_id=%s", import_id, user_id)
        return cancelled


def merge_progress(
    current: ImportProgress,
    update: ProgressUpdate,
    *,
    updated_at: datetime,
) -> ImportProgress:
    """Apply update with monotonic counters, append-only errors and non-decreasing percentage.

    An error already recorded is not appended again, so a retried invocation
    replaying the same tasks leaves the error list unchanged.
    """
    recorded = set(current.errors)
    appended = tuple(error for error in dict.fromkeys(update.errors) if error not in recorded)
    counters: dict[str, int] = {}
    for name in COUNTER_FIELDS:
        candidate = getattr(update, name)
        stored = getattr(current, name)
        counters[name] = stored if candidate is None else max(stored, candidate)

    merged = replace(
        current,
        current_step=update.current_step or current.current_step,
        current_item=(
            update.current_item if update.current_item is not None else current.current_item
        ),
        phase=update.phase or current.phase,
        completed=current.completed or bool(update.completed),
        errors=current.errors + appended,
        updated_at=updated_at,
        **counters,
    )

    if is_valid_percentage(update.percentage):
        candidate_percentage = update.percentage or 0
    else:
        candidate_percentage = compute_percentage(merged.processed_total, merged.expected_total)
    previous = current.percentage if is_valid_percentage(current.percentage) else 0
    return replace(merged, percentage=max(previous or 0, candidate_percentage))
