"""Per-invocation import budget and cursor signing key read from the environment."""

from __future__ import annotations

import os

from curriculum_import.application.import_orchestrator import ImportBudget

MAX_TASKS_ENV_VAR = "CURRICULUM_IMPORT_MAX_TASKS"
MAX_SECONDS_ENV_VAR = "CURRICULUM_IMPORT_MAX_SECONDS"
LISTING_BATCH_ENV_VAR = "CURRICULUM_IMPORT_LISTING_BATCH"
CURSOR_SECRET_ENV_VAR = "CURRICULUM_IMPORT_CURSOR_SECRET"


def default_import_budget() -> ImportBudget:
    """Build budget; blank, invalid or non-positive values fall back to defaults."""
    defaults = ImportBudget()
    return ImportBudget(
        max_tasks=_resolve_int(env_var=MAX_TASKS_ENV_VAR, fallback=defaults.max_tasks),
        max_seconds=_resolve_float(env_var=MAX_SECONDS_ENV_VAR, fallback=defaults.max_seconds),
        listing_batch=_resolve_int(env_var=LISTING_BATCH_ENV_VAR, fallback=defaults.listing_batch),
    )


def default_cursor_key() -> bytes | None:
    """Shared key for listing cursors; None lets each builder draw its own."""
    secret = os.environ.get(CURSOR_SECRET_ENV_VAR, "").strip()
    return secret.encode("utf-8") if secret else None


def _resolve_int(*, env_var: str, fallback: int) -> int:
    raw_value = os.environ.get(env_var, "").strip()
    try:
        value = int(raw_value)
    except ValueError:
        return fallback
    return value if value > 0 else fallback


def _resolve_float(*, env_var: str, fallback: float) -> float:
    raw_value = os.environ.get(env_var, "").strip()
    try:
        value = float(raw_value)
    except ValueError:
        return fallback
    return value if value > 0 else fallback
