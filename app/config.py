"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


@dataclass(frozen=True)
class ImportSettings:
    """
    Runtime settings for the bulk identity import pipeline.
    """

    max_batch_size: int = 1000
    identifier_width: int = 3
    student_code: str = "STU"
    staff_code: str = "STF"
    min_employee_id_length: int = 3
    log_row_outcomes: bool = True


@dataclass(frozen=True)
class ReconciliationSettings:
    """
    Out-of-band sweep for batches that never finalized.
    """

    stale_after_minutes: int = 30
    interval_minutes: int = 10
    enabled: bool = True


@dataclass(frozen=True)
class NotificationSettings:
    """
    Outbound new-account notification behaviour.
    """

    webhook_url: str | None = None
    timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    portal_url: str = "http://localhost:3000/login"


@lru_cache(maxsize=1)
def get_import_settings() -> ImportSettings:
    """
    Return cached import settings from environment variables.
    """

    return ImportSettings(
        max_batch_size=max(1, _get_int_env("IMPORT_MAX_BATCH_SIZE", 1000)),
        identifier_width=max(1, _get_int_env("IMPORT_IDENTIFIER_WIDTH", 3)),
        student_code=_get_str_env("IMPORT_STUDENT_CODE", "STU").upper(),
        staff_code=_get_str_env("IMPORT_STAFF_CODE", "STF").upper(),
        min_employee_id_length=max(0, _get_int_env("IMPORT_MIN_EMPLOYEE_ID_LENGTH", 3)),
        log_row_outcomes=_get_bool_env("IMPORT_LOG_ROW_OUTCOMES", True),
    )


@lru_cache(maxsize=1)
def get_reconciliation_settings() -> ReconciliationSettings:
    """
    Return cached reconciliation settings from environment variables.
    """

    return ReconciliationSettings(
        stale_after_minutes=max(1, _get_int_env("IMPORT_STALE_AFTER_MINUTES", 30)),
        interval_minutes=max(1, _get_int_env("IMPORT_RECONCILE_INTERVAL_MINUTES", 10)),
        enabled=_get_bool_env("IMPORT_RECONCILE_ENABLED", True),
    )


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """
    Return cached notification settings from environment variables.
    """

    return NotificationSettings(
        webhook_url=_get_optional_str_env("NOTIFY_WEBHOOK_URL"),
        timeout_seconds=max(1.0, _get_float_env("NOTIFY_TIMEOUT_SECONDS", 10.0)),
        max_retries=max(0, _get_int_env("NOTIFY_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("NOTIFY_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("NOTIFY_BACKOFF_MULTIPLIER", 2.0)),
        portal_url=_get_str_env("NOTIFY_PORTAL_URL", "http://localhost:3000/login"),
    )
