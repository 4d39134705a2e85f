"""
SQLite-backed key-value store for dashboard preferences.

Holds the four user settings the dashboard restores at startup and saves on
every change: per-assignee capacity overrides, per-sprint day overrides, the
programme target end date and per-project target end dates. Uploaded export
data is never written here.

The database runs in WAL mode so readers never block the occasional writer.
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sprintboard.core.config import settings
from sprintboard.models.schemas import DashboardConfig

logger = logging.getLogger(__name__)

ASSIGNEE_CAPS = "assigneeCaps"
SPRINT_DAYS = "sprintDaysConfig"
PROGRAM_END_DATE = "programEndDate"
PROJECT_TARGETS = "projectTargets"

PREFERENCE_KEYS = (ASSIGNEE_CAPS, SPRINT_DAYS, PROGRAM_END_DATE, PROJECT_TARGETS)

# Defaults returned when a key has never been saved
DEFAULTS: dict[str, Any] = {
    ASSIGNEE_CAPS: {},
    SPRINT_DAYS: {},
    PROGRAM_END_DATE: None,
    PROJECT_TARGETS: {},
}


def _db_path() -> Path:
    """Database path from settings, resolved relative to the working directory."""
    return Path(settings.db_path)


def init_db() -> None:
    """Create the preferences table (and its directory) if missing. Run at startup."""
    _db_path().parent.mkdir(parents=True, exist_ok=True)

    with _get_connection() as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS preferences (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        conn.commit()


@contextmanager
def _get_connection() -> Generator[sqlite3.Connection, None, None]:
    """Open a short-lived connection to the preferences database."""
    conn = sqlite3.connect(str(_db_path()), timeout=settings.db_timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def load(key: str, default: Any = None) -> Any:
    """Load one preference, falling back to default when missing or unreadable."""
    try:
        with _get_connection() as conn:
            cursor = conn.execute(
                "SELECT value_json FROM preferences WHERE key = ?",
                (key,)
            )
            row = cursor.fetchone()

            if row is not None:
                return json.loads(row["value_json"])

            return default
    except (sqlite3.Error, json.JSONDecodeError) as exc:
        logger.warning("Could not load preference %s: %s", key, exc)
        return default


def save(key: str, value: Any) -> None:
    """
    Save one preference.

    Uses INSERT OR REPLACE for upsert behavior while keeping the original
    created_at timestamp.
    """
    now = time.time()

    try:
        value_json = json.dumps(value)

        with _get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO preferences
                (key, value_json, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM preferences WHERE key = ?), ?),
                    ?)
            """, (key, value_json, key, now, now))
            conn.commit()
    except (sqlite3.Error, TypeError) as exc:
        logger.warning("Could not save preference %s: %s", key, exc)


def delete(key: str) -> None:
    """Remove a preference from the store."""
    try:
        with _get_connection() as conn:
            conn.execute(
                "DELETE FROM preferences WHERE key = ?",
                (key,)
            )
            conn.commit()
    except sqlite3.Error as exc:
        logger.warning("Could not delete preference %s: %s", key, exc)


def load_all() -> dict[str, Any]:
    """Every preference keyed by its fixed name, defaults filled in."""
    return {key: load(key, DEFAULTS[key]) for key in PREFERENCE_KEYS}


def save_value(key: str, value: Any) -> None:
    """Save a preference; an empty programme end date removes the key."""
    if key == PROGRAM_END_DATE and not value:
        delete(key)
    else:
        save(key, value)


def load_dashboard_config() -> DashboardConfig:
    """Build the immutable aggregation config from the stored preferences."""
    stored = load_all()
    return DashboardConfig(
        assignee_caps=stored[ASSIGNEE_CAPS] or {},
        sprint_days=stored[SPRINT_DAYS] or {},
        program_end_date=stored[PROGRAM_END_DATE] or None,
        project_targets=stored[PROJECT_TARGETS] or {},
    )


def save_dashboard_config(config: DashboardConfig) -> None:
    """Persist every preference held by config."""
    save_value(ASSIGNEE_CAPS, dict(config.assignee_caps))
    save_value(SPRINT_DAYS, dict(config.sprint_days))
    save_value(PROGRAM_END_DATE, config.program_end_date)
    save_value(PROJECT_TARGETS, dict(config.project_targets))


def get_store_stats() -> dict[str, Any]:
    """Stored preference keys with their JSON size and last update time."""
    try:
        with _get_connection() as conn:
            entries = [
                dict(entry)
                for entry in conn.execute(
                    "SELECT key, LENGTH(value_json) AS size_bytes, created_at, updated_at "
                    "FROM preferences ORDER BY key"
                )
            ]
    except sqlite3.Error:
        logger.warning("Failed to read preference store stats", exc_info=True)
        return {"error": "Preference store unavailable"}

    return {
        "entry_count": len(entries),
        "total_bytes": sum(e["size_bytes"] for e in entries),
        "newest_update": max((e["updated_at"] for e in entries), default=None),
        "entries": entries,
    }
