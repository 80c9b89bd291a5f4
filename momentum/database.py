from __future__ import annotations

import json
import logging
import math
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .models import ActiveTimerState
from .settings import DEFAULT_SETTINGS, MomentumSettings, merge_settings, sanitize_settings

logger = logging.getLogger(__name__)

CURRENT_DATA_VERSION = 2

DATA_VERSION_KEY = "data_version"
SETTINGS_KEY = "settings"
ACTIVE_TIMER_KEY = "active_timer"


@dataclass(frozen=True)
class PersistenceLoadResult:
    settings: MomentumSettings
    active_timer: ActiveTimerState | None
    migrated: bool


class MomentumDatabase:
    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_file

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def get_setting_int(self, key: str, default: int) -> int:
        value = self.get_setting(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default

    def set_setting(self, key: str, value: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    def delete_setting(self, key: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute("DELETE FROM app_settings WHERE key = ?", (key,))
            conn.commit()

    def load_persisted_data(self) -> PersistenceLoadResult:
        """Read settings and the active timer, upgrading older layouts in place.

        Stored values that fail to decode or have the wrong shape fall back to
        defaults (settings) or no timer. When the stored data version differs
        from the current one, the cleaned data is written back.
        """
        version = self.get_setting_int(DATA_VERSION_KEY, 0)
        raw_settings = _decode_json(self.get_setting(SETTINGS_KEY), SETTINGS_KEY)
        raw_timer = _decode_json(self.get_setting(ACTIVE_TIMER_KEY), ACTIVE_TIMER_KEY)

        settings = merge_settings(DEFAULT_SETTINGS, sanitize_settings(raw_settings))
        active_timer = sanitize_active_timer(raw_timer)
        migrated = version != CURRENT_DATA_VERSION

        if migrated:
            logger.info("Migrating persisted data from version %s to %s", version, CURRENT_DATA_VERSION)
            self.save_settings(settings)
            self.save_active_timer(active_timer)
            self.set_setting(DATA_VERSION_KEY, str(CURRENT_DATA_VERSION))

        return PersistenceLoadResult(settings=settings, active_timer=active_timer, migrated=migrated)

    def save_settings(self, settings: MomentumSettings) -> None:
        self.set_setting(SETTINGS_KEY, json.dumps(settings.to_dict(), sort_keys=True))

    def save_active_timer(self, state: ActiveTimerState | None) -> None:
        if state is None:
            self.delete_setting(ACTIVE_TIMER_KEY)
            return
        payload = {
            "project_path": state.project_path,
            "project_name": state.project_name,
            "started_at": int(state.started_at),
        }
        self.set_setting(ACTIVE_TIMER_KEY, json.dumps(payload))


def sanitize_active_timer(raw: Any) -> ActiveTimerState | None:
    if not isinstance(raw, dict):
        return None

    project_path = raw.get("project_path")
    project_name = raw.get("project_name")
    started_at = raw.get("started_at")

    if not isinstance(project_path, str) or not project_path:
        return None
    if not isinstance(project_name, str) or not project_name:
        return None
    if isinstance(started_at, bool) or not isinstance(started_at, (int, float)):
        return None
    if not math.isfinite(started_at):
        return None

    return ActiveTimerState(project_path=project_path, project_name=project_name, started_at=int(started_at))


def _decode_json(value: str | None, key: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Ignoring undecodable %s payload", key)
        return None
