"""Dashboard backend: serves aggregates over the JSONL time-entry export.

The store reloads the export on demand (``POST /refresh``) and on a timer.
All responses are JSON and carry permissive CORS headers for a local
front-end.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

from .aggregate import aggregate_by_day, aggregate_by_project, aggregate_by_week, filter_by_range
from .dates import is_valid_iso_date, resolve_timezone
from .models import TimeLogEntry
from .timelogs import entries_from_jsonl, entry_to_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardConfig:
    jsonl_path: str = ""
    host: str = "127.0.0.1"
    port: int = 8080
    timezone: str = "Australia/Sydney"
    poll_interval_hours: float = 1

    @classmethod
    def from_file(cls, path: Path) -> "DashboardConfig":
        """Read ``jsonl_path``, ``port``, ``timezone`` and ``poll_interval_hours``
        from a JSON file. A missing file yields the defaults."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return cls()
        if not isinstance(raw, dict):
            raise ValueError(f"Dashboard config {path} must be a JSON object")

        defaults = cls()
        return cls(
            jsonl_path=str(raw.get("jsonl_path", defaults.jsonl_path)),
            host=str(raw.get("host", defaults.host)),
            port=int(raw.get("port", defaults.port)),
            timezone=str(raw.get("timezone", defaults.timezone)),
            poll_interval_hours=float(raw.get("poll_interval_hours", defaults.poll_interval_hours)),
        )


class EntryStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._entries: list[TimeLogEntry] = []
        self._last_loaded: datetime | None = None
        self._poller: threading.Thread | None = None
        self._poller_stop = threading.Event()

    @property
    def last_loaded(self) -> datetime | None:
        with self._lock:
            return self._last_loaded

    def load(self, path: str | Path) -> int:
        """Replace the store contents with the entries in ``path``.

        Raises FileNotFoundError/OSError when the file cannot be read and
        ValueError when no path is configured. Malformed lines are skipped.
        """
        if not str(path or "").strip():
            raise ValueError("jsonl_path is not configured")

        text = Path(path).read_text(encoding="utf-8")
        entries = entries_from_jsonl(text)
        with self._lock:
            self._entries = entries
            self._last_loaded = datetime.now().astimezone()
        logger.info("Loaded %d entries from %s", len(entries), path)
        return len(entries)

    def entries(self) -> list[TimeLogEntry]:
        with self._lock:
            return list(self._entries)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def start_poller(self, path: str | Path, interval_seconds: float) -> bool:
        with self._lock:
            if self._poller is not None and self._poller.is_alive():
                return False
            self._poller_stop.clear()
            self._poller = threading.Thread(
                target=self._run_poller,
                args=(path, max(1.0, float(interval_seconds))),
                name="momentum-dashboard-poller",
                daemon=True,
            )
            self._poller.start()
            return True

    def stop_poller(self, timeout_seconds: float = 5.0) -> None:
        with self._lock:
            thread = self._poller
            if thread is None:
                return
            self._poller_stop.set()

        thread.join(timeout=timeout_seconds)

        with self._lock:
            if self._poller is thread:
                self._poller = None

    def _run_poller(self, path: str | Path, interval_seconds: float) -> None:
        while not self._poller_stop.wait(interval_seconds):
            try:
                self.load(path)
            except (OSError, ValueError) as exc:
                logger.warning("Poller reload failed: %s", exc)


class DashboardServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, config: DashboardConfig, store: EntryStore):
        self.config = config
        self.store = store
        super().__init__((config.host, config.port), DashboardRequestHandler)


class DashboardRequestHandler(BaseHTTPRequestHandler):
    server: DashboardServer

    _GET_ROUTES = {
        "/health": "_handle_health",
        "/api/entries": "_handle_entries",
        "/api/projects": "_handle_projects",
        "/api/days": "_handle_days",
        "/api/weeks": "_handle_weeks",
        "/api/planned-vs-actual": "_handle_planned_vs_actual",
    }
    _POST_ROUTES = {
        "/refresh": "_handle_refresh",
        "/api/planned-vs-actual": "_handle_planned_vs_actual",
    }

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self._send_cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:
        self._dispatch(self._GET_ROUTES)

    def do_POST(self) -> None:
        self._dispatch(self._POST_ROUTES)

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), fmt % args)

    def _dispatch(self, routes: dict[str, str]) -> None:
        path = urlsplit(self.path).path
        handler_name = routes.get(path)
        if handler_name is not None:
            getattr(self, handler_name)()
            return
        if path in self._GET_ROUTES or path in self._POST_ROUTES:
            _json_response(self, {"error": "method not allowed"}, 405)
            return
        _json_response(self, {"error": "not found"}, 404)

    def _handle_health(self) -> None:
        last_loaded = self.server.store.last_loaded
        _json_response(
            self,
            {
                "status": "ok",
                "entries": self.server.store.count(),
                "lastLoaded": last_loaded.isoformat(timespec="seconds") if last_loaded else None,
            },
        )

    def _handle_refresh(self) -> None:
        try:
            count = self.server.store.load(self.server.config.jsonl_path)
        except (OSError, ValueError) as exc:
            logger.error("Refresh failed: %s", exc)
            _json_response(self, {"error": str(exc)}, 500)
            return
        _json_response(self, {"ok": True, "entries": count})

    def _handle_entries(self) -> None:
        date_range = self._date_range()
        if date_range is None:
            return
        entries = filter_by_range(self.server.store.entries(), *date_range)
        _json_response(self, [entry_to_record(entry) for entry in entries])

    def _handle_projects(self) -> None:
        date_range = self._date_range()
        if date_range is None:
            return
        entries = filter_by_range(self.server.store.entries(), *date_range)
        _json_response(self, aggregate_by_project(entries))

    def _handle_days(self) -> None:
        date_range = self._date_range()
        if date_range is None:
            return
        entries = filter_by_range(self.server.store.entries(), *date_range)
        _json_response(self, aggregate_by_day(entries, *date_range))

    def _handle_weeks(self) -> None:
        date_range = self._date_range()
        if date_range is None:
            return
        entries = filter_by_range(self.server.store.entries(), *date_range)
        _json_response(self, aggregate_by_week(entries))

    def _handle_planned_vs_actual(self) -> None:
        _json_response(self, {"error": "not implemented"}, 501)

    def _date_range(self) -> tuple[str, str] | None:
        query = parse_qs(urlsplit(self.path).query)
        from_date, to_date, error = parse_date_range(
            query.get("from", [""])[0],
            query.get("to", [""])[0],
            self.server.config.timezone,
        )
        if error:
            _json_response(self, {"error": error}, 400)
            return None
        return from_date, to_date

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")


def parse_date_range(
    from_date: str,
    to_date: str,
    timezone_name: str,
    now: datetime | None = None,
) -> tuple[str, str, str]:
    """Apply defaults and validate a ``from``/``to`` query.

    Returns ``(from, to, error)``; ``error`` is empty when the range is valid.
    """
    try:
        zone = resolve_timezone(timezone_name)
    except ValueError:
        zone = resolve_timezone("UTC")
    today = (now or datetime.now(zone)).astimezone(zone).date()

    from_date = from_date or (today - timedelta(days=30)).isoformat()
    to_date = to_date or today.isoformat()

    if not is_valid_iso_date(from_date):
        return "", "", f'invalid from date "{from_date}": must be YYYY-MM-DD'
    if not is_valid_iso_date(to_date):
        return "", "", f'invalid to date "{to_date}": must be YYYY-MM-DD'
    if from_date > to_date:
        return "", "", f"from ({from_date}) must not be after to ({to_date})"
    return from_date, to_date, ""


def run_dashboard(config: DashboardConfig, store: EntryStore | None = None) -> None:
    store = store or EntryStore()
    try:
        store.load(config.jsonl_path)
    except (OSError, ValueError) as exc:
        logger.warning("Initial JSONL load failed: %s", exc)
        logger.info("Hint: run 'momentum export', then POST /refresh")

    if config.jsonl_path and config.poll_interval_hours > 0:
        store.start_poller(config.jsonl_path, config.poll_interval_hours * 3600)

    server = DashboardServer(config, store)
    logger.info("Dashboard listening on http://%s:%d", config.host, server.server_address[1])
    logger.info(
        "JSONL: %r | Timezone: %s | Poll: %sh",
        config.jsonl_path,
        config.timezone,
        config.poll_interval_hours,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Dashboard interrupted")
    finally:
        server.server_close()
        store.stop_poller()


def _json_response(handler: BaseHTTPRequestHandler, payload: Any, status: int = 200) -> None:
    data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(data)))
    handler.send_header("Access-Control-Allow-Origin", "*")
    handler.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
    handler.send_header("Access-Control-Allow-Headers", "Content-Type")
    handler.end_headers()
    handler.wfile.write(data)
