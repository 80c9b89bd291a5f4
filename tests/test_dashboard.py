from __future__ import annotations

import json
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path

import requests

from momentum.dashboard import DashboardConfig, DashboardServer, EntryStore, parse_date_range
from momentum.models import TimeLogEntry
from momentum.timelogs import entries_to_jsonl


def _entry(date: str, project: str, minutes: int, start: str = "09:00") -> TimeLogEntry:
    return TimeLogEntry(
        file_path=f"{date}.md",
        date=date,
        project=project,
        start=start,
        end="10:00",
        minutes=minutes,
        note="",
        line_number=4,
    )


class DateRangeTests(unittest.TestCase):
    NOW = datetime(2026, 2, 10, 20, 0, tzinfo=timezone.utc)

    def test_defaults_to_last_thirty_days_in_zone(self) -> None:
        self.assertEqual(
            parse_date_range("", "", "Australia/Sydney", self.NOW),
            ("2026-01-12", "2026-02-11", ""),
        )

    def test_validation_errors(self) -> None:
        self.assertEqual(
            parse_date_range("2026/01/01", "", "UTC", self.NOW)[2],
            'invalid from date "2026/01/01": must be YYYY-MM-DD',
        )
        self.assertEqual(
            parse_date_range("2026-01-01", "tomorrow", "UTC", self.NOW)[2],
            'invalid to date "tomorrow": must be YYYY-MM-DD',
        )
        self.assertTrue(parse_date_range("2026-02-02", "2026-02-01", "UTC", self.NOW)[2])

    def test_impossible_calendar_dates_are_rejected(self) -> None:
        self.assertEqual(
            parse_date_range("2026-02-30", "2026-03-02", "UTC", self.NOW)[2],
            'invalid from date "2026-02-30": must be YYYY-MM-DD',
        )
        self.assertEqual(
            parse_date_range("2026-02-01", "2026-13-01", "UTC", self.NOW)[2],
            'invalid to date "2026-13-01": must be YYYY-MM-DD',
        )

    def test_unknown_zone_falls_back_to_utc(self) -> None:
        self.assertEqual(parse_date_range("", "", "Mars/Base", self.NOW)[1], "2026-02-10")


class EntryStoreTests(unittest.TestCase):
    def test_load_replaces_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "entries.jsonl"
            path.write_text(entries_to_jsonl([_entry("2026-02-11", "A", 30)]), encoding="utf-8")
            store = EntryStore()

            self.assertIsNone(store.last_loaded)
            self.assertEqual(store.load(path), 1)
            self.assertIsNotNone(store.last_loaded)

            path.write_text("", encoding="utf-8")
            self.assertEqual(store.load(path), 0)
            self.assertEqual(store.entries(), [])

    def test_load_requires_a_path(self) -> None:
        with self.assertRaises(ValueError):
            EntryStore().load("")

    def test_poller_starts_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = EntryStore()
            path = Path(tmp_dir) / "entries.jsonl"
            self.assertTrue(store.start_poller(path, 3600))
            self.assertFalse(store.start_poller(path, 3600))
            store.stop_poller()
            self.assertTrue(store.start_poller(path, 3600))
            store.stop_poller()


class DashboardServerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.jsonl = Path(self._tmp.name) / "entries.jsonl"
        self.jsonl.write_text(
            entries_to_jsonl(
                [
                    _entry("2026-02-08", "Alpha", 45),
                    _entry("2026-02-09", "Beta", 30),
                    _entry("2026-02-11", "Alpha", 15, start="11:00"),
                ]
            ),
            encoding="utf-8",
        )
        config = DashboardConfig(jsonl_path=str(self.jsonl), port=0, timezone="UTC")
        self.store = EntryStore()
        self.store.load(self.jsonl)
        self.server = DashboardServer(config, self.store)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        host, port = self.server.server_address[:2]
        self.base = f"http://{host}:{port}"

    def tearDown(self) -> None:
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(timeout=5)
        self._tmp.cleanup()

    def _get(self, path: str) -> requests.Response:
        return requests.get(self.base + path, timeout=5)

    def test_health(self) -> None:
        response = self._get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["entries"], 3)

    def test_entries_and_aggregates(self) -> None:
        query = "?from=2026-02-08&to=2026-02-10"

        entries = self._get("/api/entries" + query).json()
        self.assertEqual([entry["project"] for entry in entries], ["Alpha", "Beta"])
        self.assertEqual(entries[0]["filePath"], "2026-02-08.md")

        projects = self._get("/api/projects" + query).json()
        self.assertEqual(projects[0], {"project": "Alpha", "minutes": 45, "hours": 0.75})

        days = self._get("/api/days" + query).json()
        self.assertEqual([day["minutes"] for day in days], [45, 30, 0])

        weeks = self._get("/api/weeks?from=2026-02-01&to=2026-02-28").json()
        self.assertEqual(weeks, [{"weekStart": "2026-02-08", "minutes": 90, "hours": 1.5}])

    def test_bad_range_is_rejected(self) -> None:
        response = self._get("/api/projects?from=02-08-2026")
        self.assertEqual(response.status_code, 400)
        self.assertIn("must be YYYY-MM-DD", response.json()["error"])

        response = self._get("/api/days?from=2026-02-30&to=2026-03-02")
        self.assertEqual(response.status_code, 400)
        self.assertIn("must be YYYY-MM-DD", response.json()["error"])

    def test_refresh_reloads_file(self) -> None:
        self.jsonl.write_text(entries_to_jsonl([_entry("2026-02-12", "Gamma", 10)]), encoding="utf-8")

        response = requests.post(self.base + "/refresh", timeout=5)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "entries": 1})
        self.assertEqual(self.store.count(), 1)

    def test_refresh_failure_keeps_previous_entries(self) -> None:
        self.jsonl.unlink()
        with self.assertLogs("momentum.dashboard", level="ERROR"):
            response = requests.post(self.base + "/refresh", timeout=5)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(self.store.count(), 3)

    def test_routing_errors(self) -> None:
        self.assertEqual(self._get("/nope").status_code, 404)
        self.assertEqual(self._get("/refresh").status_code, 405)
        self.assertEqual(requests.post(self.base + "/api/projects", timeout=5).status_code, 405)
        self.assertEqual(self._get("/api/planned-vs-actual").status_code, 501)
        self.assertEqual(requests.options(self.base + "/api/projects", timeout=5).status_code, 204)


class DashboardConfigTests(unittest.TestCase):
    def test_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "config.json"
            self.assertEqual(DashboardConfig.from_file(path), DashboardConfig())

            path.write_text(json.dumps({"jsonl_path": "x.jsonl", "port": "9090", "poll_interval_hours": 0}), encoding="utf-8")
            config = DashboardConfig.from_file(path)
            self.assertEqual((config.jsonl_path, config.port, config.poll_interval_hours), ("x.jsonl", 9090, 0.0))

            path.write_text("[]", encoding="utf-8")
            with self.assertRaises(ValueError):
                DashboardConfig.from_file(path)


if __name__ == "__main__":
    unittest.main()
