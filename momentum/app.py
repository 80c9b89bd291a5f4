from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Sequence, TextIO

from . import __version__, messages
from .dashboard import DashboardConfig, run_dashboard
from .database import MomentumDatabase
from .dates import format_date_in_timezone, resolve_timezone
from .display import format_started_at_label, format_status_bar_label
from .flows import TimerController, TimerPorts, build_picker_items
from .models import PickerItem
from .paths import database_path, ensure_directories
from .settings import MomentumSettings, merge_settings, sanitize_settings
from .sync import BackendRefreshError, post_backend_refresh
from .timer import TimerService
from .vault import NoteService, ProjectRepository, Vault, normalize_vault_path

logger = logging.getLogger(__name__)

VAULT_ENV = "MOMENTUM_VAULT"


class ConsolePorts:
    """Picker, prompt and confirm dialogs on a plain terminal.

    End-of-input (Ctrl-D) cancels a prompt.
    """

    def __init__(self, input_fn: Callable[[str], str] = input, output: TextIO | None = None):
        self._input = input_fn
        self._output = output or sys.stdout

    def as_ports(self) -> TimerPorts:
        return TimerPorts(
            open_picker=self.open_picker,
            open_text_prompt=self.open_text_prompt,
            open_confirm=self.open_confirm,
            notify=self.notify,
        )

    def open_picker(self, title: str, items: Sequence[PickerItem]):
        self._print(title)
        for index, item in enumerate(items, start=1):
            detail = f"  ({item.detail})" if item.detail else ""
            self._print(f"  {index:>2}. {item.label}{detail}")

        answer = self._read(f"Select 1-{len(items)} (blank to cancel): ")
        if answer is None or not answer.strip().isdigit():
            return None
        choice = int(answer.strip())
        if not 1 <= choice <= len(items):
            return None
        return items[choice - 1].value

    def open_text_prompt(self, title: str, placeholder: str, initial: str = "") -> str | None:
        self._print(title)
        default = f" [{initial}]" if initial else ""
        answer = self._read(f"{placeholder}{default}: ")
        if answer is None:
            return None
        return answer if answer.strip() else initial

    def open_confirm(self, title: str, message: str, confirm_text: str = "OK", cancel_text: str = "Cancel") -> bool:
        self._print(title)
        self._print(message)
        answer = self._read(f"{confirm_text}? [y/N] ({cancel_text} by default): ")
        return answer is not None and answer.strip().lower() in {"y", "yes"}

    def notify(self, message: str) -> None:
        self._print(message)

    def _read(self, prompt: str) -> str | None:
        try:
            return self._input(prompt)
        except EOFError:
            return None

    def _print(self, text: str) -> None:
        print(text, file=self._output)


class MomentumApp:
    """Wires storage, the vault and the timer together for one session."""

    def __init__(
        self,
        vault_root: Path,
        data_dir: Path | None = None,
        ports: TimerPorts | None = None,
        now: Callable[[], int] | None = None,
        tick_seconds: float = 1.0,
    ):
        directory = ensure_directories(data_dir)
        self.database = MomentumDatabase(database_path(directory))
        loaded = self.database.load_persisted_data()
        self.settings = loaded.settings

        self.ports = ports or ConsolePorts().as_ports()
        self.vault = Vault(vault_root)
        self.repository = ProjectRepository(self.vault, lambda: self.settings.due_date_field)
        self.notes = NoteService(self.vault, self.repository, lambda: self.settings)
        self.timer = TimerService(
            self.database.save_active_timer,
            initial_timer=loaded.active_timer,
            now=now,
            tick_seconds=tick_seconds,
        )
        self.controller = TimerController(
            self.timer,
            self.repository.timer_candidates,
            self.notes.append_log_entry,
            self.ports,
            lambda: self.settings.timezone,
        )

    def close(self) -> None:
        self.timer.dispose()

    def __enter__(self) -> "MomentumApp":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def update_settings(self, **changes) -> MomentumSettings:
        """Validate and persist setting changes; raises ValueError on any bad one."""
        accepted = sanitize_settings(changes)
        rejected = sorted(key for key in changes if key not in accepted)
        if rejected:
            details = ", ".join(f"{key}={changes[key]!r}" for key in rejected)
            raise ValueError(f"Invalid setting {details}")

        updated = merge_settings(self.settings, accepted)
        if "timezone" in changes:
            resolve_timezone(updated.timezone)
        for key in ("export_path", "daily_note_folder"):
            if key in changes:
                normalize_vault_path(getattr(updated, key))
        self.database.save_settings(updated)
        self.settings = updated
        return updated

    def status_lines(self) -> list[str]:
        snapshot = self.timer.get_snapshot()
        lines = [format_status_bar_label(snapshot)]
        if snapshot.active_timer is not None:
            started = format_started_at_label(snapshot.active_timer.started_at, self.settings.timezone)
            lines.append(f"Started {started} ({snapshot.active_timer.project_path})")
        return lines

    def project_lines(self) -> list[str]:
        result = self.repository.timer_candidates()
        summary = (
            f"scanned={result.scanned_markdown_count} "
            f"candidates={len(result.projects)} "
            f"parseFailures={len(result.parse_failures)}"
        )
        lines = [summary]
        lines.extend(f"{item.label}  ({item.detail})" for item in build_picker_items(result.projects))
        lines.extend(f"! {path}" for path in result.parse_failures)
        return lines

    def regenerate(self, relative_path: str) -> bool:
        count = self.notes.regenerate_snapshot(relative_path)
        if count is None:
            self.ports.notify(f"{messages.PREFIX} {relative_path} is not a daily or weekly note.")
            return False

        kind = "weekly" if Path(relative_path).stem.startswith("Weekly Note") else "daily"
        self.ports.notify(messages.snapshot_regenerated(kind, count))
        return True

    def open_today(self) -> str:
        date_iso = format_date_in_timezone(self.timer.get_snapshot().now, self.settings.timezone)
        relative_path = self.notes.daily_note_path(date_iso)
        self.notes.ensure_note(relative_path)
        self.notes.regenerate_snapshot(relative_path)
        return relative_path

    def export(self, refresh: bool = False) -> bool:
        try:
            count, export_path = self.notes.export_time_entries()
        except IsADirectoryError:
            self.ports.notify(messages.EXPORT_PATH_IS_FOLDER)
            return False
        except ValueError as exc:
            logger.error("Export failed: %s", exc)
            self.ports.notify(f"{messages.PREFIX} {exc}")
            return False
        self.ports.notify(messages.exported_entries(count, export_path))

        if refresh or self.settings.export_target == "backend-refresh":
            return self.refresh_backend()
        return True

    def refresh_backend(self) -> bool:
        try:
            post_backend_refresh(self.settings.export_backend_url)
        except (ValueError, BackendRefreshError, OSError) as exc:
            logger.error("Backend refresh failed: %s", exc)
            self.ports.notify(messages.backend_refresh_failed(messages.to_error_message(exc)))
            return False
        self.ports.notify(messages.backend_refreshed(None))
        return True


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0
    if not args.command:
        parser.print_help()
        return 2

    logging.basicConfig(
        level=logging.INFO if args.verbose or args.command == "serve" else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    vault_root = Path(args.vault or os.environ.get(VAULT_ENV) or ".").expanduser()
    data_dir = Path(args.data_dir).expanduser() if args.data_dir else None

    with MomentumApp(vault_root, data_dir=data_dir) as app:
        return _run_command(app, args)


def _run_command(app: MomentumApp, args: argparse.Namespace) -> int:
    command = args.command

    if command == "status":
        for line in app.status_lines():
            print(line)
        return 0
    if command == "start":
        ok = app.controller.start_in_past(args.ago) if args.ago is not None else app.controller.start()
        return 0 if ok else 1
    if command == "start-past":
        return 0 if app.controller.start_in_past() else 1
    if command == "adjust":
        return 0 if app.controller.adjust_start(args.to) else 1
    if command == "stop":
        return 0 if app.controller.stop(args.note) else 1
    if command == "switch":
        return 0 if app.controller.switch(args.note) else 1
    if command == "regenerate":
        return 0 if app.regenerate(args.note_path) else 1
    if command == "today":
        print(app.open_today())
        return 0
    if command == "export":
        return 0 if app.export(refresh=args.refresh) else 1
    if command == "projects":
        for line in app.project_lines():
            print(line)
        return 0
    if command == "settings":
        return _run_settings(app, args.assignments)
    if command == "serve":
        run_dashboard(_dashboard_config(app, args))
        return 0

    raise AssertionError(f"unhandled command {command!r}")


def _run_settings(app: MomentumApp, assignments: list[str]) -> int:
    changes: dict[str, object] = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep:
            print(f"Expected KEY=VALUE, got {assignment!r}", file=sys.stderr)
            return 2
        key = key.strip().replace("-", "_")
        if key == "auto_insert_on_create":
            changes[key] = value.strip().lower() in {"1", "true", "yes", "on"}
        else:
            changes[key] = value

    if changes:
        try:
            app.update_settings(**changes)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2

    for key, value in app.settings.to_dict().items():
        print(f"{key}={value}")
    return 0


def _dashboard_config(app: MomentumApp, args: argparse.Namespace) -> DashboardConfig:
    base = DashboardConfig.from_file(Path(args.config)) if args.config else DashboardConfig(
        jsonl_path=str(app.vault.resolve(app.settings.export_path)),
        timezone=app.settings.timezone,
    )
    return DashboardConfig(
        jsonl_path=args.jsonl or base.jsonl_path,
        host=args.host or base.host,
        port=args.port if args.port is not None else base.port,
        timezone=args.tz or base.timezone,
        poll_interval_hours=args.poll if args.poll is not None else base.poll_interval_hours,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="momentum", description="Project time tracking for markdown vaults")
    parser.add_argument("--version", action="store_true", help="Print app version and exit")
    parser.add_argument("--vault", help=f"Vault root directory (default: ${VAULT_ENV} or the current directory)")
    parser.add_argument("--data-dir", help="Directory holding the settings/timer database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("status", help="Show the running timer")

    start = commands.add_parser("start", help="Pick a project and start the timer")
    start.add_argument("--ago", help="Backdate the start (45, 90m, 1h30m, 09:40, 9:40am)")
    commands.add_parser("start-past", help="Start the timer with a prompted backdated start")

    adjust = commands.add_parser("adjust", help="Move the running timer's start")
    adjust.add_argument("--to", help="New start (45, 90m, 1h30m, 09:40, 9:40am)")

    stop = commands.add_parser("stop", help="Stop the timer and log it to the daily note")
    stop.add_argument("--note", help="Activity note (prompted when omitted)")
    switch = commands.add_parser("switch", help="Stop the running timer and start another")
    switch.add_argument("--note", help="Activity note for the stopped timer")

    regenerate = commands.add_parser("regenerate", help="Regenerate a daily/weekly note snapshot")
    regenerate.add_argument("note_path", help="Note path relative to the vault")
    commands.add_parser("today", help="Create/refresh today's daily note and print its path")

    export = commands.add_parser("export", help="Export all time logs to JSONL")
    export.add_argument("--refresh", action="store_true", help="Ask the dashboard backend to reload afterwards")
    commands.add_parser("projects", help="List timer-eligible projects")

    settings = commands.add_parser("settings", help="Show or change settings")
    settings.add_argument("assignments", nargs="*", metavar="KEY=VALUE")

    serve = commands.add_parser("serve", help="Run the dashboard backend")
    serve.add_argument("--config", help="JSON config file")
    serve.add_argument("--jsonl", help="JSONL export to serve")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--tz", help="Timezone for default date ranges")
    serve.add_argument("--poll", type=float, help="Reload interval in hours (0 disables)")
    return parser
