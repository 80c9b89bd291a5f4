"""Interactive timer flows and the controller that guards them.

Flows talk to the user only through :class:`TimerPorts`, so the same logic
drives the console CLI and the tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Callable, Sequence

from . import messages
from .backdate import format_backdated_start_confirmation, parse_backdated_start_input
from .dates import format_date_in_timezone, format_time_in_timezone
from .models import PickerItem, ProjectRecord, ProjectScanResult, TimerStartInput
from .projects import build_project_hierarchy
from .timelogs import format_time_log_line
from .timer import TimerService

logger = logging.getLogger(__name__)

BACKDATED_START_PLACEHOLDER = "Minutes ago or local start time (45, 90m, 1h30m, 09:40, 9:40am)"


@dataclass(frozen=True)
class TimerPorts:
    open_picker: Callable[[str, Sequence[PickerItem]], Any]
    open_text_prompt: Callable[[str, str, str], str | None]
    open_confirm: Callable[[str, str, str, str], bool]
    notify: Callable[[str], None]


def build_picker_items(projects: Sequence[ProjectRecord]) -> list[PickerItem]:
    items: list[PickerItem] = []
    for item in build_project_hierarchy(projects):
        prefix = f"{'  ' * item.depth}↳ " if item.depth > 0 else ""
        detail = f"Due {item.project.due_date}" if item.project.due_date else "No due date"
        items.append(PickerItem(value=item.project, label=f"{prefix}{item.project.name}", detail=detail))
    return items


def run_start_timer_flow(
    timer: TimerService,
    load_projects: Callable[[], Sequence[ProjectRecord]],
    ports: TimerPorts,
    resolve_started_at_ms: Callable[[ProjectRecord], int | None] | None = None,
) -> bool:
    running = timer.get_active_timer()
    if running is not None:
        ports.notify(messages.timer_already_running(running.project_name))
        return False

    try:
        projects = list(load_projects())
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to load timer projects")
        ports.notify(messages.timer_projects_load_failed(messages.to_error_message(exc)))
        return False

    items = build_picker_items(projects)
    if not items:
        ports.notify(messages.TIMER_NO_PROJECTS)
        return False

    try:
        selected = ports.open_picker("Select active project", items)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to open timer project picker")
        ports.notify(messages.timer_picker_open_failed(messages.to_error_message(exc)))
        return False

    if selected is None:
        selected = _resolve_selection_fallback(projects, ports)
        if selected is None:
            ports.notify(messages.TIMER_NO_SELECTION)
            return False

    started_at_ms = None
    if resolve_started_at_ms is not None:
        started_at_ms = resolve_started_at_ms(selected)
        if started_at_ms is None:
            return False

    try:
        started = timer.start(
            TimerStartInput(
                project_path=selected.path,
                project_name=selected.name,
                started_at_ms=started_at_ms,
            )
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to persist timer start")
        ports.notify(messages.timer_persist_failed(messages.to_error_message(exc)))
        return False

    if not started:
        current = timer.get_active_timer()
        if current is not None:
            ports.notify(messages.timer_already_running(current.project_name))
        return False

    ports.notify(messages.timer_started(selected.name))
    return True


def run_start_timer_in_past_flow(
    timer: TimerService,
    load_projects: Callable[[], Sequence[ProjectRecord]],
    ports: TimerPorts,
    raw_start: str | None = None,
    tz: str | tzinfo | None = None,
) -> bool:
    def resolve_started_at_ms(_project: ProjectRecord) -> int | None:
        raw = raw_start
        if raw is None:
            raw = ports.open_text_prompt(
                "When did you start working on this project?",
                BACKDATED_START_PLACEHOLDER,
                "30",
            )
        return _resolve_backdated_start(
            timer,
            ports,
            raw,
            tz,
            confirm_title="Confirm backdated timer start",
            confirm_text="Start Timer",
        )

    return run_start_timer_flow(timer, load_projects, ports, resolve_started_at_ms)


def run_adjust_timer_start_flow(
    timer: TimerService,
    ports: TimerPorts,
    raw_start: str | None = None,
    tz: str | tzinfo | None = None,
) -> bool:
    running = timer.get_active_timer()
    if running is None:
        ports.notify(messages.TIMER_NO_RUNNING)
        return False

    raw = raw_start
    if raw is None:
        raw = ports.open_text_prompt(
            f"Adjust timer start for {running.project_name}",
            BACKDATED_START_PLACEHOLDER,
            "",
        )

    now = timer.get_snapshot().now
    started_at_ms = _resolve_backdated_start(
        timer,
        ports,
        raw,
        tz,
        confirm_title="Confirm timer start adjustment",
        confirm_text="Apply",
        now=now,
    )
    if started_at_ms is None:
        return False

    try:
        adjusted = timer.adjust_start(started_at_ms)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to persist timer start adjustment")
        ports.notify(messages.timer_adjust_failed(messages.to_error_message(exc)))
        return False

    active = timer.get_active_timer()
    if not adjusted or active is None:
        ports.notify(messages.TIMER_NO_RUNNING)
        return False

    summary = format_backdated_start_confirmation(started_at_ms, now, tz)
    ports.notify(messages.timer_adjusted_start(active.project_name, summary))
    return True


def run_stop_timer_flow(
    timer: TimerService,
    timezone_name: str | tzinfo | None,
    append_log_entry: Callable[[str, str], None],
    ports: TimerPorts,
    note_override: str | None = None,
) -> bool:
    details = timer.get_stop_details()
    if details is None:
        ports.notify(messages.TIMER_NO_RUNNING)
        return False

    note = note_override
    if note is None:
        note = ports.open_text_prompt("What did you work on?", "Short activity note", "")
        if note is None:
            return False

    date_iso = format_date_in_timezone(details.stopped_at, timezone_name)
    line = format_time_log_line(
        format_time_in_timezone(details.started_at, timezone_name),
        format_time_in_timezone(details.stopped_at, timezone_name),
        details.active_timer.project_name,
        details.duration_minutes,
        note,
    )

    append_log_entry(date_iso, line)
    timer.clear()

    ports.notify(messages.timer_logged(details.duration_minutes, details.active_timer.project_name, date_iso))
    return True


class TimerController:
    """Runs the timer flows with re-entrancy guards and user-facing error notices.

    The guards only stop a second flow of the same kind from starting while one
    is waiting on the user. Double starts that slip past them are still
    rejected by :meth:`TimerService.start`.
    """

    def __init__(
        self,
        timer: TimerService,
        scan_projects: Callable[[], ProjectScanResult],
        append_log_entry: Callable[[str, str], None],
        ports: TimerPorts,
        get_timezone: Callable[[], str],
        backdate_timezone: str | tzinfo | None = None,
    ):
        self._timer = timer
        self._scan_projects = scan_projects
        self._append_log_entry = append_log_entry
        self._ports = ports
        self._get_timezone = get_timezone
        self._backdate_timezone = backdate_timezone
        self._start_in_progress = False
        self._stop_in_progress = False
        self._adjust_in_progress = False

    def start(self) -> bool:
        return self._run_start_flow(
            lambda: run_start_timer_flow(self._timer, self._load_projects, self._ports)
        )

    def start_in_past(self, raw_start: str | None = None) -> bool:
        return self._run_start_flow(
            lambda: run_start_timer_in_past_flow(
                self._timer,
                self._load_projects,
                self._ports,
                raw_start=raw_start,
                tz=self._backdate_timezone,
            )
        )

    def stop(self, note_override: str | None = None) -> bool:
        if self._stop_in_progress:
            self._ports.notify(messages.TIMER_STOP_IN_PROGRESS)
            return False

        self._stop_in_progress = True
        try:
            return run_stop_timer_flow(
                self._timer,
                self._get_timezone(),
                self._append_log_entry,
                self._ports,
                note_override=note_override,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Stop timer flow failed")
            self._ports.notify(messages.timer_stop_failed(messages.to_error_message(exc)))
            return False
        finally:
            self._stop_in_progress = False

    def switch(self, note_override: str | None = None) -> bool:
        if self._timer.is_running() and not self.stop(note_override):
            return False
        return self.start()

    def adjust_start(self, raw_start: str | None = None) -> bool:
        if self._adjust_in_progress:
            self._ports.notify(messages.TIMER_ADJUST_IN_PROGRESS)
            return False

        self._adjust_in_progress = True
        try:
            return run_adjust_timer_start_flow(
                self._timer,
                self._ports,
                raw_start=raw_start,
                tz=self._backdate_timezone,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Adjust timer start flow failed")
            self._ports.notify(messages.timer_adjust_failed(messages.to_error_message(exc)))
            return False
        finally:
            self._adjust_in_progress = False

    def _run_start_flow(self, run_flow: Callable[[], bool]) -> bool:
        if self._start_in_progress:
            self._ports.notify(messages.TIMER_START_IN_PROGRESS)
            return False

        self._start_in_progress = True
        try:
            return run_flow()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Start timer flow failed")
            self._ports.notify(messages.timer_start_failed(messages.to_error_message(exc)))
            return False
        finally:
            self._start_in_progress = False

    def _load_projects(self) -> list[ProjectRecord]:
        result = self._scan_projects()
        if result.parse_failures:
            self._ports.notify(messages.timer_scan_parse_failures(len(result.parse_failures)))
            logger.warning("Timer project parse failures: %s", result.parse_failures)
        return result.projects


def _resolve_selection_fallback(projects: Sequence[ProjectRecord], ports: TimerPorts) -> ProjectRecord | None:
    typed = ports.open_text_prompt("Select project (fallback)", "Type project name exactly", "")
    if typed is None:
        return None

    target = typed.strip().lower()
    if not target:
        return None

    for project in projects:
        if project.name.strip().lower() == target:
            return project

    ports.notify(messages.TIMER_PROJECT_NAME_NOT_FOUND)
    return None


def _resolve_backdated_start(
    timer: TimerService,
    ports: TimerPorts,
    raw: str | None,
    tz: str | tzinfo | None,
    confirm_title: str,
    confirm_text: str,
    now: int | None = None,
) -> int | None:
    if raw is None:
        ports.notify(messages.TIMER_BACKDATED_START_CANCELLED)
        return None

    current = timer.get_snapshot().now if now is None else now
    started_at_ms = parse_backdated_start_input(raw, current, tz)
    if started_at_ms is None:
        ports.notify(messages.TIMER_BACKDATED_START_INVALID)
        return None

    summary = format_backdated_start_confirmation(started_at_ms, current, tz)
    if not ports.open_confirm(confirm_title, summary, confirm_text, "Cancel"):
        ports.notify(messages.TIMER_BACKDATED_START_CANCELLED)
        return None

    return started_at_ms
