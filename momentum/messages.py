from __future__ import annotations

PREFIX = "Momentum:"

TIMER_START_IN_PROGRESS = f"{PREFIX} start timer is already in progress."
TIMER_STOP_IN_PROGRESS = f"{PREFIX} stop timer is already in progress."
TIMER_ADJUST_IN_PROGRESS = f"{PREFIX} adjust timer is already in progress."
TIMER_STATE_IDLE = f"{PREFIX} timer state -> idle."
TIMER_NO_PROJECTS = f"{PREFIX} no eligible timer projects found."
TIMER_NO_SELECTION = f"{PREFIX} no project was selected."
TIMER_PROJECT_NAME_NOT_FOUND = f"{PREFIX} project name not found."
TIMER_BACKDATED_START_CANCELLED = f"{PREFIX} backdated timer start cancelled."
TIMER_BACKDATED_START_INVALID = (
    f"{PREFIX} enter minutes ago or a local time (45, 90m, 1h30m, 09:40, 9:40am)."
)
TIMER_NO_RUNNING = f"{PREFIX} no timer is currently running."
EXPORT_PATH_IS_FOLDER = f"{PREFIX} export path points to a folder."


def snapshot_regenerated(note_label: str, count: int) -> str:
    return f"{PREFIX} regenerated {note_label} snapshot ({count} active projects)."


def timer_start_failed(detail: str) -> str:
    return f"{PREFIX} failed to start timer ({detail})."


def timer_stop_failed(detail: str) -> str:
    return f"{PREFIX} failed to stop timer ({detail})."


def timer_adjust_failed(detail: str) -> str:
    return f"{PREFIX} failed to adjust timer ({detail})."


def timer_scan_parse_failures(count: int) -> str:
    return f"{PREFIX} skipped {count} file(s) due to frontmatter parse issues."


def timer_state_running(summary: str) -> str:
    return f"{PREFIX} timer state -> {summary}."


def timer_already_running(project_name: str) -> str:
    return f"{PREFIX} timer already running for {project_name}."


def timer_projects_load_failed(detail: str) -> str:
    return f"{PREFIX} could not load active projects ({detail})."


def timer_picker_open_failed(detail: str) -> str:
    return f"{PREFIX} project picker could not open ({detail})."


def timer_persist_failed(detail: str) -> str:
    return f"{PREFIX} could not persist timer state ({detail})."


def timer_started(project_name: str) -> str:
    return f"{PREFIX} timer started for {project_name}."


def timer_adjusted_start(project_name: str, summary: str) -> str:
    return f"{PREFIX} adjusted timer start for {project_name}. {summary}"


def timer_logged(minutes: int, project_name: str, date_iso: str) -> str:
    return f"{PREFIX} logged {minutes}m for {project_name} in {date_iso}."


def exported_entries(count: int, export_path: str) -> str:
    return f"{PREFIX} exported {count} entries to {export_path}."


def backend_refreshed(entries: int | None) -> str:
    if entries is None:
        return f"{PREFIX} dashboard backend refreshed."
    return f"{PREFIX} dashboard backend refreshed ({entries} entries)."


def backend_refresh_failed(detail: str) -> str:
    return f"{PREFIX} {detail}."


def to_error_message(error: object) -> str:
    if isinstance(error, BaseException):
        text = str(error).strip()
        if text:
            return text
    elif isinstance(error, str) and error.strip():
        return error.strip()
    return "unknown error"
