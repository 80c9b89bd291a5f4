from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ProjectRecord:
    path: str
    name: str
    due_date: str | None = None
    parent_name: str | None = None


@dataclass(frozen=True)
class FlattenedProject:
    project: ProjectRecord
    depth: int


@dataclass(frozen=True)
class ActiveTimerState:
    project_path: str
    project_name: str
    started_at: int


@dataclass(frozen=True)
class TimerStartInput:
    project_path: str
    project_name: str
    started_at_ms: int | None = None


@dataclass(frozen=True)
class TimerSnapshot:
    active_timer: ActiveTimerState | None
    now: int
    elapsed_ms: int


@dataclass(frozen=True)
class TimerStopDetails:
    active_timer: ActiveTimerState
    started_at: datetime
    stopped_at: datetime
    elapsed_ms: int
    duration_minutes: int


@dataclass(frozen=True)
class TimeLogEntry:
    file_path: str
    date: str
    project: str
    start: str
    end: str
    minutes: int
    note: str
    line_number: int


@dataclass(frozen=True)
class NoteContext:
    kind: str
    date: str
    week_start: str


@dataclass(frozen=True)
class ZonedParts:
    date: str
    time: str


@dataclass(frozen=True)
class ProjectScanResult:
    projects: list[ProjectRecord]
    parse_failures: list[str] = field(default_factory=list)
    scanned_markdown_count: int = 0


@dataclass(frozen=True)
class PickerItem:
    value: Any
    label: str
    detail: str = ""
