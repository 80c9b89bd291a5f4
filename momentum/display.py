from __future__ import annotations

from datetime import tzinfo

from .dates import format_datetime_in_timezone
from .models import TimerSnapshot


def format_elapsed_clock(elapsed_ms: int) -> str:
    total_seconds = max(0, int(elapsed_ms) // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_started_at_label(started_at_ms: int, tz: str | tzinfo | None) -> str:
    return format_datetime_in_timezone(started_at_ms, tz)


def format_status_bar_label(snapshot: TimerSnapshot) -> str:
    if snapshot.active_timer is None:
        return "⏱ Idle"
    return f"⏱ {snapshot.active_timer.project_name} {format_elapsed_clock(snapshot.elapsed_ms)}"
