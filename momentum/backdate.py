"""Parse "when did you start?" answers into absolute timestamps.

Two input shapes are understood:

* minutes ago: ``45``, ``90m``, ``1h30m``, ``2h``
* a wall-clock time: ``09:40``, ``9:40am``, ``9 pm``

Clock times resolve to their most recent past occurrence, so ``23:00``
entered at 01:00 means yesterday evening. Anything else yields None.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, tzinfo

from .dates import resolve_timezone, round_half_up

MINUTE_MS = 60_000

_HOURS_MINUTES_RE = re.compile(r"^(\d+)h(?:(\d+)m)?$", re.ASCII)
_MINUTES_RE = re.compile(r"^(\d+)m$", re.ASCII)
_CLOCK_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap]m)?$", re.ASCII | re.IGNORECASE)


def parse_backdated_start_input(raw: str, now_ms: int, tz: str | tzinfo | None = None) -> int | None:
    duration_minutes = _parse_duration_minutes(raw)
    if duration_minutes is not None:
        return now_ms - duration_minutes * MINUTE_MS
    return _parse_local_clock_time(raw, now_ms, tz)


def format_backdated_start_confirmation(started_at_ms: int, now_ms: int, tz: str | tzinfo | None = None) -> str:
    started_at = _local_datetime(started_at_ms, tz)
    now = _local_datetime(now_ms, tz)
    minutes_ago = max(1, round_half_up((now_ms - started_at_ms) / MINUTE_MS))
    date_suffix = "" if started_at.date() == now.date() else f" on {started_at:%Y-%m-%d}"
    return f"Starting at {_format_clock_label(started_at)}{date_suffix} ({minutes_ago}m ago)."


def _parse_duration_minutes(raw: str) -> int | None:
    normalized = re.sub(r"\s+", "", (raw or "").strip().lower())
    if not normalized:
        return None

    if normalized.isascii() and normalized.isdigit():
        return _positive(int(normalized))

    hours_and_minutes = _HOURS_MINUTES_RE.match(normalized)
    if hours_and_minutes:
        hours = int(hours_and_minutes.group(1))
        minutes = int(hours_and_minutes.group(2) or 0)
        return _positive(hours * 60 + minutes)

    minutes_only = _MINUTES_RE.match(normalized)
    if minutes_only:
        return _positive(int(minutes_only.group(1)))

    return None


def _parse_local_clock_time(raw: str, now_ms: int, tz: str | tzinfo | None) -> int | None:
    match = _CLOCK_RE.match((raw or "").strip())
    if not match:
        return None

    hour_token, minute_token, meridiem = match.groups()
    # A bare number already means "minutes ago"; clock input needs ":MM" or am/pm.
    if minute_token is None and meridiem is None:
        return None

    minute = int(minute_token) if minute_token is not None else 0
    if minute > 59:
        return None

    hour = int(hour_token)
    if meridiem is not None:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 if meridiem.lower() == "am" else hour % 12 + 12
    elif hour > 23:
        return None

    candidate = _local_datetime(now_ms, tz).replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate_ms = _to_epoch_ms(candidate)
    if candidate_ms >= now_ms:
        candidate_ms = _to_epoch_ms(candidate - timedelta(days=1))

    return candidate_ms if candidate_ms < now_ms else None


def _local_datetime(ms: int, tz: str | tzinfo | None) -> datetime:
    # Naive local datetimes let timestamp() apply the system zone's DST rules.
    if tz is None:
        return datetime.fromtimestamp(ms / 1000.0)
    return datetime.fromtimestamp(ms / 1000.0, tz=resolve_timezone(tz))


def _to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def _format_clock_label(value: datetime) -> str:
    suffix = "PM" if value.hour >= 12 else "AM"
    hour12 = value.hour % 12 or 12
    return f"{hour12}:{value.minute:02d} {suffix}"


def _positive(minutes: int) -> int | None:
    return minutes if minutes >= 1 else None
