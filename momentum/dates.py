from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import NoteContext, ZonedParts

DAILY_NOTE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)
WEEKLY_NOTE_RE = re.compile(r"^Weekly Note (\d{4}-\d{2}-\d{2})$", re.ASCII)

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$", re.ASCII)
_CLOCK_RE = re.compile(r"^(\d{2}):(\d{2})$", re.ASCII)


def is_valid_iso_date(value: str) -> bool:
    """Return True for a real calendar date written as ``YYYY-MM-DD``."""
    match = _ISO_DATE_RE.match(value or "")
    if not match:
        return False
    try:
        parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return False
    return parsed.isoformat() == value


def get_note_context_from_basename(basename: str) -> NoteContext | None:
    if DAILY_NOTE_RE.match(basename) and is_valid_iso_date(basename):
        return NoteContext(kind="daily", date=basename, week_start=get_week_start_sunday(basename))

    weekly = WEEKLY_NOTE_RE.match(basename)
    if weekly and is_valid_iso_date(weekly.group(1)):
        return NoteContext(kind="weekly", date=weekly.group(1), week_start=weekly.group(1))

    return None


def get_week_start_sunday(date_iso: str) -> str:
    # Calendar dates carry no wall-clock time, so DST never shifts the result.
    day = date.fromisoformat(date_iso)
    days_since_sunday = (day.weekday() + 1) % 7
    return (day - timedelta(days=days_since_sunday)).isoformat()


def add_days(date_iso: str, days: int) -> str:
    return (date.fromisoformat(date_iso) + timedelta(days=days)).isoformat()


def is_date_in_week(date_iso: str, week_start_iso: str) -> bool:
    day = date.fromisoformat(date_iso)
    week_start = date.fromisoformat(week_start_iso)
    return week_start <= day <= week_start + timedelta(days=6)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_minutes(total_minutes: float) -> str:
    safe = max(0, round_half_up(total_minutes))
    hours, minutes = divmod(safe, 60)

    if hours == 0:
        return f"{minutes}m"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def minutes_from_time_range(start: str, end: str) -> int:
    """Minutes between two ``HH:MM`` clock times.

    Ranges that cross midnight wrap around (``23:30``-``00:15`` is 45).
    Unparseable input yields 0 rather than an error.
    """
    start_minutes = _parse_clock_minutes(start)
    end_minutes = _parse_clock_minutes(end)
    if start_minutes is None or end_minutes is None:
        return 0

    raw = end_minutes - start_minutes
    if raw >= 0:
        return raw
    return raw + 24 * 60


def resolve_timezone(name: str | tzinfo | None) -> tzinfo:
    """Resolve an IANA zone name, ``"UTC"`` or ``"local"`` to a tzinfo.

    Raises ValueError for unknown identifiers.
    """
    if isinstance(name, tzinfo):
        return name

    text = (name or "").strip()
    if _is_local(text):
        return datetime.now().astimezone().tzinfo or timezone.utc
    if text.upper() in {"UTC", "Z", "GMT"}:
        return timezone.utc

    try:
        return ZoneInfo(text)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone identifier: {text!r}") from exc


def get_zoned_parts(instant: datetime | int | float, tz: str | tzinfo | None) -> ZonedParts:
    # astimezone(None) follows the system zone's DST rules.
    zone = resolve_timezone(tz) if isinstance(tz, tzinfo) or not _is_local(tz) else None
    local = _to_aware(instant).astimezone(zone)
    return ZonedParts(date=local.strftime("%Y-%m-%d"), time=local.strftime("%H:%M"))


def format_date_in_timezone(instant: datetime | int | float, tz: str | tzinfo | None) -> str:
    return get_zoned_parts(instant, tz).date


def format_time_in_timezone(instant: datetime | int | float, tz: str | tzinfo | None) -> str:
    return get_zoned_parts(instant, tz).time


def format_datetime_in_timezone(instant: datetime | int | float, tz: str | tzinfo | None) -> str:
    parts = get_zoned_parts(instant, tz)
    return f"{parts.date} {parts.time}"


def epoch_ms_to_datetime(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def _is_local(name: str | None) -> bool:
    text = (name or "").strip().lower()
    return not text or text in {"local", "system"}


def _to_aware(instant: datetime | int | float) -> datetime:
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            return instant.astimezone()
        return instant
    return epoch_ms_to_datetime(instant)


def _parse_clock_minutes(value: str) -> int | None:
    match = _CLOCK_RE.match(value or "")
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes
