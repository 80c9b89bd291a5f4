from __future__ import annotations

from typing import Iterable, Sequence

from .dates import add_days, get_week_start_sunday, round_half_up
from .models import TimeLogEntry


def filter_by_range(entries: Iterable[TimeLogEntry], from_date: str, to_date: str) -> list[TimeLogEntry]:
    # ISO dates order lexicographically.
    return [entry for entry in entries if from_date <= entry.date <= to_date]


def aggregate_by_project(entries: Iterable[TimeLogEntry]) -> list[dict[str, object]]:
    totals: dict[str, int] = {}
    for entry in entries:
        totals[entry.project] = totals.get(entry.project, 0) + entry.minutes

    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [
        {"project": project, "minutes": minutes, "hours": round_hours(minutes)}
        for project, minutes in ordered
    ]


def aggregate_by_day(entries: Iterable[TimeLogEntry], from_date: str, to_date: str) -> list[dict[str, object]]:
    """Daily totals for every date in ``[from_date, to_date]``, zero-filled."""
    totals: dict[str, int] = {}
    for entry in entries:
        totals[entry.date] = totals.get(entry.date, 0) + entry.minutes

    stats: list[dict[str, object]] = []
    day = from_date
    while day <= to_date:
        minutes = totals.get(day, 0)
        stats.append({"date": day, "minutes": minutes, "hours": round_hours(minutes)})
        day = add_days(day, 1)
    return stats


def aggregate_by_week(entries: Sequence[TimeLogEntry]) -> list[dict[str, object]]:
    totals: dict[str, int] = {}
    for entry in entries:
        week_start = get_week_start_sunday(entry.date)
        totals[week_start] = totals.get(week_start, 0) + entry.minutes

    return [
        {"weekStart": week_start, "minutes": minutes, "hours": round_hours(minutes)}
        for week_start, minutes in sorted(totals.items())
    ]


def round_hours(minutes: int) -> float:
    return round_half_up(minutes / 60 * 100) / 100
