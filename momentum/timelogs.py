from __future__ import annotations

import json
import logging
import re
from typing import Iterable, Sequence

from .dates import minutes_from_time_range
from .models import TimeLogEntry
from .projects import leaf_note_name
from .sections import TIME_LOGS_HEADING, find_section_bounds, split_lines

logger = logging.getLogger(__name__)

JSONL_SOURCE = "daily-note"

TIME_LOG_LINE_RE = re.compile(
    r'^\s*-\s*(\d{2}:\d{2})-(\d{2}:\d{2})\s+\[\[([^\]]+)\]\](?:\s+\((\d+)m\))?(?:\s+"([^"]*)")?\s*$',
    re.ASCII,
)


def parse_time_log_line(line: str) -> dict[str, object] | None:
    """Parse ``- HH:MM-HH:MM [[Project]] (Nm) "note"`` into its fields.

    Returns None for lines that do not follow the grammar. An explicit
    ``(Nm)`` annotation wins over the clock range.
    """
    match = TIME_LOG_LINE_RE.match(line)
    if not match:
        return None

    start, end, raw_link, explicit, note = match.groups()
    project = leaf_note_name(raw_link or "")
    if not project:
        return None

    minutes = int(explicit) if explicit is not None else minutes_from_time_range(start, end)
    return {
        "project": project,
        "start": start,
        "end": end,
        "minutes": max(0, minutes),
        "note": (note or "").strip(),
    }


def parse_time_logs_from_content(
    content: str,
    file_path: str,
    date_iso: str,
    heading_title: str = TIME_LOGS_HEADING,
) -> list[TimeLogEntry]:
    lines = split_lines(content)
    bounds = find_section_bounds(lines, heading_title)
    if bounds is None:
        return []

    entries: list[TimeLogEntry] = []
    for index in range(bounds.start + 1, bounds.end):
        parsed = parse_time_log_line(lines[index])
        if parsed is None:
            continue
        entries.append(
            TimeLogEntry(
                file_path=file_path,
                date=date_iso,
                project=str(parsed["project"]),
                start=str(parsed["start"]),
                end=str(parsed["end"]),
                minutes=int(parsed["minutes"]),
                note=str(parsed["note"]),
                line_number=index + 1,
            )
        )
    return entries


def aggregate_minutes_by_project(entries: Iterable[TimeLogEntry]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for entry in entries:
        key = entry.project.strip().lower()
        totals[key] = totals.get(key, 0) + entry.minutes
    return totals


def format_time_log_line(start: str, end: str, project_name: str, minutes: int, note: str) -> str:
    safe_note = note.strip().replace('"', "'")
    return f'- {start}-{end} [[{project_name}]] ({minutes}m) "{safe_note}"'


def entry_to_record(entry: TimeLogEntry) -> dict[str, object]:
    return {
        "source": JSONL_SOURCE,
        "filePath": entry.file_path,
        "date": entry.date,
        "project": entry.project,
        "start": entry.start,
        "end": entry.end,
        "minutes": entry.minutes,
        "note": entry.note,
        "lineNumber": entry.line_number,
    }


def entries_to_jsonl(entries: Sequence[TimeLogEntry]) -> str:
    lines = [
        json.dumps(entry_to_record(entry), ensure_ascii=False, separators=(",", ":"))
        for entry in entries
    ]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def entries_from_jsonl(text: str) -> list[TimeLogEntry]:
    """Decode an export back into entries, skipping lines that do not decode."""
    entries: list[TimeLogEntry] = []
    for line_number, raw in enumerate(text.splitlines(), start=1):
        if not raw.strip():
            continue
        try:
            record = json.loads(raw)
            if not isinstance(record, dict):
                raise ValueError("record is not an object")
            entries.append(
                TimeLogEntry(
                    file_path=str(record.get("filePath", "")),
                    date=str(record.get("date", "")),
                    project=str(record.get("project", "")),
                    start=str(record.get("start", "")),
                    end=str(record.get("end", "")),
                    minutes=int(record.get("minutes", 0)),
                    note=str(record.get("note", "")),
                    line_number=int(record.get("lineNumber", 0)),
                )
            )
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping malformed JSONL line %d: %s", line_number, exc)
    return entries
