"""Level-2 section editing for markdown notes.

A note is treated as free text with a few named regions the tool owns. A
region starts at a ``## <Title>`` line and runs until the next heading of
level 1 or 2 (or the end of the document). Regions are replaced in place or
appended at the end of the note; nothing outside them is touched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from .dates import format_minutes
from .models import FlattenedProject

ACTIVE_PROJECTS_HEADING = "Active Projects"
TIME_LOGS_HEADING = "Time Logs"
CONTROLS_BLOCK_START = "<!-- momentum:controls:start -->"
CONTROLS_BLOCK_END = "<!-- momentum:controls:end -->"
CONTROLS_FENCE_LANGUAGE = "project-timer-controls"
TIME_LOG_TEMPLATE_COMMENT = '<!-- Format: - 09:10-09:45 [[Project]] (35m) "what was done" -->'

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$")
_TRAILING_BLANKS_RE = re.compile(r"\n{3,}$")


@dataclass(frozen=True)
class SectionBounds:
    start: int
    end: int


def upsert_active_projects_section(
    content: str,
    flattened_projects: Sequence[FlattenedProject],
    weekly_minutes_by_project: Mapping[str, int],
) -> str:
    lines = render_active_projects_lines(flattened_projects, weekly_minutes_by_project)
    return replace_whole_section(content, ACTIVE_PROJECTS_HEADING, lines)


def upsert_time_logs_section(content: str) -> str:
    """Ensure the time-log section exists with exactly one controls block.

    Any previously rendered controls block is dropped and a fresh one is
    placed at the top of the section, followed by whatever else the section
    held. Running this repeatedly yields the same document.
    """
    existing = get_section_body_lines(content, TIME_LOGS_HEADING)
    preserved = _remove_existing_controls(existing) if existing is not None else []

    body = [*render_controls_block_lines(), ""]
    if any(line.strip() for line in preserved):
        body.extend(_trim_leading_blank_lines(preserved))
    else:
        body.append(TIME_LOG_TEMPLATE_COMMENT)

    return replace_whole_section(content, TIME_LOGS_HEADING, body)


def append_time_log_line(content: str, line: str) -> str:
    with_section = upsert_time_logs_section(content)
    all_lines = split_lines(with_section)
    bounds = find_section_bounds(all_lines, TIME_LOGS_HEADING)
    if bounds is None:
        return with_section

    body = all_lines[bounds.start + 1 : bounds.end]
    entries = _trim_trailing_blank_lines(body)
    # Blank separators before the next heading stay below the new entry.
    separator = body[len(entries) :]
    replacement = [f"## {TIME_LOGS_HEADING}", *entries, line, *separator]

    return join_lines([*all_lines[: bounds.start], *replacement, *all_lines[bounds.end :]])


def get_section_body_lines(content: str, heading_title: str) -> list[str] | None:
    lines = split_lines(content)
    bounds = find_section_bounds(lines, heading_title)
    if bounds is None:
        return None
    return lines[bounds.start + 1 : bounds.end]


def replace_whole_section(content: str, heading_title: str, section_body_lines: Sequence[str]) -> str:
    lines = split_lines(content)
    bounds = find_section_bounds(lines, heading_title)
    replacement = [f"## {heading_title.strip()}", *section_body_lines]

    if bounds is None:
        output = _trim_trailing_blank_lines(lines)
        if output:
            output.append("")
        output.extend(replacement)
        return join_lines(output)

    old_body = lines[bounds.start + 1 : bounds.end]
    separator = old_body[len(_trim_trailing_blank_lines(old_body)) :]
    if replacement[-1].strip():
        replacement.extend(separator)

    return join_lines([*lines[: bounds.start], *replacement, *lines[bounds.end :]])


def find_section_bounds(lines: Sequence[str], heading_title: str) -> SectionBounds | None:
    title = heading_title.strip()
    start = -1

    for index, line in enumerate(lines):
        heading = _parse_heading(line)
        if heading is not None and heading == (2, title):
            start = index
            break

    if start == -1:
        return None

    end = len(lines)
    for index in range(start + 1, len(lines)):
        heading = _parse_heading(lines[index])
        if heading is not None and heading[0] <= 2:
            end = index
            break

    return SectionBounds(start=start, end=end)


def render_active_projects_lines(
    flattened_projects: Sequence[FlattenedProject],
    weekly_minutes_by_project: Mapping[str, int],
) -> list[str]:
    lines = ["| Project | Due | This Week |", "| --- | --- | --- |"]

    if not flattened_projects:
        lines.append("| No active projects | - | 0m |")
        return lines

    for item in flattened_projects:
        name_key = item.project.name.strip().lower()
        weekly_minutes = weekly_minutes_by_project.get(name_key, 0)
        due = item.project.due_date or "-"

        display_name = f"[[{item.project.name}]]"
        if item.depth > 0:
            indent = "&nbsp;" * (item.depth * 4)
            display_name = f"{indent}↳ {display_name}"

        lines.append(f"| {display_name} | {due} | {format_minutes(weekly_minutes)} |")

    return lines


def render_controls_block_lines() -> list[str]:
    return [
        CONTROLS_BLOCK_START,
        f"```{CONTROLS_FENCE_LANGUAGE}",
        "```",
        CONTROLS_BLOCK_END,
    ]


def split_lines(content: str) -> list[str]:
    """Split into LF lines; the terminating newline does not add an empty line."""
    if not content:
        return []
    normalized = content.replace("\r\n", "\n")
    if normalized.endswith("\n"):
        normalized = normalized[:-1]
    return normalized.split("\n")


def join_lines(lines: Sequence[str]) -> str:
    return _TRAILING_BLANKS_RE.sub("\n\n", "\n".join(lines) + "\n")


def _parse_heading(line: str) -> tuple[int, str] | None:
    match = _HEADING_RE.match(line)
    if not match:
        return None
    return len(match.group(1)), match.group(2).strip()


def _remove_existing_controls(body_lines: list[str]) -> list[str]:
    remaining = list(body_lines)
    while True:
        stripped = [line.strip() for line in remaining]
        if CONTROLS_BLOCK_START not in stripped:
            return remaining
        start = stripped.index(CONTROLS_BLOCK_START)
        try:
            end = stripped.index(CONTROLS_BLOCK_END, start + 1)
        except ValueError:
            return remaining
        remaining = [*remaining[:start], *remaining[end + 1 :]]


def _trim_trailing_blank_lines(lines: Sequence[str]) -> list[str]:
    trimmed = list(lines)
    while trimmed and not trimmed[-1].strip():
        trimmed.pop()
    return trimmed


def _trim_leading_blank_lines(lines: Sequence[str]) -> list[str]:
    index = 0
    while index < len(lines) and not lines[index].strip():
        index += 1
    return list(lines[index:])
