from __future__ import annotations

import enum
import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Sequence

from .dates import is_valid_iso_date
from .models import FlattenedProject, ProjectRecord

TIMER_TERMINAL_STATUSES = frozenset(
    {
        "done",
        "complete",
        "completed",
        "cancelled",
        "canceled",
        "archived",
        "inactive",
        "closed",
    }
)

_TAG_SPLIT_RE = re.compile(r"[,\s]+")
_WIKI_LINK_RE = re.compile(r"^\[\[([^\]]+)\]\]$")
_STATUS_SEPARATOR_RE = re.compile(r"[_\s]+")
_TRUTHY_PROJECT_FLAGS = {"true", "yes", "project"}


class ProjectMarker(enum.Enum):
    """Which frontmatter key identified a note as a project, in precedence order."""

    TAG = "tag"
    TYPE = "type"
    KIND = "kind"
    FLAG = "flag"


def build_project_hierarchy(projects: Sequence[ProjectRecord]) -> list[FlattenedProject]:
    """Flatten projects into a deterministic parent/child pre-order listing.

    Parents are matched by case-insensitive name and only among the given
    records; an unresolved ``parent_name`` makes the record a root. Every
    input record is emitted exactly once, even when the parent data is
    cyclic or names collide.
    """
    items = sorted(projects, key=_project_order_key)
    by_name = {_normalize_project_key(project.name): project for project in items}
    children: dict[str, list[ProjectRecord]] = {}
    roots: list[ProjectRecord] = []

    for project in items:
        parent_key = _normalize_project_key(project.parent_name) if project.parent_name else ""
        if parent_key and parent_key in by_name:
            children.setdefault(parent_key, []).append(project)
            continue
        roots.append(project)

    for child_list in children.values():
        child_list.sort(key=_project_order_key)
    roots.sort(key=_project_order_key)

    flattened: list[FlattenedProject] = []
    visited: set[str] = set()

    def visit(root: ProjectRecord) -> None:
        stack: list[tuple[ProjectRecord, int]] = [(root, 0)]
        while stack:
            project, depth = stack.pop()
            if project.path in visited:
                continue
            visited.add(project.path)
            flattened.append(FlattenedProject(project=project, depth=depth))

            child_list = children.get(_normalize_project_key(project.name), [])
            for child in reversed(child_list):
                stack.append((child, depth + 1))

    for root in roots:
        visit(root)

    # Only reachable with cyclic parents; keeps the every-record-once guarantee.
    for project in items:
        if project.path not in visited:
            visit(project)

    return flattened


def normalize_tags(raw_tags: Any) -> list[str]:
    if isinstance(raw_tags, (list, tuple)):
        tags: list[str] = []
        for tag in raw_tags:
            tags.extend(_split_and_normalize_tag(str(tag)))
        return tags
    if isinstance(raw_tags, str):
        return _split_and_normalize_tag(raw_tags)
    return []


def has_project_tag(raw_tags: Any) -> bool:
    return "project" in normalize_tags(raw_tags)


def is_active_status(raw_status: Any) -> bool:
    return isinstance(raw_status, str) and raw_status.strip().lower() == "active"


def is_timer_eligible_status(raw_status: Any, terminal_statuses: frozenset[str] = TIMER_TERMINAL_STATUSES) -> bool:
    if not isinstance(raw_status, str):
        return True

    normalized = _STATUS_SEPARATOR_RE.sub("-", raw_status.strip().lower())
    if not normalized:
        return True
    return normalized not in terminal_statuses


def normalize_due_date(raw_value: Any) -> str | None:
    # YAML loaders turn unquoted ISO dates into date objects.
    if isinstance(raw_value, datetime):
        return raw_value.date().isoformat()
    if isinstance(raw_value, date):
        return raw_value.isoformat()
    if isinstance(raw_value, str):
        value = raw_value.strip()
        if is_valid_iso_date(value):
            return value
    return None


def extract_parent_project_name(raw_up: Any) -> str | None:
    if isinstance(raw_up, (list, tuple)):
        for value in raw_up:
            extracted = _parse_wiki_link(str(value))
            if extracted:
                return extracted
        return None
    if isinstance(raw_up, str):
        return _parse_wiki_link(raw_up)
    return None


def detect_project_marker(frontmatter: Mapping[str, Any]) -> ProjectMarker | None:
    if has_project_tag(frontmatter.get("tags")) or has_project_tag(frontmatter.get("tag")):
        return ProjectMarker.TAG
    if _normalize_string(frontmatter.get("type")) == "project":
        return ProjectMarker.TYPE
    if _normalize_string(frontmatter.get("kind")) == "project":
        return ProjectMarker.KIND

    flag = frontmatter.get("project")
    if isinstance(flag, bool):
        return ProjectMarker.FLAG if flag else None
    if isinstance(flag, str) and flag.strip().lower() in _TRUTHY_PROJECT_FLAGS:
        return ProjectMarker.FLAG
    return None


def leaf_note_name(target: str) -> str | None:
    """Reduce a link target like ``folder/Note.md|Alias`` to ``Note``."""
    without_alias = target.split("|")[0].strip()
    if not without_alias:
        return None

    leaf = without_alias.split("/")[-1].strip()
    if not leaf:
        return None
    return re.sub(r"\.md$", "", leaf, flags=re.IGNORECASE)


def _parse_wiki_link(value: str) -> str | None:
    trimmed = value.strip()
    if not trimmed:
        return None

    match = _WIKI_LINK_RE.match(trimmed)
    return leaf_note_name(match.group(1) if match else trimmed)


def _split_and_normalize_tag(value: str) -> list[str]:
    tokens = (re.sub(r"^#", "", item.strip()).lower() for item in _TAG_SPLIT_RE.split(value))
    return [token for token in tokens if token]


def _normalize_string(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _normalize_project_key(name: str) -> str:
    return name.strip().lower()


def _project_order_key(project: ProjectRecord) -> tuple[bool, str, str]:
    # Dated projects first (ascending), then case-insensitive name.
    due = project.due_date or ""
    return (not due, due, project.name.casefold())
