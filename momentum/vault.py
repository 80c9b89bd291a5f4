from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Any, Callable

import yaml

from .dates import get_note_context_from_basename, is_date_in_week
from .models import NoteContext, ProjectRecord, ProjectScanResult, TimeLogEntry
from .projects import (
    build_project_hierarchy,
    detect_project_marker,
    extract_parent_project_name,
    is_active_status,
    is_timer_eligible_status,
    normalize_due_date,
)
from .sections import TIME_LOGS_HEADING, append_time_log_line, upsert_active_projects_section, upsert_time_logs_section
from .settings import DEFAULT_SETTINGS, MomentumSettings
from .timelogs import aggregate_minutes_by_project, entries_to_jsonl, parse_time_logs_from_content

logger = logging.getLogger(__name__)

SCAN_MODES = ("timer", "snapshot")

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*$", re.DOTALL | re.MULTILINE)


class FrontmatterError(ValueError):
    pass


class Vault:
    """A directory of markdown notes addressed by POSIX paths relative to its root."""

    def __init__(self, root: Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def markdown_files(self) -> list[str]:
        if not self._root.is_dir():
            return []
        files: list[str] = []
        for path in self._root.rglob("*.md"):
            relative = path.relative_to(self._root)
            if any(part.startswith(".") for part in relative.parts[:-1]):
                continue
            if path.is_file():
                files.append(relative.as_posix())
        return sorted(files)

    def resolve(self, relative_path: str) -> Path:
        return self._root / PurePosixPath(normalize_vault_path(relative_path))

    def exists(self, relative_path: str) -> bool:
        return self.resolve(relative_path).exists()

    def read(self, relative_path: str) -> str:
        return self.resolve(relative_path).read_text(encoding="utf-8")

    def write(self, relative_path: str, content: str) -> None:
        target = self.resolve(relative_path)
        if target.is_dir():
            raise IsADirectoryError(f"{relative_path} is a folder")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8", newline="")

    def process(self, relative_path: str, transform: Callable[[str], str]) -> str:
        current = self.read(relative_path)
        updated = transform(current)
        if updated != current:
            self.write(relative_path, updated)
        return updated

    def ensure_file(self, relative_path: str, initial_content: str = "") -> bool:
        """Create the note if missing; returns True when it was created."""
        target = self.resolve(relative_path)
        if target.is_file():
            return False
        if target.exists():
            raise IsADirectoryError(f"{relative_path} is a folder")
        self.write(relative_path, initial_content)
        return True


class ProjectRepository:
    def __init__(
        self,
        vault: Vault,
        due_date_field: str | Callable[[], str] = DEFAULT_SETTINGS.due_date_field,
        terminal_statuses: frozenset[str] | None = None,
    ):
        self._vault = vault
        self._due_date_field = due_date_field
        self._terminal_statuses = terminal_statuses

    def snapshot_projects(self) -> list[ProjectRecord]:
        return self.scan("snapshot").projects

    def timer_candidates(self) -> ProjectScanResult:
        return self.scan("timer")

    def scan(self, mode: str) -> ProjectScanResult:
        if mode not in SCAN_MODES:
            raise ValueError(f"Unknown scan mode: {mode!r}")

        projects: list[ProjectRecord] = []
        parse_failures: list[str] = []
        files = self._vault.markdown_files()
        due_date_field = self._current_due_date_field()

        for relative_path in files:
            basename = PurePosixPath(relative_path).stem
            if get_note_context_from_basename(basename) is not None:
                continue

            try:
                frontmatter = read_frontmatter(self._vault.read(relative_path))
            except (OSError, UnicodeDecodeError, FrontmatterError) as exc:
                parse_failures.append(relative_path)
                logger.warning("Skipping project scan for %s: %s", relative_path, exc)
                continue

            if frontmatter is None or detect_project_marker(frontmatter) is None:
                continue

            status = frontmatter.get("status", frontmatter.get("state"))
            if mode == "snapshot" and not is_active_status(status):
                continue
            if mode == "timer" and not self._is_timer_eligible(status):
                continue

            projects.append(
                ProjectRecord(
                    path=relative_path,
                    name=basename,
                    due_date=normalize_due_date(frontmatter.get(due_date_field)),
                    parent_name=extract_parent_project_name(frontmatter.get("up")),
                )
            )

        return ProjectScanResult(
            projects=projects,
            parse_failures=parse_failures,
            scanned_markdown_count=len(files),
        )

    def _is_timer_eligible(self, status: Any) -> bool:
        if self._terminal_statuses is None:
            return is_timer_eligible_status(status)
        return is_timer_eligible_status(status, self._terminal_statuses)

    def _current_due_date_field(self) -> str:
        if callable(self._due_date_field):
            return self._due_date_field()
        return self._due_date_field


class NoteService:
    """Daily/weekly note maintenance on top of a :class:`Vault`."""

    def __init__(
        self,
        vault: Vault,
        repository: ProjectRepository,
        settings: MomentumSettings | Callable[[], MomentumSettings] = DEFAULT_SETTINGS,
    ):
        self._vault = vault
        self._repository = repository
        self._settings = settings

    @property
    def settings(self) -> MomentumSettings:
        if callable(self._settings):
            return self._settings()
        return self._settings

    def daily_note_path(self, date_iso: str) -> str:
        folder = self.settings.daily_note_folder.strip()
        raw_path = f"{folder}/{date_iso}.md" if folder else f"{date_iso}.md"
        return normalize_vault_path(raw_path)

    def ensure_note(self, relative_path: str) -> bool:
        created = self._vault.ensure_file(relative_path)
        if created and self.settings.auto_insert_on_create:
            self.regenerate_snapshot(relative_path)
        return created

    def entries_for_week(self, week_start_iso: str) -> list[TimeLogEntry]:
        entries: list[TimeLogEntry] = []
        for relative_path, context in self._daily_notes():
            if is_date_in_week(context.date, week_start_iso):
                entries.extend(self._parse_entries(relative_path, context))
        return entries

    def all_daily_entries(self) -> list[TimeLogEntry]:
        entries: list[TimeLogEntry] = []
        for relative_path, context in self._daily_notes():
            entries.extend(self._parse_entries(relative_path, context))
        entries.sort(key=lambda entry: (entry.date, entry.start))
        return entries

    def regenerate_snapshot(self, relative_path: str) -> int | None:
        """Rewrite the snapshot sections of a daily or weekly note.

        Returns the number of active projects rendered, or None when the path
        is not a daily/weekly note.
        """
        context = get_note_context_from_basename(PurePosixPath(relative_path).stem)
        if context is None:
            return None

        flattened = build_project_hierarchy(self._repository.snapshot_projects())
        weekly_minutes = aggregate_minutes_by_project(self.entries_for_week(context.week_start))

        def update(content: str) -> str:
            updated = upsert_active_projects_section(content, flattened, weekly_minutes)
            return upsert_time_logs_section(updated)

        self._vault.process(relative_path, update)
        logger.info("Regenerated %s snapshot for %s (%d projects)", context.kind, relative_path, len(flattened))
        return len(flattened)

    def append_log_entry(self, date_iso: str, entry_line: str) -> None:
        relative_path = self.daily_note_path(date_iso)
        self._vault.ensure_file(relative_path)
        self.regenerate_snapshot(relative_path)
        self._vault.process(relative_path, lambda content: append_time_log_line(content, entry_line))

    def export_time_entries(self) -> tuple[int, str]:
        entries = self.all_daily_entries()
        export_path = normalize_vault_path(self.settings.export_path or DEFAULT_SETTINGS.export_path)
        if self._vault.resolve(export_path).is_dir():
            raise IsADirectoryError(f"{export_path} is a folder")

        self._vault.write(export_path, entries_to_jsonl(entries))
        logger.info("Exported %d entries to %s", len(entries), export_path)
        return len(entries), export_path

    def _daily_notes(self) -> list[tuple[str, NoteContext]]:
        notes: list[tuple[str, NoteContext]] = []
        for relative_path in self._vault.markdown_files():
            context = get_note_context_from_basename(PurePosixPath(relative_path).stem)
            if context is not None and context.kind == "daily":
                notes.append((relative_path, context))
        return notes

    def _parse_entries(self, relative_path: str, context: NoteContext) -> list[TimeLogEntry]:
        try:
            content = self._vault.read(relative_path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping time logs in %s: %s", relative_path, exc)
            return []
        return parse_time_logs_from_content(content, relative_path, context.date, TIME_LOGS_HEADING)


def read_frontmatter(content: str) -> dict[str, Any] | None:
    """Parse the leading ``---`` YAML block.

    Returns None when the note has no frontmatter or it is empty. Raises
    FrontmatterError when the block is not valid YAML or not a mapping.
    """
    match = _FRONTMATTER_RE.match(content.lstrip("\ufeff"))
    if not match:
        return None

    try:
        parsed = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"invalid YAML frontmatter: {exc}") from exc

    if parsed is None:
        return None
    if not isinstance(parsed, dict):
        raise FrontmatterError("frontmatter is not a mapping")
    return {str(key): value for key, value in parsed.items()}


def normalize_vault_path(path: str) -> str:
    """Return ``path`` as a clean vault-relative POSIX path.

    Raises ValueError for ``..`` segments, which would leave the vault.
    """
    parts = [part for part in path.replace("\\", "/").split("/") if part and part != "."]
    if ".." in parts:
        raise ValueError(f"{path} points outside the vault")
    return "/".join(parts)
