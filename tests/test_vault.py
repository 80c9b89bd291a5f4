from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from momentum.sections import CONTROLS_BLOCK_START, split_lines
from momentum.settings import MomentumSettings
from momentum.vault import (
    FrontmatterError,
    NoteService,
    ProjectRepository,
    Vault,
    normalize_vault_path,
    read_frontmatter,
)


def _write(root: Path, relative: str, content: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _project_note(status: str | None = "active", extra: str = "") -> str:
    lines = ["---", "tags: [project]"]
    if status is not None:
        lines.append(f"status: {status}")
    if extra:
        lines.append(extra)
    lines.extend(["---", "", "Body"])
    return "\n".join(lines) + "\n"


class FrontmatterTests(unittest.TestCase):
    def test_reads_mapping(self) -> None:
        parsed = read_frontmatter("\ufeff---\ntype: project\nend: 2026-03-01\n---\nbody\n")
        self.assertEqual(parsed["type"], "project")
        self.assertEqual(str(parsed["end"]), "2026-03-01")

    def test_missing_or_empty_block(self) -> None:
        self.assertIsNone(read_frontmatter("# Title\n"))
        self.assertIsNone(read_frontmatter("---\n---\nbody\n"))
        self.assertIsNone(read_frontmatter("text\n---\ntype: project\n---\n"))

    def test_invalid_blocks_raise(self) -> None:
        with self.assertRaises(FrontmatterError):
            read_frontmatter("---\ntype: [unclosed\n---\n")
        with self.assertRaises(FrontmatterError):
            read_frontmatter("---\n- a\n- b\n---\n")

    def test_normalize_vault_path(self) -> None:
        self.assertEqual(normalize_vault_path("./Daily\\2026-02-11.md"), "Daily/2026-02-11.md")
        self.assertEqual(normalize_vault_path("//a//b/"), "a/b")

    def test_normalize_rejects_parent_segments(self) -> None:
        for path in ("../x.md", "Daily/../../x.md", "..\\x.md"):
            with self.assertRaises(ValueError, msg=path):
                normalize_vault_path(path)


class ProjectScanTests(unittest.TestCase):
    def test_snapshot_and_timer_modes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "Projects/Active.md", _project_note("active", "end: 2026-02-20"))
            _write(root, "Projects/Paused.md", _project_note("paused"))
            _write(root, "Projects/Done.md", _project_note("done"))
            _write(root, "Projects/NoStatus.md", _project_note(None))
            _write(root, "Projects/Child.md", _project_note("active", 'up: "[[Active]]"'))
            _write(root, "Notes/Plain.md", "---\ntype: area\n---\n")
            _write(root, "2026-02-11.md", _project_note("active"))
            _write(root, ".trash/Old.md", _project_note("active"))

            repository = ProjectRepository(Vault(root))

            snapshot = repository.snapshot_projects()
            self.assertEqual(sorted(project.name for project in snapshot), ["Active", "Child"])
            active = next(project for project in snapshot if project.name == "Active")
            self.assertEqual(active.due_date, "2026-02-20")
            self.assertEqual(active.path, "Projects/Active.md")
            child = next(project for project in snapshot if project.name == "Child")
            self.assertEqual(child.parent_name, "Active")

            timer = repository.timer_candidates()
            self.assertEqual(sorted(project.name for project in timer.projects), ["Active", "Child", "NoStatus", "Paused"])
            self.assertEqual(timer.parse_failures, [])
            self.assertEqual(timer.scanned_markdown_count, 7)

    def test_state_field_and_custom_due_field(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "A.md", "---\nproject: true\nstate: Active\ndeadline: '2026-04-01'\n---\n")
            repository = ProjectRepository(Vault(root), due_date_field=lambda: "deadline")

            projects = repository.snapshot_projects()

            self.assertEqual([(project.name, project.due_date) for project in projects], [("A", "2026-04-01")])

    def test_parse_failures_are_collected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "Good.md", _project_note("active"))
            _write(root, "Bad.md", "---\ntags: [project\n---\n")

            with self.assertLogs("momentum.vault", level="WARNING"):
                result = ProjectRepository(Vault(root)).timer_candidates()

            self.assertEqual([project.name for project in result.projects], ["Good"])
            self.assertEqual(result.parse_failures, ["Bad.md"])

    def test_unknown_mode(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            with self.assertRaises(ValueError):
                ProjectRepository(Vault(Path(tmp_dir))).scan("everything")


class NoteServiceTests(unittest.TestCase):
    def _service(self, root: Path, **overrides) -> NoteService:
        vault = Vault(root)
        settings = MomentumSettings(timezone="UTC", **overrides)
        return NoteService(vault, ProjectRepository(vault), settings)

    def test_regenerate_daily_note(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "Projects/Alpha.md", _project_note("active"))
            _write(root, "2026-02-09.md", '## Time Logs\n- 09:00-10:00 [[Alpha]] (60m) "a"\n')
            _write(root, "2026-02-11.md", "# Wednesday\n")
            service = self._service(root)

            count = service.regenerate_snapshot("2026-02-11.md")

            self.assertEqual(count, 1)
            content = (root / "2026-02-11.md").read_text(encoding="utf-8")
            self.assertIn("| [[Alpha]] | - | 1h |", content)
            self.assertEqual(content.count(CONTROLS_BLOCK_START), 1)
            self.assertEqual(service.regenerate_snapshot("2026-02-11.md"), 1)
            self.assertEqual((root / "2026-02-11.md").read_text(encoding="utf-8"), content)

    def test_regenerate_ignores_non_periodic_notes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "Ideas.md", "x\n")
            self.assertIsNone(self._service(root).regenerate_snapshot("Ideas.md"))
            self.assertEqual((root / "Ideas.md").read_text(encoding="utf-8"), "x\n")

    def test_weekly_note_counts_only_its_week(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "Projects/Alpha.md", _project_note("active"))
            _write(root, "2026-02-08.md", "## Time Logs\n- 09:00-09:30 [[Alpha]] (30m)\n")
            _write(root, "2026-02-15.md", "## Time Logs\n- 09:00-11:00 [[Alpha]] (120m)\n")
            _write(root, "Weekly Note 2026-02-08.md", "")
            service = self._service(root)

            entries = service.entries_for_week("2026-02-08")
            self.assertEqual([entry.minutes for entry in entries], [30])

            self.assertEqual(service.regenerate_snapshot("Weekly Note 2026-02-08.md"), 1)
            weekly = (root / "Weekly Note 2026-02-08.md").read_text(encoding="utf-8")
            self.assertIn("| [[Alpha]] | - | 30m |", weekly)

    def test_append_log_entry_creates_daily_note_in_folder(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            service = self._service(root, daily_note_folder="Daily/")
            line = '- 09:00-09:35 [[Alpha]] (35m) "x"'

            service.append_log_entry("2026-02-11", line)
            service.append_log_entry("2026-02-11", line.replace("09:", "10:"))

            lines = split_lines((root / "Daily" / "2026-02-11.md").read_text(encoding="utf-8"))
            self.assertEqual(lines.count("## Time Logs"), 1)
            logged = [entry for entry in lines if entry.startswith("- ")]
            self.assertEqual(logged, [line, line.replace("09:", "10:")])

    def test_ensure_note_inserts_snapshot_on_create(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            service = self._service(root)

            self.assertTrue(service.ensure_note("2026-02-11.md"))
            self.assertFalse(service.ensure_note("2026-02-11.md"))
            self.assertIn("## Active Projects", (root / "2026-02-11.md").read_text(encoding="utf-8"))

            quiet = self._service(root, auto_insert_on_create=False)
            self.assertTrue(quiet.ensure_note("2026-02-12.md"))
            self.assertEqual((root / "2026-02-12.md").read_text(encoding="utf-8"), "")

    def test_export_writes_sorted_jsonl(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            _write(root, "2026-02-12.md", "## Time Logs\n- 08:00-08:15 [[B]]\n")
            _write(root, "2026-02-11.md", "## Time Logs\n- 10:00-10:30 [[A]]\n- 09:00-09:10 [[A]]\n")
            service = self._service(root)

            count, path = service.export_time_entries()

            self.assertEqual((count, path), (3, ".momentum/time-entries.jsonl"))
            records = [json.loads(line) for line in (root / path).read_text(encoding="utf-8").splitlines()]
            self.assertEqual([(r["date"], r["start"]) for r in records], [
                ("2026-02-11", "09:00"),
                ("2026-02-11", "10:00"),
                ("2026-02-12", "08:00"),
            ])

    def test_export_to_folder_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            (root / "exports").mkdir()
            service = self._service(root, export_path="exports")
            with self.assertRaises(IsADirectoryError):
                service.export_time_entries()

    def test_export_path_outside_vault_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir) / "vault"
            root.mkdir()
            service = self._service(root, export_path="../escaped.jsonl")
            with self.assertRaises(ValueError):
                service.export_time_entries()
            self.assertFalse((Path(tmp_dir) / "escaped.jsonl").exists())

    def test_undecodable_daily_note_is_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            (root / "2026-02-10.md").write_bytes(b"## Time Logs\ncaf\xe9\n")
            _write(root, "2026-02-09.md", "## Time Logs\n- 09:00-09:30 [[A]]\n")
            service = self._service(root)
            line = '- 09:00-09:35 [[Alpha]] (35m) "x"'

            with self.assertLogs("momentum.vault", level="WARNING") as logs:
                service.append_log_entry("2026-02-11", line)
                count, _ = service.export_time_entries()

            self.assertIn(line, (root / "2026-02-11.md").read_text(encoding="utf-8"))
            self.assertEqual(count, 2)
            self.assertTrue(any("2026-02-10.md" in message for message in logs.output))


if __name__ == "__main__":
    unittest.main()
