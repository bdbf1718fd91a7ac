from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pytest

from aitk import applier as applier_module
from aitk.applier import EditApplier
from aitk.context_builder import ContextBuilder
from aitk.errors import ConflictDetected, OperationFailed, RolledBack
from aitk.parser import EditPlanParser, render_edit_plan
from aitk.structured import (
    CreateFile,
    DeleteFile,
    EditPlan,
    OperationStatus,
    RenameFile,
    ReplaceFile,
    ReplaceRegion,
    Verdict,
)
from aitk.tools.paths import RootSet


def _plan_for(project, *operations) -> tuple[EditApplier, EditPlan]:
    snapshot = ContextBuilder().build([project.root])
    plan = EditPlanParser.for_snapshot(snapshot).parse(render_edit_plan(operations))
    return EditApplier(snapshot.roots), plan


def test_region_replace_commits(sample_project) -> None:
    applier, plan = _plan_for(sample_project, ReplaceRegion(path="a.ts", match_text="old", new_text="new"))

    result = applier.apply(plan)

    assert result.verdict is Verdict.COMMITTED
    assert [outcome.status for outcome in result.outcomes] == [OperationStatus.APPLIED]
    assert sample_project.read("a.ts") == "new"
    assert result.counts() == {"create": 0, "replace": 1, "delete": 0, "rename": 0}


def test_mixed_plan_applies_in_order(sample_project) -> None:
    applier, plan = _plan_for(
        sample_project,
        CreateFile(path="docs/guide/intro.md", content="# Intro\n"),
        RenameFile(from_path="lib/util.js", to_path="lib/math.js"),
        ReplaceRegion(path="lib/math.js", match_text="a + b", new_text="b + a"),
        DeleteFile(path="README.md"),
    )

    result = applier.apply(plan)

    assert result.committed
    assert sample_project.read("docs/guide/intro.md") == "# Intro\n"
    assert not (sample_project.root / "lib" / "util.js").exists()
    assert "return b + a;" in sample_project.read("lib/math.js")
    assert not (sample_project.root / "README.md").exists()
    assert result.counts() == {"create": 1, "replace": 1, "delete": 1, "rename": 1}


def test_ambiguous_region_fails_without_writing(sample_project) -> None:
    (sample_project.root / "dup.txt").write_text("x\nx\n", encoding="utf-8")
    applier, plan = _plan_for(
        sample_project,
        CreateFile(path="new.txt", content="created first\n"),
        ReplaceRegion(path="dup.txt", match_text="x", new_text="y"),
    )
    before = sample_project.state()

    result = applier.apply(plan)

    assert result.verdict is Verdict.ROLLED_BACK
    assert result.outcomes[-1].status is OperationStatus.FAILED
    assert result.outcomes[-1].reason == "ambiguous match"
    assert isinstance(result.error, OperationFailed)
    assert result.error.operation_index == 1
    assert sample_project.state() == before


def test_first_occurrence_mode_replaces_first_match(sample_project) -> None:
    (sample_project.root / "dup.txt").write_text("x\nx\n", encoding="utf-8")
    snapshot = ContextBuilder().build([sample_project.root])
    plan = EditPlanParser.for_snapshot(snapshot).parse(
        render_edit_plan([ReplaceRegion(path="dup.txt", match_text="x", new_text="y")])
    )

    result = EditApplier(snapshot.roots, allow_first_occurrence=True).apply(plan)

    assert result.committed
    assert sample_project.read("dup.txt") == "y\nx\n"


def test_missing_match_fails(sample_project) -> None:
    applier, plan = _plan_for(sample_project, ReplaceRegion(path="a.ts", match_text="absent", new_text="x"))

    result = applier.apply(plan)

    assert not result.committed
    assert result.outcomes[0].reason == "match not found"
    assert sample_project.read("a.ts") == "old"


def test_create_is_idempotent_for_identical_content(sample_project) -> None:
    applier, plan = _plan_for(sample_project, CreateFile(path="README.md", content="# Sample\n"))

    result = applier.apply(plan)

    assert result.committed
    assert result.outcomes[0].status is OperationStatus.SKIPPED_UNCHANGED
    assert result.counts()["create"] == 0


def test_create_over_different_content_fails(sample_project) -> None:
    applier, plan = _plan_for(sample_project, CreateFile(path="README.md", content="# Other\n"))

    result = applier.apply(plan)

    assert not result.committed
    assert result.outcomes[0].reason == "file already exists"
    assert sample_project.read("README.md") == "# Sample\n"


def test_rename_onto_existing_file_fails(sample_project) -> None:
    applier, plan = _plan_for(sample_project, RenameFile(from_path="a.ts", to_path="README.md"))

    result = applier.apply(plan)

    assert not result.committed
    assert "already exists" in (result.outcomes[0].reason or "")


def test_stale_file_is_a_conflict(sample_project) -> None:
    applier, plan = _plan_for(
        sample_project,
        ReplaceFile(path="README.md", content="# Changed\n"),
        ReplaceRegion(path="a.ts", match_text="old", new_text="new"),
    )
    (sample_project.root / "a.ts").write_text("edited by someone else", encoding="utf-8")
    before = sample_project.state()

    result = applier.apply(plan)

    assert result.verdict is Verdict.ROLLED_BACK
    assert isinstance(result.error, ConflictDetected)
    assert result.error.paths == ("a.ts",)
    assert [outcome.status for outcome in result.outcomes] == [OperationStatus.CONFLICT_DETECTED]
    assert sample_project.state() == before


def test_file_appearing_after_snapshot_is_a_conflict(sample_project) -> None:
    applier, plan = _plan_for(sample_project, CreateFile(path="late.txt", content="mine\n"))
    (sample_project.root / "late.txt").write_text("theirs\n", encoding="utf-8")

    result = applier.apply(plan)

    assert isinstance(result.error, ConflictDetected)
    assert sample_project.read("late.txt") == "theirs\n"


def test_dry_run_validates_without_writing(sample_project) -> None:
    snapshot = ContextBuilder().build([sample_project.root])
    plan = EditPlanParser.for_snapshot(snapshot).parse(
        render_edit_plan([CreateFile(path="new.txt", content="hi\n"), DeleteFile(path="a.ts")])
    )
    before = sample_project.state()

    result = EditApplier(snapshot.roots, dry_run=True).apply(plan)

    assert result.committed
    assert result.dry_run
    assert [outcome.status for outcome in result.outcomes] == [OperationStatus.APPLIED, OperationStatus.APPLIED]
    assert sample_project.state() == before


def test_filesystem_error_rolls_back_everything(sample_project, monkeypatch) -> None:
    applier, plan = _plan_for(
        sample_project,
        ReplaceFile(path="README.md", content="# Rewritten\n"),
        DeleteFile(path="a.ts"),
        CreateFile(path="new/deep/file.txt", content="x\n"),
        ReplaceRegion(path="main.py", match_text="hello", new_text="hi"),
    )
    before = sample_project.state()

    real_atomic_write = applier_module.atomic_write

    def flaky_atomic_write(target: Path, data: bytes, *, mode=None) -> None:
        if target.name == "main.py":
            raise OSError(28, "No space left on device")
        real_atomic_write(target, data, mode=mode)

    monkeypatch.setattr(applier_module, "atomic_write", flaky_atomic_write)

    result = applier.apply(plan)

    assert result.verdict is Verdict.ROLLED_BACK
    assert isinstance(result.error, RolledBack)
    assert result.outcomes[-1].status is OperationStatus.FAILED
    assert "No space left on device" in (result.outcomes[-1].reason or "")
    assert sample_project.state() == before
    assert not (sample_project.root / "new").exists()
    assert set(result.restored_paths) == {"README.md", "a.ts", "new/deep/file.txt"}


def test_file_mode_is_preserved(sample_project) -> None:
    script = sample_project.root / "run.sh"
    script.write_text("echo old\n", encoding="utf-8")
    os.chmod(script, 0o755)
    applier, plan = _plan_for(sample_project, ReplaceFile(path="run.sh", content="echo new\n"))

    assert applier.apply(plan).committed

    assert script.stat().st_mode & 0o777 == 0o755
    assert script.read_text(encoding="utf-8") == "echo new\n"
    assert not [entry for entry in sample_project.root.iterdir() if entry.name.endswith(".aitk-tmp")]


def test_multi_root_plan_targets_each_root(tmp_path: Path) -> None:
    web = tmp_path / "web"
    api = tmp_path / "api"
    web.mkdir()
    api.mkdir()
    (web / "index.js").write_text("old\n", encoding="utf-8")
    snapshot = ContextBuilder().build([web, api])
    plan = EditPlanParser.for_snapshot(snapshot).parse(
        render_edit_plan(
            [
                ReplaceFile(path="web/index.js", content="new\n"),
                CreateFile(path="api/server.py", content="app = None\n"),
            ]
        )
    )

    result = EditApplier(snapshot.roots).apply(plan)

    assert result.committed
    assert (web / "index.js").read_text(encoding="utf-8") == "new\n"
    assert (api / "server.py").read_text(encoding="utf-8") == "app = None\n"


def test_symlinked_directory_escape_is_refused(tmp_path: Path) -> None:
    root = tmp_path / "project"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)
    plan = EditPlan(operations=(CreateFile(path="link/evil.txt", content="x\n"),))

    result = EditApplier(RootSet.from_paths([root])).apply(plan)

    assert not result.committed
    assert not (outside / "evil.txt").exists()


def test_telemetry_events_are_json(sample_project, caplog) -> None:
    applier, plan = _plan_for(sample_project, ReplaceRegion(path="a.ts", match_text="old", new_text="new"))

    with caplog.at_level(logging.INFO, logger="aitk.telemetry"):
        applier.apply(plan)

    events = [json.loads(record.getMessage()) for record in caplog.records if record.name == "aitk.telemetry"]
    assert events[-1]["event"] == "edit_plan_committed"
    assert events[-1]["applied"] == 1


@pytest.mark.parametrize(
    "operation",
    [
        ReplaceFile(path="missing.txt", content="x\n"),
        ReplaceRegion(path="missing.txt", match_text="a", new_text="b"),
        DeleteFile(path="missing.txt"),
        RenameFile(from_path="missing.txt", to_path="other.txt"),
    ],
)
def test_operations_on_missing_files_fail(sample_project, operation) -> None:
    applier, plan = _plan_for(sample_project, operation)

    result = applier.apply(plan)

    assert not result.committed
    assert result.outcomes[0].reason == "file does not exist"


def test_create_without_final_newline_is_idempotent(sample_project) -> None:
    snapshot = ContextBuilder().build([sample_project.root])
    plan = EditPlanParser.for_snapshot(snapshot).parse(
        "@@@ CREATE a.ts\n<<<CONTENT\nold\n\\ No newline at end of file\n>>>CONTENT\n@@@ END\n"
    )

    result = EditApplier(snapshot.roots).apply(plan)

    assert result.committed
    assert result.outcomes[0].status is OperationStatus.SKIPPED_UNCHANGED
    assert sample_project.read("a.ts") == "old"


def test_region_replace_keeps_crlf_line_endings(sample_project) -> None:
    target = sample_project.root / "notes.txt"
    target.write_bytes(b"line one\r\nline two\r\nline three\r\n")
    snapshot = ContextBuilder().build([sample_project.root])
    raw = (
        "@@@ REPLACE_REGION notes.txt\r\n"
        "<<<MATCH\r\nline one\r\nline two\r\n>>>MATCH\r\n"
        "<<<WITH\r\nfirst line\r\nsecond line\r\n>>>WITH\r\n"
        "@@@ END\r\n"
    )
    plan = EditPlanParser.for_snapshot(snapshot).parse(raw)

    result = EditApplier(snapshot.roots).apply(plan)

    assert result.committed
    assert target.read_bytes() == b"first line\r\nsecond line\r\nline three\r\n"


def test_replace_keeps_crlf_line_endings(sample_project) -> None:
    target = sample_project.root / "notes.txt"
    target.write_bytes(b"a\r\nb\r\n")
    applier, plan = _plan_for(
        sample_project,
        ReplaceFile(path="notes.txt", content="a\nc\n"),
    )

    result = applier.apply(plan)

    assert result.committed
    assert target.read_bytes() == b"a\r\nc\r\n"


def test_unchanged_crlf_file_is_skipped(sample_project) -> None:
    (sample_project.root / "notes.txt").write_bytes(b"a\r\nb\r\n")
    applier, plan = _plan_for(sample_project, CreateFile(path="notes.txt", content="a\nb\n"))

    result = applier.apply(plan)

    assert result.outcomes[0].status is OperationStatus.SKIPPED_UNCHANGED


def test_ignored_file_on_disk_is_reported_as_unscanned(sample_project) -> None:
    (sample_project.root / "debug.log").write_text("trace\n", encoding="utf-8")
    snapshot = ContextBuilder(ignore=["*.log"]).build([sample_project.root])
    plan = EditPlanParser.for_snapshot(snapshot).parse(
        render_edit_plan([ReplaceFile(path="debug.log", content="cleared\n")])
    )

    result = EditApplier(snapshot.roots).apply(plan)

    assert isinstance(result.error, ConflictDetected)
    assert result.outcomes[0].status is OperationStatus.CONFLICT_DETECTED
    assert result.outcomes[0].reason == "path exists on disk but was not part of the scanned context"
    assert sample_project.read("debug.log") == "trace\n"


def test_changed_file_keeps_stale_reason(sample_project) -> None:
    applier, plan = _plan_for(sample_project, ReplaceFile(path="README.md", content="# New\n"))
    (sample_project.root / "README.md").write_text("# Edited\n", encoding="utf-8")

    result = applier.apply(plan)

    assert result.outcomes[0].reason == "file changed since context was gathered"
