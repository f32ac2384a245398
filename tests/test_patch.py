from __future__ import annotations

from pathlib import Path

import pytest

from pycomrade.tools.builtin_tools.patch_tool import ApplyPatchTool, PatchError, apply_hunks, parse_unified_diff


def test_parse_multi_file_diff() -> None:
    diff = (
        "diff --git a/a.txt b/a.txt\n--- a/a.txt\n+++ b/a.txt\n@@ -1,2 +1,2 @@\n hello\n-world\n+WORLD\n"
        "--- /dev/null\n+++ b/new.txt\n@@ -0,0 +1,1 @@\n+fresh\n"
    )
    patches = parse_unified_diff(diff)
    assert [p.target for p in patches] == ["a.txt", "new.txt"]
    assert patches[1].old_path is None
    assert patches[0].hunks[0].before == ["hello", "world"]
    assert patches[0].hunks[0].after == ["hello", "WORLD"]


def test_hunk_applies_with_drifted_line_numbers() -> None:
    patches = parse_unified_diff("--- a/f\n+++ b/f\n@@ -1,1 +1,1 @@\n-target\n+changed\n")
    assert apply_hunks(["x", "y", "target", "z"], patches[0].hunks) == ["x", "y", "changed", "z"]


def test_hunk_that_does_not_match_raises() -> None:
    patches = parse_unified_diff("--- a/f\n+++ b/f\n@@ -1,1 +1,1 @@\n-missing\n+changed\n")
    with pytest.raises(PatchError):
        apply_hunks(["x"], patches[0].hunks)


def test_garbage_is_rejected() -> None:
    with pytest.raises(PatchError):
        parse_unified_diff("not a diff")


@pytest.mark.asyncio
async def test_apply_patch_creates_modifies_and_deletes(tool_ctx, workspace: Path) -> None:
    (workspace / "a.txt").write_text("hello\nworld\n", encoding="utf-8")
    (workspace / "old.txt").write_text("bye\n", encoding="utf-8")
    diff = (
        "--- a/a.txt\n+++ b/a.txt\n@@ -1,2 +1,2 @@\n hello\n-world\n+WORLD\n"
        "--- /dev/null\n+++ b/pkg/new.txt\n@@ -0,0 +1,2 @@\n+one\n+two\n"
        "--- a/old.txt\n+++ /dev/null\n@@ -1 +0,0 @@\n-bye\n"
    )
    res = await ApplyPatchTool().execute(tool_ctx, {"patch": diff})
    assert res.success, res.error
    assert (workspace / "a.txt").read_text(encoding="utf-8") == "hello\nWORLD\n"
    assert (workspace / "pkg" / "new.txt").read_text(encoding="utf-8") == "one\ntwo\n"
    assert not (workspace / "old.txt").exists()


@pytest.mark.asyncio
async def test_failed_hunk_leaves_every_file_untouched(tool_ctx, workspace: Path) -> None:
    (workspace / "a.txt").write_text("a\n", encoding="utf-8")
    (workspace / "b.txt").write_text("b\n", encoding="utf-8")
    diff = (
        "--- a/a.txt\n+++ b/a.txt\n@@ -1 +1 @@\n-a\n+A\n"
        "--- a/b.txt\n+++ b/b.txt\n@@ -1 +1 @@\n-nope\n+B\n"
    )
    res = await ApplyPatchTool().execute(tool_ctx, {"patch": diff})
    assert not res.success
    assert "Hunk 1 does not apply" in res.error
    assert (workspace / "a.txt").read_text(encoding="utf-8") == "a\n"
