from __future__ import annotations

import os
from pathlib import Path

import pytest

from pycomrade.tools.builtin_tools.files import ReadFileTool, WriteFileTool
from pycomrade.tools.builtin_tools.patch_tool import ApplyPatchTool
from pycomrade.tools.builtin_tools.search_tools import CodeSearchTool
from pycomrade.util.fs import FsError, PathEscapeError, resolve_in_workspace


@pytest.mark.parametrize("path", ["a.txt", "sub/dir/b.txt", "./c.txt", "sub/../d.txt"])
def test_relative_paths_resolve_inside(workspace: Path, path: str) -> None:
    p = resolve_in_workspace(workspace, path)
    assert p.is_relative_to(workspace.resolve())


@pytest.mark.parametrize("path", ["../x", "../../etc/passwd", "sub/../../x", "/etc/passwd"])
def test_escaping_paths_are_rejected(workspace: Path, path: str) -> None:
    with pytest.raises(PathEscapeError) as exc:
        resolve_in_workspace(workspace, path)
    assert "Path escapes workspace" in str(exc.value)


def test_absolute_path_inside_workspace_is_allowed(workspace: Path) -> None:
    inside = workspace / "x.txt"
    assert resolve_in_workspace(workspace, str(inside)) == inside.resolve()


def test_empty_path_is_rejected(workspace: Path) -> None:
    with pytest.raises(FsError):
        resolve_in_workspace(workspace, "  ")


@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
def test_symlink_pointing_outside_is_rejected(workspace: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    (workspace / "link").symlink_to(outside, target_is_directory=True)
    with pytest.raises(PathEscapeError):
        resolve_in_workspace(workspace, "link/secret.txt")


@pytest.mark.asyncio
async def test_write_outside_workspace_fails_without_side_effects(tool_ctx, workspace: Path) -> None:
    res = await WriteFileTool().execute(tool_ctx, {"path": "../escaped.txt", "content": "x"})
    assert not res.success
    assert "Path escapes workspace" in res.error
    assert not (workspace.parent / "escaped.txt").exists()


@pytest.mark.asyncio
async def test_write_then_read_inside_workspace(tool_ctx, workspace: Path) -> None:
    res = await WriteFileTool().execute(tool_ctx, {"path": "src/app.py", "content": "print('hi')\n"})
    assert res.success
    assert (workspace / "src" / "app.py").read_text(encoding="utf-8") == "print('hi')\n"
    read = await ReadFileTool().execute(tool_ctx, {"path": "src/app.py"})
    assert read.output == "print('hi')\n"


@pytest.mark.asyncio
async def test_patch_touching_outside_file_writes_nothing(tool_ctx, workspace: Path) -> None:
    (workspace / "ok.txt").write_text("a\n", encoding="utf-8")
    patch = (
        "--- a/ok.txt\n+++ b/ok.txt\n@@ -1 +1 @@\n-a\n+b\n"
        "--- a/../evil.txt\n+++ b/../evil.txt\n@@ -0,0 +1 @@\n+pwned\n"
    )
    res = await ApplyPatchTool().execute(tool_ctx, {"patch": patch})
    assert not res.success
    assert (workspace / "ok.txt").read_text(encoding="utf-8") == "a\n"
    assert not (workspace.parent / "evil.txt").exists()


@pytest.mark.asyncio
@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
async def test_search_skips_files_linked_from_outside(tool_ctx, workspace: Path, tmp_path: Path) -> None:
    secret = tmp_path / "secret.txt"
    secret.write_text("TOPSECRET=hunter2\n", encoding="utf-8")
    (workspace / "leak.txt").symlink_to(secret)
    (workspace / "notes.txt").write_text("TOPSECRET is a placeholder\n", encoding="utf-8")

    read = await ReadFileTool().execute(tool_ctx, {"path": "leak.txt"})
    assert not read.success

    res = await CodeSearchTool().execute(tool_ctx, {"pattern": "TOPSECRET"})
    assert res.success, res.error
    assert "notes.txt:1" in res.output
    assert "hunter2" not in res.output
    assert "leak.txt" not in res.output
