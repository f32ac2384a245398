from __future__ import annotations

import shlex
import shutil
from dataclasses import dataclass
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, resolve_in_workspace
from ...util.subprocess import run_cmd

GIT_TIMEOUT = 60


async def _git(ctx: ToolContext, *argv: str) -> tuple[bool, str]:
    git = shutil.which("git")
    if not git:
        return False, "git is not installed"
    res = await run_cmd([git, *argv], cwd=str(ctx.root), timeout=GIT_TIMEOUT)
    if res.timed_out:
        return False, f"git {argv[0]} timed out"
    if res.returncode != 0:
        return False, (res.stderr or res.stdout).strip() or f"git {argv[0]} failed"
    return True, res.stdout


def _contained(ctx: ToolContext, paths: list[str]) -> list[str]:
    # Raises PathEscapeError for anything outside the workspace.
    return [str(resolve_in_workspace(ctx.root, p)) for p in paths]


@dataclass
class GitStatusTool:
    spec: ToolSpec = ToolSpec(
        name="git_status",
        description="Show the working tree status (short format).",
        permission_key="read",
        parameters={"type": "object", "properties": {}, "required": []},
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        ok, out = await _git(ctx, "status", "--short")
        if not ok:
            return ToolResult.fail(f"Not a git repository or git not available: {out}")
        return ToolResult.ok(out or "Working tree clean")


@dataclass
class GitDiffTool:
    spec: ToolSpec = ToolSpec(
        name="git_diff",
        description="Show unstaged (or staged) changes, optionally for one file.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {
                "staged": {"type": "boolean", "description": "Show staged changes instead."},
                "file": {"type": "string", "description": "Limit the diff to this file."},
            },
            "required": [],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        argv = ["diff"]
        if args.get("staged"):
            argv.append("--staged")
        if args.get("file"):
            try:
                argv += ["--", *_contained(ctx, [args["file"]])]
            except FsError as e:
                return ToolResult.fail(str(e))
        ok, out = await _git(ctx, *argv)
        if not ok:
            return ToolResult.fail(f"Git diff failed: {out}")
        return ToolResult.ok(out or "No changes")


@dataclass
class GitAddTool:
    spec: ToolSpec = ToolSpec(
        name="git_add",
        description="Stage files for commit. Use '.' for everything.",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {"files": {"type": "string", "description": "Space-separated paths to stage."}},
            "required": ["files"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        files = args["files"]
        try:
            paths = _contained(ctx, shlex.split(files))
        except (FsError, ValueError) as e:
            return ToolResult.fail(str(e))
        if not paths:
            return ToolResult.fail("git_add requires at least one path")
        ok, out = await _git(ctx, "add", "--", *paths)
        if not ok:
            return ToolResult.fail(f"Git add failed: {out}")
        return ToolResult.ok(f"Staged: {files}")


@dataclass
class GitCommitTool:
    spec: ToolSpec = ToolSpec(
        name="git_commit",
        description="Commit staged changes.",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {"message": {"type": "string", "description": "Commit message."}},
            "required": ["message"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        message = args.get("message") or "Auto-commit"
        ok, out = await _git(ctx, "commit", "-m", message)
        if not ok:
            return ToolResult.fail(f"Git commit failed: {out}")
        return ToolResult.ok(f"Committed: {message}\n{out.strip()}")


@dataclass
class GitLogTool:
    spec: ToolSpec = ToolSpec(
        name="git_log",
        description="Show recent commits, one per line.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {"count": {"type": "integer", "description": "Number of commits (default 10)."}},
            "required": [],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        count = max(1, min(int(args.get("count") or 10), 200))
        ok, out = await _git(ctx, "log", "--oneline", f"-{count}")
        if not ok:
            return ToolResult.fail(f"Git log failed: {out}")
        return ToolResult.ok(out or "No commits yet")
