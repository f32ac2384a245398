from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, read_text, relative_to_root, resolve_in_workspace

_SKIP_DIRS = {"node_modules", "__pycache__"}


@dataclass
class WriteFileTool:
    spec: ToolSpec = ToolSpec(
        name="write_file",
        description="Create or overwrite a file with the given content. Both path and content are required.",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the workspace."},
                "content": {"type": "string", "description": "Full file content."},
            },
            "required": ["path", "content"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        path = args["path"]
        content = args["content"]
        try:
            p = resolve_in_workspace(ctx.root, path)
        except FsError as e:
            return ToolResult.fail(str(e))
        if p.is_dir():
            return ToolResult.fail(f"Is a directory: {path}")

        def _write() -> None:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        return ToolResult.ok(f"Wrote {relative_to_root(ctx.root, p)} ({len(content)} chars).")


@dataclass
class ReadFileTool:
    spec: ToolSpec = ToolSpec(
        name="read_file",
        description="Read a text file from the workspace.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the workspace."},
                "max_chars": {"type": "integer", "default": 40000},
            },
            "required": ["path"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        path = args["path"]
        try:
            p = resolve_in_workspace(ctx.root, path)
        except FsError as e:
            return ToolResult.fail(str(e))
        if not p.exists() or not p.is_file():
            return ToolResult.fail(f"File not found: {path}")
        out = await asyncio.to_thread(read_text, p)
        max_chars = int(args.get("max_chars", 40000))
        if len(out) > max_chars:
            out = out[:max_chars] + "\n... (truncated)"
        return ToolResult.ok(out)


@dataclass
class CreateDirectoryTool:
    spec: ToolSpec = ToolSpec(
        name="create_directory",
        description="Create a directory (and any missing parents).",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to the workspace."},
            },
            "required": ["path"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        path = args["path"]
        try:
            p = resolve_in_workspace(ctx.root, path)
        except FsError as e:
            return ToolResult.fail(str(e))
        if p.exists() and not p.is_dir():
            return ToolResult.fail(f"A file already exists at {path}")
        p.mkdir(parents=True, exist_ok=True)
        return ToolResult.ok(f"Created directory {relative_to_root(ctx.root, p)}")


def _walk(base: Path, root: Path, recursive: bool, max_entries: int) -> list[str]:
    entries: list[str] = []
    if recursive:
        for cur, dirs, files in os.walk(base):
            dirs[:] = sorted(d for d in dirs if not d.startswith(".") and d not in _SKIP_DIRS)
            curp = Path(cur)
            for d in dirs:
                entries.append(f"[dir]  {relative_to_root(root, curp / d)}")
            for f in sorted(files):
                entries.append(f"[file] {relative_to_root(root, curp / f)}")
            if len(entries) >= max_entries:
                break
    else:
        for child in sorted(base.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower())):
            kind = "[dir] " if child.is_dir() else "[file]"
            entries.append(f"{kind} {relative_to_root(root, child)}")
    return entries[:max_entries]


@dataclass
class ListDirectoryTool:
    spec: ToolSpec = ToolSpec(
        name="list_directory",
        description="List files and directories under a path (defaults to the workspace root).",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to the workspace. Default '.'"},
                "recursive": {"type": "boolean", "description": "List recursively (skips dot dirs and node_modules)", "default": False},
                "max_entries": {"type": "integer", "default": 500},
            },
            "required": [],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        path = args.get("path") or "."
        recursive = bool(args.get("recursive", False))
        max_entries = int(args.get("max_entries", 500))
        try:
            p = resolve_in_workspace(ctx.root, path)
        except FsError as e:
            return ToolResult.fail(str(e))
        if not p.exists():
            return ToolResult.fail(f"Path not found: {path}")
        if not p.is_dir():
            return ToolResult.fail(f"Not a directory: {path}")
        entries = await asyncio.to_thread(_walk, p, ctx.root, recursive, max_entries)
        return ToolResult.ok("\n".join(entries) if entries else "Empty directory")
