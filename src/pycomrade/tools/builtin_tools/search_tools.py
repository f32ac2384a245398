from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Iterable

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, read_text, relative_to_root, resolve_in_workspace

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}
SOURCE_GLOBS = ("*.py", "*.ts", "*.tsx", "*.js", "*.jsx")
MAX_FILE_BYTES = 2 * 1024 * 1024


def iter_files(root: Path, base: Path, include: Iterable[str] | None = None) -> Iterable[Path]:
    """Walk ``base`` for files under the size cap; links resolving outside ``root`` are skipped."""
    patterns = list(include or [])
    if base.is_file():
        yield base
        return
    for cur, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS and not d.startswith("."))
        for name in sorted(files):
            if patterns and not any(fnmatch(name, p) for p in patterns):
                continue
            try:
                p = resolve_in_workspace(root, str(Path(cur) / name))
                if p.stat().st_size > MAX_FILE_BYTES:
                    continue
            except (FsError, OSError):
                continue
            yield p


def grep(root: Path, base: Path, regexes: list[re.Pattern[str]], include: Iterable[str] | None,
         max_matches: int) -> list[str]:
    out: list[str] = []
    for f in iter_files(root, base, include):
        try:
            text = read_text(f)
        except OSError:
            continue
        if "\x00" in text[:1024]:
            continue
        for i, line in enumerate(text.splitlines(), start=1):
            if any(rx.search(line) for rx in regexes):
                out.append(f"{relative_to_root(root, f)}:{i}: {line.strip()[:300]}")
                if len(out) >= max_matches:
                    return out
    return out


@dataclass
class CodeSearchTool:
    spec: ToolSpec = ToolSpec(
        name="code_search",
        description="Search file contents for a regex. Returns up to 50 matching lines with line numbers.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regular expression (falls back to literal text if invalid)."},
                "file_pattern": {"type": "string", "description": "Optional file name glob like '*.py'."},
                "path": {"type": "string", "description": "Directory to search. Default '.'"},
            },
            "required": ["pattern"],
        },
    )
    max_matches: int = 50

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        pattern = args["pattern"]
        try:
            base = resolve_in_workspace(ctx.root, args.get("path") or ".")
        except FsError as e:
            return ToolResult.fail(str(e))
        if not base.exists():
            return ToolResult.fail(f"Path not found: {args.get('path')}")
        try:
            rx = re.compile(pattern)
        except re.error:
            rx = re.compile(re.escape(pattern))
        include = [args["file_pattern"]] if args.get("file_pattern") else None
        hits = await asyncio.to_thread(grep, ctx.root, base, [rx], include, self.max_matches)
        if not hits:
            return ToolResult.ok(f"No matches found for pattern: {pattern}")
        return ToolResult.ok(f'Matches for "{pattern}":\n\n' + "\n".join(hits))


def symbol_patterns(symbol: str) -> list[re.Pattern[str]]:
    s = re.escape(symbol)
    return [
        re.compile(rf"\b(function|const|let|var|class|interface|type|enum)\s+{s}\b"),
        re.compile(rf"\b{s}\s*[=:]\s*(async\s+)?(function\b|\()"),
        re.compile(rf"^\s*(async\s+)?(def|class)\s+{s}\b"),
    ]


@dataclass
class FindSymbolTool:
    spec: ToolSpec = ToolSpec(
        name="find_symbol",
        description="Find where a function, class or variable is defined (Python and JS/TS sources).",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {"symbol": {"type": "string", "description": "Symbol name."}},
            "required": ["symbol"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        symbol = args["symbol"].strip()
        hits = await asyncio.to_thread(grep, ctx.root, ctx.root, symbol_patterns(symbol), SOURCE_GLOBS, 40)
        if not hits:
            return ToolResult.ok(f"No definitions found for symbol: {symbol}")
        return ToolResult.ok(f'Definitions for "{symbol}":\n\n' + "\n".join(hits))
