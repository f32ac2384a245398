from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, relative_to_root, resolve_in_workspace

_HUNK_RE = re.compile(r"^@@\s*-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s*@@")


class PatchError(ValueError):
    pass


@dataclass
class Hunk:
    old_start: int | None
    lines: list[tuple[str, str]] = field(default_factory=list)

    @property
    def before(self) -> list[str]:
        return [t for tag, t in self.lines if tag in (" ", "-")]

    @property
    def after(self) -> list[str]:
        return [t for tag, t in self.lines if tag in (" ", "+")]


@dataclass
class FilePatch:
    old_path: str | None
    new_path: str | None
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def target(self) -> str:
        path = self.new_path or self.old_path
        if path is None:
            raise PatchError("Patch has no file path")
        return path


def _clean_path(raw: str) -> str | None:
    p = raw.split("\t")[0].strip()
    if p == "/dev/null":
        return None
    if p.startswith(("a/", "b/")):
        p = p[2:]
    return p


def parse_unified_diff(text: str) -> list[FilePatch]:
    patches: list[FilePatch] = []
    cur: FilePatch | None = None
    hunk: Hunk | None = None
    old_path: str | None = None
    for line in text.splitlines():
        if line.startswith("--- "):
            old_path = _clean_path(line[4:])
            hunk = None
            continue
        if line.startswith("+++ "):
            cur = FilePatch(old_path=old_path, new_path=_clean_path(line[4:]))
            patches.append(cur)
            hunk = None
            continue
        if line.startswith("@@"):
            if cur is None:
                raise PatchError("Hunk before any file header")
            m = _HUNK_RE.match(line)
            hunk = Hunk(old_start=int(m.group(1)) if m else None)
            cur.hunks.append(hunk)
            continue
        if hunk is None:
            continue
        if line.startswith("\\"):
            continue
        tag = line[:1] or " "
        if tag not in (" ", "-", "+"):
            continue
        hunk.lines.append((tag, line[1:]))
    if not patches:
        raise PatchError("No file headers (---/+++) found in patch")
    return patches


def _find(lines: list[str], block: list[str], hint: int) -> int:
    if not block:
        return min(max(hint, 0), len(lines))
    limit = len(lines) - len(block)
    for delta in range(0, len(lines) + 1):
        for pos in (hint - delta, hint + delta):
            if 0 <= pos <= limit and lines[pos:pos + len(block)] == block:
                return pos
    return -1


def apply_hunks(original: list[str], hunks: list[Hunk]) -> list[str]:
    out = list(original)
    offset = 0
    cursor = 0
    for i, h in enumerate(hunks, start=1):
        hint = (h.old_start - 1 + offset) if h.old_start else cursor
        pos = _find(out, h.before, max(hint, 0))
        if pos < 0:
            raise PatchError(f"Hunk {i} does not apply")
        out[pos:pos + len(h.before)] = h.after
        offset += len(h.after) - len(h.before)
        cursor = pos + len(h.after)
    return out


@dataclass
class ApplyPatchTool:
    spec: ToolSpec = ToolSpec(
        name="apply_patch",
        description="Apply a unified diff to files in the workspace. Nothing is written unless every hunk applies.",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {
                "patch": {"type": "string", "description": "Unified diff text."},
            },
            "required": ["patch"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        try:
            patches = parse_unified_diff(args["patch"])
            planned: list[tuple[Path, list[str] | None]] = []
            for fp in patches:
                target = resolve_in_workspace(ctx.root, fp.target)
                if fp.new_path is None:
                    planned.append((target, None))
                    continue
                if fp.old_path is None or not target.exists():
                    original: list[str] = []
                else:
                    original = target.read_text(encoding="utf-8").splitlines()
                planned.append((target, apply_hunks(original, fp.hunks)))
        except (PatchError, FsError) as e:
            return ToolResult.fail(f"Failed to apply patch: {e}")

        results = []
        for target, lines in planned:
            rel = relative_to_root(ctx.root, target)
            if lines is None:
                if target.exists():
                    target.unlink()
                results.append(f"Deleted {rel}")
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
            results.append(f"Patched {rel}")
        return ToolResult.ok("\n".join(results))
