from __future__ import annotations
from pathlib import Path


class FsError(RuntimeError):
    pass


class PathEscapeError(FsError):
    """Raised when a path resolves outside the workspace root."""


def resolve_in_workspace(root: Path, path_str: str) -> Path:
    """Resolve ``path_str`` against ``root`` and refuse anything outside it.

    Symlinks are followed before the check, so a link pointing out of the
    workspace is rejected as well. Nothing is created or modified here.
    """
    if path_str is None or not str(path_str).strip():
        raise FsError("Empty path")
    base = Path(root).expanduser().resolve()
    p = Path(str(path_str)).expanduser()
    if not p.is_absolute():
        p = base / p
    p = p.resolve()
    try:
        p.relative_to(base)
    except ValueError:
        raise PathEscapeError(f"Path escapes workspace: {path_str}")
    return p


def relative_to_root(root: Path, path: Path) -> str:
    base = Path(root).resolve()
    try:
        rel = path.resolve().relative_to(base)
    except ValueError:
        return str(path)
    return str(rel) or "."


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")
