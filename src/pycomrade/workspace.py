from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


class WorkspaceResolver(Protocol):
    def resolve(self, workspace_id: str) -> Path:
        """Return the workspace root, or raise KeyError for an unknown id."""
        ...


@dataclass
class StaticWorkspaceResolver:
    roots: dict[str, Path] = field(default_factory=dict)

    def add(self, workspace_id: str, root: Path | str) -> Path:
        p = Path(root).expanduser().resolve()
        if not p.is_dir():
            raise NotADirectoryError(f"Workspace root is not a directory: {p}")
        self.roots[workspace_id] = p
        return p

    def resolve(self, workspace_id: str) -> Path:
        if workspace_id not in self.roots:
            raise KeyError(f"Unknown workspace: {workspace_id}")
        return self.roots[workspace_id]
