from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ExecutionContext:
    """Per-workspace state for one chat turn.

    The workspace root is resolved once and never changes. ``approved_tools``
    and ``allow_all`` may be handed to the next turn by the orchestrator.
    """

    workspace_id: str
    _root: Path
    approved_tools: set[str] = field(default_factory=set)
    allow_all: bool = False
    tool_calls: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @staticmethod
    def create(workspace_id: str, root: Path | str, *, approved_tools: set[str] | None = None,
               allow_all: bool = False) -> "ExecutionContext":
        return ExecutionContext(
            workspace_id=workspace_id,
            _root=Path(root).expanduser().resolve(),
            approved_tools=set(approved_tools or ()),
            allow_all=allow_all,
        )

    @property
    def root(self) -> Path:
        return self._root

    def bump(self) -> int:
        self.tool_calls += 1
        return self.tool_calls

    def skips_gate(self, tool_name: str) -> bool:
        return self.allow_all or tool_name in self.approved_tools
