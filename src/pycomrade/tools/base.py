from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..mcp.manager import MCPManager
    from .browser import BrowserSession
    from .static_server import StaticServerRegistry


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    permission_key: str          # "read" | "edit" | "bash" | "net" | "browser" | "mcp"


class Tool(Protocol):
    spec: ToolSpec
    async def execute(self, ctx: "ToolContext", args: dict[str, Any]) -> "ToolResult": ...


@dataclass(frozen=True)
class ToolResult:
    success: bool
    output: str | None = None
    error: str | None = None

    @staticmethod
    def ok(output: str = "") -> "ToolResult":
        return ToolResult(success=True, output=output)

    @staticmethod
    def fail(error: str, output: str | None = None) -> "ToolResult":
        return ToolResult(success=False, output=output, error=error)

    @property
    def text(self) -> str:
        if self.success:
            return self.output or ""
        if self.error and self.output:
            return f"{self.error}\n{self.output}"
        return self.error or self.output or "Unknown error"

    def observation(self, tool_name: str) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return f"{tool_name} result: {status}\n{self.text}"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.output is not None:
            d["output"] = self.output
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class ToolContext:
    """What a handler may touch: one workspace root plus orchestrator-owned services."""
    cwd: str
    # Workspace id, used for per-workspace state (servers, approvals, traces).
    session_id: str | None = None
    shell_timeout_ms: int = 30000
    servers: "StaticServerRegistry | None" = None
    mcp: "MCPManager | None" = None
    browser: "BrowserSession | None" = None

    @property
    def root(self) -> Path:
        return Path(self.cwd).expanduser().resolve()
