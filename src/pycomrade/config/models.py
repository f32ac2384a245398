from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..mcp.models import MCPServerConfig
from ..tools.permissions import PermissionRule


@dataclass
class BehaviorConfig:
    """Behavior config loaded from JSON.

    Loop limits, the approval gate and the external tool servers to connect
    at startup.
    """

    approval_mode: str = "manual"
    # None waits forever.
    approval_timeout_s: float | None = 120.0
    max_tool_calls: int = 100
    max_nudges: int = 1
    shell_timeout_ms: int = 30000
    mcp_request_timeout_s: float = 30.0
    max_tool_result_chars: int = 20000
    browser_headless: bool = True

    permissions: list[PermissionRule] = field(default_factory=list)
    mcp_servers: dict[str, MCPServerConfig] = field(default_factory=dict)

    loaded_from: Path | None = None
