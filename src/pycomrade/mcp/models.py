from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

TransportKind = Literal["stdio", "sse"]


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class MCPServerConfig:
    name: str
    transport: TransportKind = "stdio"
    command: list[str] = field(default_factory=list)
    url: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    prefix: str | None = None  # tool name prefix override
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def tool_prefix(self) -> str:
        return self.prefix or f"mcp.{self.name}"

    @staticmethod
    def from_obj(name: str, obj: Any) -> "MCPServerConfig | None":
        if not isinstance(obj, dict):
            return None
        transport = obj.get("transport")
        url = obj.get("url")
        if transport is None:
            transport = "sse" if isinstance(url, str) and "command" not in obj else "stdio"
        if transport not in {"stdio", "sse"}:
            return None
        cmd = obj.get("command") or []
        if isinstance(cmd, str):
            cmd = cmd.split()
        if not isinstance(cmd, list) or not all(isinstance(x, str) for x in cmd):
            return None
        if transport == "stdio" and not cmd:
            return None
        if transport == "sse" and not isinstance(url, str):
            return None
        env = obj.get("env", {})
        if not isinstance(env, dict):
            env = {}
        headers = obj.get("headers", {})
        if not isinstance(headers, dict):
            headers = {}
        cwd = obj.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            cwd = None
        prefix = obj.get("prefix")
        if prefix is not None and not isinstance(prefix, str):
            prefix = None
        return MCPServerConfig(
            name=name,
            transport=transport,
            command=[str(x) for x in cmd],
            url=url if isinstance(url, str) else None,
            env={str(k): str(v) for k, v in env.items()},
            cwd=cwd,
            prefix=prefix,
            headers={str(k): str(v) for k, v in headers.items()},
        )


@dataclass
class MCPToolInfo:
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


@dataclass
class ExternalConnection:
    name: str
    transport: TransportKind
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    tools: list[MCPToolInfo] = field(default_factory=list)
    error: str | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "transport": self.transport,
            "status": self.status.value,
            "tools": len(self.tools),
            "error": self.error,
        }
