from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..tools.base import ToolContext, ToolResult, ToolSpec
from ..tools.registry import ToolRegistry
from .errors import MCPConnectionLost, MCPError
from .manager import MCPManager
from .models import MCPServerConfig, MCPToolInfo

logger = logging.getLogger(__name__)


@dataclass
class MCPTool:
    """Exposes one remote tool as ``<prefix>.<tool>`` in the local registry."""
    spec: ToolSpec
    manager: MCPManager
    server: str
    remote_name: str

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        try:
            return await self.manager.invoke(self.server, self.remote_name, args)
        except MCPConnectionLost:
            # Context-fatal: the loop turns this into an error chunk.
            raise
        except MCPError as e:
            return ToolResult.fail(str(e))


def _spec_for(config: MCPServerConfig, info: MCPToolInfo) -> ToolSpec:
    params = info.input_schema if isinstance(info.input_schema, dict) and info.input_schema else {
        "type": "object", "properties": {}, "required": [],
    }
    return ToolSpec(
        name=f"{config.tool_prefix}.{info.name}",
        description=f"[MCP:{config.name}] {info.description}".strip(),
        parameters=params,
        permission_key="mcp",
    )


def bridge_mcp_tools(registry: ToolRegistry, manager: MCPManager) -> None:
    """Keep ``registry`` in step with the manager's live connections."""
    owned: dict[str, list[str]] = {}

    def _on_connect(name: str, config: MCPServerConfig, tools: list[MCPToolInfo]) -> None:
        names = []
        for info in tools:
            spec = _spec_for(config, info)
            if spec.name in registry:
                logger.warning("Skipping MCP tool %s: name already registered", spec.name)
                continue
            registry.register(MCPTool(spec=spec, manager=manager, server=name, remote_name=info.name))
            names.append(spec.name)
        owned[name] = names

    def _on_disconnect(name: str) -> None:
        for tool_name in owned.pop(name, []):
            registry.unregister(tool_name)

    manager.on_connect.append(_on_connect)
    manager.on_disconnect.append(_on_disconnect)
