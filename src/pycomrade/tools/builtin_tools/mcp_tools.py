from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...mcp.errors import MCPConnectionLost, MCPError
from ...mcp.models import MCPServerConfig


def _no_manager() -> ToolResult:
    return ToolResult.fail("External tool servers are not available in this context")


@dataclass
class MCPConnectTool:
    spec: ToolSpec = ToolSpec(
        name="mcp_connect",
        description="Connect to an external MCP tool server over stdio (command) or SSE (url).",
        permission_key="mcp",
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Connection name."},
                "url": {"type": "string", "description": "SSE endpoint URL."},
                "command": {"type": "string", "description": "Command line for a stdio server."},
                "transport": {"type": "string", "description": "sse | stdio (inferred when omitted)."},
            },
            "required": ["name"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.mcp is None:
            return _no_manager()
        cfg = MCPServerConfig.from_obj(args["name"], {k: v for k, v in args.items() if k != "name"})
        if cfg is None:
            return ToolResult.fail("mcp_connect needs a url (sse) or a command (stdio)")
        try:
            conn = await ctx.mcp.connect(cfg)
        except MCPError as e:
            return ToolResult.fail(str(e))
        names = ", ".join(t.name for t in conn.tools) or "(none)"
        return ToolResult.ok(f"Connected to {conn.name} ({len(conn.tools)} tools): {names}")


@dataclass
class MCPListToolsTool:
    spec: ToolSpec = ToolSpec(
        name="mcp_list_tools",
        description="List the tools advertised by a connected MCP server.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {"name": {"type": "string", "description": "Connection name."}},
            "required": ["name"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.mcp is None:
            return _no_manager()
        try:
            tools = ctx.mcp.list_tools(args["name"])
        except MCPError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(json.dumps([t.to_dict() for t in tools], ensure_ascii=False, indent=2))


@dataclass
class MCPInvokeTool:
    spec: ToolSpec = ToolSpec(
        name="mcp_invoke_tool",
        description="Invoke a tool on a connected MCP server.",
        permission_key="mcp",
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Connection name."},
                "tool": {"type": "string", "description": "Remote tool name."},
                "arguments": {"type": "object", "description": "Arguments for the remote tool."},
            },
            "required": ["name", "tool"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.mcp is None:
            return _no_manager()
        try:
            return await ctx.mcp.invoke(args["name"], args["tool"], args.get("arguments") or {})
        except MCPConnectionLost:
            raise
        except MCPError as e:
            return ToolResult.fail(str(e))


@dataclass
class MCPDisconnectTool:
    spec: ToolSpec = ToolSpec(
        name="mcp_disconnect",
        description="Disconnect from an MCP server.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {"name": {"type": "string", "description": "Connection name."}},
            "required": ["name"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.mcp is None:
            return _no_manager()
        try:
            await ctx.mcp.disconnect(args["name"])
        except MCPError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(f"Disconnected from {args['name']}")


@dataclass
class MCPListConnectionsTool:
    spec: ToolSpec = ToolSpec(
        name="mcp_list_connections",
        description="List MCP server connections and their status.",
        permission_key="read",
        parameters={"type": "object", "properties": {}, "required": []},
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.mcp is None:
            return _no_manager()
        conns = ctx.mcp.list_connections()
        if not conns:
            return ToolResult.ok("No MCP connections")
        return ToolResult.ok(json.dumps(conns, ensure_ascii=False, indent=2))
