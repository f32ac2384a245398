from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, resolve_in_workspace


@dataclass
class StartServerTool:
    spec: ToolSpec = ToolSpec(
        name="start_server",
        description=(
            "Start a local HTTP server for static files in the workspace. "
            "Starting it again on the same port returns the running server."
        ),
        permission_key="net",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory to serve (default '.')"},
                "port": {"type": "integer", "description": "Port number (default 8080)"},
            },
            "required": [],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.servers is None:
            return ToolResult.fail("Static servers are not available in this context")
        port = 8080 if args.get("port") is None else int(args["port"])
        try:
            root = resolve_in_workspace(ctx.root, args.get("path") or ".")
        except FsError as e:
            return ToolResult.fail(str(e))
        if not root.is_dir():
            return ToolResult.fail(f"Not a directory: {args.get('path')}")
        existing = ctx.servers.get(port)
        if existing is not None:
            return ToolResult.ok(f"Server already running at {existing.url} (serving {existing.root})")
        try:
            info = await ctx.servers.start(root, port)
        except OSError as e:
            return ToolResult.fail(f"Failed to start server on port {port}: {e}")
        return ToolResult.ok(f"Server started at {info.url}\nServing files from: {info.root}")


@dataclass
class StopServerTool:
    spec: ToolSpec = ToolSpec(
        name="stop_server",
        description="Stop a static server started with start_server.",
        permission_key="net",
        parameters={
            "type": "object",
            "properties": {"port": {"type": "integer", "description": "Port of the server to stop"}},
            "required": ["port"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if ctx.servers is None:
            return ToolResult.fail("Static servers are not available in this context")
        port = int(args["port"])
        if not await ctx.servers.stop(port):
            return ToolResult.fail(f"No server running on port {port}")
        return ToolResult.ok(f"Server on port {port} stopped")
