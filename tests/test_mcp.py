from __future__ import annotations

import asyncio
import json

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from pycomrade.mcp.bridge import bridge_mcp_tools
from pycomrade.mcp.errors import MCPConnectionLost, MCPError, MCPTimeoutError
from pycomrade.mcp.manager import MCPManager
from pycomrade.mcp.models import ConnectionStatus, MCPServerConfig
from pycomrade.tools.base import ToolContext
from pycomrade.tools.registry import ToolRegistry
from pycomrade.tools.static_server import AppServer


@pytest.mark.asyncio
async def test_connect_lists_and_invokes_tools(example_server_config: MCPServerConfig) -> None:
    manager = MCPManager(request_timeout=10)
    try:
        conn = await manager.connect(example_server_config)
        assert conn.status is ConnectionStatus.CONNECTED
        assert {t.name for t in manager.list_tools("demo")} >= {"echo", "add", "sleep", "crash"}

        res = await manager.invoke("demo", "echo", {"text": "hello"})
        assert res.success and res.output == "hello"
        total = await manager.invoke("demo", "add", {"a": 2, "b": 3})
        assert total.output == "5.0"
        assert manager.list_connections()[0]["status"] == "connected"
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_unknown_remote_tool(example_server_config: MCPServerConfig) -> None:
    manager = MCPManager(request_timeout=10)
    try:
        await manager.connect(example_server_config)
        with pytest.raises(MCPError):
            await manager.invoke("demo", "nope", {})
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_bridge_follows_connection_lifecycle(example_server_config: MCPServerConfig, tool_ctx: ToolContext) -> None:
    manager = MCPManager(request_timeout=10)
    registry = ToolRegistry()
    bridge_mcp_tools(registry, manager)
    try:
        await manager.connect(example_server_config)
        assert "mcp.demo.echo" in registry
        tool = registry.get("mcp.demo.echo")
        assert tool.spec.permission_key == "mcp"
        res = await tool.execute(tool_ctx, {"text": "via bridge"})
        assert res.output == "via bridge"

        await manager.disconnect("demo")
        assert "mcp.demo.echo" not in registry
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_crash_fails_pending_request_and_removes_connection(example_server_config: MCPServerConfig) -> None:
    manager = MCPManager(request_timeout=10)
    registry = ToolRegistry()
    bridge_mcp_tools(registry, manager)
    try:
        await manager.connect(example_server_config)
        with pytest.raises(MCPConnectionLost):
            await manager.invoke("demo", "crash", {})
        await asyncio.sleep(0)
        assert "demo" not in manager
        assert not any(name.startswith("mcp.demo.") for name in registry.names())
        with pytest.raises(MCPError):
            await manager.invoke("demo", "echo", {"text": "x"})
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_slow_tool_times_out(example_server_config: MCPServerConfig) -> None:
    manager = MCPManager(request_timeout=0.2)
    try:
        # The handshake is quick even with a short timeout.
        await manager.connect(example_server_config)
        with pytest.raises(MCPTimeoutError):
            await manager.invoke("demo", "sleep", {"seconds": 2})
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_duplicate_connection_is_refused(example_server_config: MCPServerConfig) -> None:
    manager = MCPManager(request_timeout=10)
    try:
        await manager.connect(example_server_config)
        with pytest.raises(MCPError, match="already exists"):
            await manager.connect(example_server_config)
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_failed_handshake_is_not_registered() -> None:
    manager = MCPManager(request_timeout=2)
    bad = MCPServerConfig(name="ghost", command=["pycomrade-no-such-binary"])
    try:
        with pytest.raises(MCPError):
            await manager.connect(bad)
        assert "ghost" not in manager
        assert manager.get("ghost") is None
    finally:
        await manager.aclose()


def test_config_infers_transport() -> None:
    sse = MCPServerConfig.from_obj("remote", {"url": "http://localhost:9000/sse"})
    assert sse is not None and sse.transport == "sse"
    stdio = MCPServerConfig.from_obj("local", {"command": "node server.js", "prefix": "tools"})
    assert stdio.command == ["node", "server.js"]
    assert stdio.tool_prefix == "tools"
    assert MCPServerConfig.from_obj("broken", {"transport": "stdio"}) is None
    assert MCPServerConfig.from_obj("broken", {"transport": "carrier-pigeon", "command": ["x"]}) is None


class _SSEToolServer:
    """In-process tool server: responses go out on the event stream, or inline on the POST."""

    TOOLS = [
        {"name": "echo", "description": "Echo text", "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}}},
        {"name": "hang", "description": "Never answers", "inputSchema": {"type": "object"}},
    ]

    def __init__(self, *, inline: bool = False):
        self.inline = inline
        self.queue: asyncio.Queue = asyncio.Queue()
        self.held = asyncio.Event()
        self.methods: list[str] = []
        self.app = Starlette(routes=[
            Route("/sse", self.stream),
            Route("/messages", self.post, methods=["POST"]),
        ])

    async def stream(self, request: Request) -> StreamingResponse:
        async def events():
            yield "event: endpoint\ndata: /messages?session=1\n\n"
            while True:
                msg = await self.queue.get()
                if msg is None:
                    return
                yield f"event: message\ndata: {json.dumps(msg)}\n\n"

        return StreamingResponse(events(), media_type="text/event-stream")

    async def post(self, request: Request) -> Response:
        req = await request.json()
        self.methods.append(req["method"])
        reply = self._answer(req)
        if reply is None:
            self.held.set()
            return Response(status_code=202)
        if self.inline:
            return JSONResponse(reply)
        await self.queue.put(reply)
        return Response(status_code=202)

    def _answer(self, req: dict) -> dict | None:
        params = req.get("params") or {}
        if req["method"] == "tools/list":
            return {"jsonrpc": "2.0", "id": req["id"], "result": {"tools": self.TOOLS}}
        if req["method"] == "tools/call" and params.get("name") == "echo":
            text = params.get("arguments", {}).get("text", "")
            return {"jsonrpc": "2.0", "id": req["id"], "result": {"content": [{"type": "text", "text": text}]}}
        if req["method"] == "tools/call" and params.get("name") == "hang":
            return None
        return {"jsonrpc": "2.0", "id": req["id"], "error": {"code": -32601, "message": "unknown"}}


async def _serve_sse(tool_server: _SSEToolServer) -> tuple[AppServer, MCPServerConfig]:
    app_server = await AppServer.start(tool_server.app)
    cfg = MCPServerConfig(name="remote", transport="sse", url=f"http://127.0.0.1:{app_server.port}/sse")
    return app_server, cfg


@pytest.mark.asyncio
@pytest.mark.parametrize("inline", [False, True])
async def test_sse_connect_list_invoke_disconnect(inline: bool) -> None:
    tool_server = _SSEToolServer(inline=inline)
    app_server, cfg = await _serve_sse(tool_server)
    manager = MCPManager(request_timeout=5)
    try:
        conn = await manager.connect(cfg)
        assert conn.status is ConnectionStatus.CONNECTED
        assert [t.name for t in manager.list_tools("remote")] == ["echo", "hang"]

        res = await manager.invoke("remote", "echo", {"text": "over sse"})
        assert res.success and res.output == "over sse"

        await manager.disconnect("remote")
        assert "remote" not in manager
        assert tool_server.methods == ["tools/list", "tools/call"]
    finally:
        await manager.aclose()
        await tool_server.queue.put(None)
        await app_server.stop()


@pytest.mark.asyncio
async def test_sse_stream_end_fails_pending_request() -> None:
    tool_server = _SSEToolServer()
    app_server, cfg = await _serve_sse(tool_server)
    manager = MCPManager(request_timeout=10)
    try:
        await manager.connect(cfg)
        pending = asyncio.create_task(manager.invoke("remote", "hang", {}))
        await asyncio.wait_for(tool_server.held.wait(), timeout=5)
        await tool_server.queue.put(None)
        with pytest.raises(MCPConnectionLost):
            await asyncio.wait_for(pending, timeout=5)
        await asyncio.sleep(0)
        assert "remote" not in manager
    finally:
        await manager.aclose()
        await app_server.stop()
