from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any

from ..tools.base import ToolResult
from .errors import MCPConnectionLost, MCPError, MCPTimeoutError
from .models import MCPToolInfo
from .transports import Transport

logger = logging.getLogger(__name__)


class MCPClient:
    """JSON-RPC client for MCP-style tool servers, over any Transport.

    Expected methods:
      - tools/list -> { tools: [{name, description, inputSchema}] }
      - tools/call -> tool invocation; returns a "content" field or arbitrary json
    """

    def __init__(self, transport: Transport, *, request_timeout: float = 30.0):
        self.transport = transport
        self.request_timeout = request_timeout
        self._id_iter = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._closed_reason: str | None = None
        self._on_lost: list = []

    def on_connection_lost(self, callback) -> None:
        self._on_lost.append(callback)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        await self.transport.start(self._handle_message, self._handle_close)

    async def close(self) -> None:
        self._fail_pending(MCPConnectionLost("Connection closed"))
        await self.transport.close()

    def _handle_message(self, msg: dict[str, Any]) -> None:
        if "id" not in msg or ("result" not in msg and "error" not in msg):
            # Notifications and server-initiated requests are not used here.
            logger.debug("mcp: ignoring message without response id: %s", str(msg)[:200])
            return
        try:
            mid = int(msg["id"])
        except (TypeError, ValueError):
            return
        fut = self._pending.pop(mid, None)
        if fut is None or fut.done():
            logger.debug("mcp: response for unknown request id %s", mid)
            return
        fut.set_result(msg)

    def _handle_close(self, reason: str | None) -> None:
        self._closed_reason = reason or "connection closed"
        logger.warning("MCP transport closed: %s", self._closed_reason)
        self._fail_pending(MCPConnectionLost(f"Connection lost: {self._closed_reason}"))
        for cb in list(self._on_lost):
            cb(self._closed_reason)

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(exc)

    async def request(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        if self._closed_reason is not None:
            raise MCPConnectionLost(f"Connection lost: {self._closed_reason}")
        rid = next(self._id_iter)
        req = {"jsonrpc": "2.0", "id": rid, "method": method, "params": params or {}}
        fut = asyncio.get_running_loop().create_future()
        self._pending[rid] = fut
        try:
            await self.transport.send(req)
            msg = await asyncio.wait_for(fut, timeout=timeout or self.request_timeout)
        except asyncio.TimeoutError:
            raise MCPTimeoutError(f"MCP request timeout: {method}") from None
        finally:
            self._pending.pop(rid, None)
        if "error" in msg and msg["error"] is not None:
            err = msg["error"]
            text = err.get("message") if isinstance(err, dict) else str(err)
            raise MCPError(f"{method} failed: {text}")
        return msg.get("result")

    async def list_tools(self) -> list[MCPToolInfo]:
        res = await self.request("tools/list", {})
        tools = []
        if isinstance(res, dict):
            arr = res.get("tools", [])
        else:
            arr = res
        if isinstance(arr, list):
            for t in arr:
                if not isinstance(t, dict):
                    continue
                name = t.get("name")
                desc = t.get("description", "")
                schema = t.get("inputSchema") or t.get("input_schema") or t.get("parameters") or {}
                if isinstance(name, str):
                    tools.append(MCPToolInfo(name=name, description=str(desc), input_schema=schema if isinstance(schema, dict) else {}))
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None, timeout: float | None = None) -> ToolResult:
        res = await self.request("tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout)
        return normalize_call_result(res)


def normalize_call_result(res: Any) -> ToolResult:
    if isinstance(res, str):
        return ToolResult.ok(res)
    if not isinstance(res, dict):
        return ToolResult.ok(json.dumps(res, ensure_ascii=False, indent=2))
    is_error = bool(res.get("isError"))
    if "content" not in res:
        return ToolResult.ok(json.dumps(res, ensure_ascii=False, indent=2))
    c = res["content"]
    if isinstance(c, list):
        texts = []
        for part in c:
            if isinstance(part, dict):
                if part.get("type") == "text":
                    texts.append(str(part.get("text", "")))
                else:
                    texts.append(json.dumps(part, ensure_ascii=False))
            else:
                texts.append(str(part))
        text = "\n".join(texts)
    else:
        text = c if isinstance(c, str) else json.dumps(c, ensure_ascii=False)
    return ToolResult.fail(text) if is_error else ToolResult.ok(text)
