from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from ..tools.base import ToolResult
from .client import MCPClient
from .errors import MCPError
from .models import ConnectionStatus, ExternalConnection, MCPServerConfig, MCPToolInfo
from .transports import SSETransport, StdioTransport, Transport

logger = logging.getLogger(__name__)


def build_transport(config: MCPServerConfig) -> Transport:
    if config.transport == "sse":
        if not config.url:
            raise MCPError(f"MCP server {config.name}: sse transport needs a url")
        return SSETransport(config.url, headers=config.headers)
    return StdioTransport(config.command, cwd=config.cwd, env=config.env)


@dataclass
class _Entry:
    config: MCPServerConfig
    connection: ExternalConnection
    client: MCPClient


@dataclass
class MCPManager:
    """Named connections to external tool servers.

    A connection is registered only once its handshake succeeds. Losing the
    transport removes it (no reconnect) and fires ``on_disconnect``.
    """

    request_timeout: float = 30.0
    on_connect: list[Callable[[str, MCPServerConfig, list[MCPToolInfo]], None]] = field(default_factory=list)
    on_disconnect: list[Callable[[str], None]] = field(default_factory=list)
    transport_factory: Callable[[MCPServerConfig], Transport] = build_transport
    _entries: dict[str, _Entry] = field(default_factory=dict)
    _connecting: dict[str, ExternalConnection] = field(default_factory=dict)

    def get(self, name: str) -> ExternalConnection | None:
        e = self._entries.get(name)
        if e is not None:
            return e.connection
        return self._connecting.get(name)

    def config(self, name: str) -> MCPServerConfig | None:
        e = self._entries.get(name)
        return e.config if e else None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def list_connections(self) -> list[dict[str, Any]]:
        conns = [e.connection for e in self._entries.values()] + list(self._connecting.values())
        return [c.summary() for c in conns]

    async def connect(self, config: MCPServerConfig) -> ExternalConnection:
        name = config.name
        if name in self._entries or name in self._connecting:
            raise MCPError(f'Connection "{name}" already exists. Disconnect first.')
        conn = ExternalConnection(name=name, transport=config.transport, status=ConnectionStatus.CONNECTING)
        self._connecting[name] = conn
        client: MCPClient | None = None
        try:
            client = MCPClient(self.transport_factory(config), request_timeout=self.request_timeout)
            await client.start()
            conn.tools = await client.list_tools()
        except Exception as e:
            conn.status = ConnectionStatus.ERROR
            conn.error = str(e)
            logger.error("MCP connect %s failed: %s", name, e)
            if client is not None:
                await client.close()
            raise MCPError(f"Failed to connect to {name}: {e}") from e
        finally:
            self._connecting.pop(name, None)

        conn.status = ConnectionStatus.CONNECTED
        entry = _Entry(config=config, connection=conn, client=client)
        self._entries[name] = entry
        client.on_connection_lost(lambda reason, _e=entry: self._lost(_e, reason))
        logger.info("MCP connected: %s (%d tools)", name, len(conn.tools))
        for cb in list(self.on_connect):
            cb(name, config, conn.tools)
        return conn

    def _lost(self, entry: _Entry, reason: str | None) -> None:
        if self._entries.get(entry.config.name) is not entry:
            return
        entry.connection.status = ConnectionStatus.ERROR
        entry.connection.error = reason
        del self._entries[entry.config.name]
        logger.warning("MCP connection %s lost: %s", entry.config.name, reason)
        for cb in list(self.on_disconnect):
            cb(entry.config.name)
        # Reap the dead transport in the background.
        asyncio.get_running_loop().create_task(entry.client.close())

    def _require(self, name: str) -> _Entry:
        e = self._entries.get(name)
        if e is None:
            raise MCPError(f"Not connected to {name}")
        return e

    def list_tools(self, name: str) -> list[MCPToolInfo]:
        return list(self._require(name).connection.tools)

    async def invoke(self, name: str, tool: str, arguments: dict[str, Any] | None) -> ToolResult:
        e = self._require(name)
        if not any(t.name == tool for t in e.connection.tools):
            raise MCPError(f"Tool {tool} not found on {name}")
        return await e.client.call_tool(tool, arguments or {})

    async def disconnect(self, name: str) -> None:
        e = self._entries.pop(name, None)
        if e is None:
            raise MCPError(f"Not connected to {name}")
        e.connection.status = ConnectionStatus.DISCONNECTED
        await e.client.close()
        logger.info("MCP disconnected: %s", name)
        for cb in list(self.on_disconnect):
            cb(name)

    async def aclose(self) -> None:
        for name in list(self._entries.keys()):
            try:
                await self.disconnect(name)
            except MCPError as exc:
                logger.debug("MCP %s already gone: %s", name, exc)
