from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Callable, Protocol
from urllib.parse import urljoin

import httpx

from .errors import MCPConnectionLost, MCPError

logger = logging.getLogger(__name__)

OnMessage = Callable[[dict[str, Any]], None]
OnClose = Callable[[str | None], None]


class Transport(Protocol):
    kind: str

    async def start(self, on_message: OnMessage, on_close: OnClose) -> None: ...
    async def send(self, message: dict[str, Any]) -> None: ...
    async def close(self) -> None: ...


class StdioTransport:
    """Newline-delimited JSON-RPC over a child process's stdin/stdout."""

    kind = "stdio"

    def __init__(self, command: list[str], *, cwd: str | None = None, env: dict[str, str] | None = None):
        if not command:
            raise MCPError("stdio transport needs a command")
        self.command = list(command)
        self.cwd = cwd
        self.env = {**os.environ, **(env or {})}
        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._closing = False
        self._write_lock = asyncio.Lock()

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def start(self, on_message: OnMessage, on_close: OnClose) -> None:
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
                limit=16 * 1024 * 1024,
            )
        except OSError as e:
            raise MCPError(f"Failed to start MCP server {self.command[0]}: {e}") from e
        self._tasks.append(asyncio.create_task(self._read_loop(on_message, on_close)))
        self._tasks.append(asyncio.create_task(self._drain_stderr()))

    async def _read_loop(self, on_message: OnMessage, on_close: OnClose) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        reason: str | None = None
        try:
            while True:
                line = await self._proc.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    msg = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("mcp stdio: ignoring non-JSON line: %s", text[:200])
                    continue
                if isinstance(msg, dict):
                    on_message(msg)
            code = await self._proc.wait()
            reason = f"process exited with code {code}"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"read error: {e}"
        if not self._closing:
            on_close(reason)

    async def _drain_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while True:
            line = await self._proc.stderr.readline()
            if not line:
                return
            logger.debug("mcp stderr [%s]: %s", self.command[0], line.decode("utf-8", errors="replace").rstrip())

    async def send(self, message: dict[str, Any]) -> None:
        if self._proc is None or self._proc.stdin is None or self._proc.returncode is not None:
            raise MCPConnectionLost("MCP server process is not running")
        data = (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")
        async with self._write_lock:
            try:
                self._proc.stdin.write(data)
                await self._proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise MCPConnectionLost(f"MCP server pipe closed: {e}") from e

    async def close(self) -> None:
        self._closing = True
        proc = self._proc
        if proc is not None and proc.returncode is None:
            if proc.stdin is not None:
                proc.stdin.close()
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=5)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()


class SSETransport:
    """Server-sent event stream for responses, HTTP POST for requests.

    The server announces where to POST with an ``endpoint`` event; servers
    that never do are posted to at the stream URL.
    """

    kind = "sse"

    def __init__(self, url: str, *, headers: dict[str, str] | None = None,
                 endpoint_wait: float = 5.0, timeout: float = 30.0):
        self.url = url
        self.headers = dict(headers or {})
        self.endpoint_wait = endpoint_wait
        self._client = httpx.AsyncClient(headers=self.headers, timeout=httpx.Timeout(timeout, read=None))
        self._response: httpx.Response | None = None
        self._endpoint: str | None = None
        self._endpoint_ready = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._closing = False
        self._on_message: OnMessage | None = None

    async def start(self, on_message: OnMessage, on_close: OnClose) -> None:
        self._on_message = on_message
        request = self._client.build_request("GET", self.url, headers={"Accept": "text/event-stream"})
        try:
            self._response = await self._client.send(request, stream=True)
            self._response.raise_for_status()
        except httpx.HTTPError as e:
            await self._client.aclose()
            raise MCPError(f"SSE connection to {self.url} failed: {e}") from e
        logger.info("SSE stream opened: %s", self.url)
        self._task = asyncio.create_task(self._read_loop(on_message, on_close))
        try:
            await asyncio.wait_for(self._endpoint_ready.wait(), timeout=self.endpoint_wait)
        except asyncio.TimeoutError:
            logger.debug("No endpoint event from %s; posting to the stream URL", self.url)
            self._endpoint = self.url

    def _dispatch(self, event: str, data: str, on_message: OnMessage) -> None:
        if event == "endpoint":
            self._endpoint = urljoin(self.url, data.strip())
            self._endpoint_ready.set()
            return
        if not data:
            return
        try:
            msg = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("mcp sse: ignoring non-JSON data: %s", data[:200])
            return
        if isinstance(msg, dict):
            on_message(msg)

    async def _read_loop(self, on_message: OnMessage, on_close: OnClose) -> None:
        assert self._response is not None
        reason: str | None = "event stream ended"
        event = "message"
        data_lines: list[str] = []
        try:
            async for line in self._response.aiter_lines():
                if line == "":
                    if data_lines:
                        self._dispatch(event, "\n".join(data_lines), on_message)
                    event, data_lines = "message", []
                    continue
                if line.startswith(":"):
                    continue
                field_name, _, value = line.partition(":")
                value = value[1:] if value.startswith(" ") else value
                if field_name == "event":
                    event = value
                elif field_name == "data":
                    data_lines.append(value)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            reason = f"event stream error: {e}"
        if not self._closing:
            on_close(reason)

    async def send(self, message: dict[str, Any]) -> None:
        if self._closing or self._response is None:
            raise MCPConnectionLost("SSE transport is closed")
        endpoint = self._endpoint or self.url
        try:
            resp = await self._client.post(endpoint, json=message)
            resp.raise_for_status()
        except httpx.RequestError as e:
            raise MCPConnectionLost(f"POST to {endpoint} failed: {e}") from e
        except httpx.HTTPStatusError as e:
            raise MCPError(f"POST to {endpoint} returned {e.response.status_code}") from e
        # Some servers answer inline instead of over the stream.
        if "application/json" in resp.headers.get("content-type", "") and resp.content:
            try:
                body = resp.json()
            except ValueError:
                return
            if isinstance(body, dict) and "id" in body and self._on_message is not None:
                self._on_message(body)

    async def close(self) -> None:
        self._closing = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        if self._response is not None:
            await self._response.aclose()
        await self._client.aclose()
