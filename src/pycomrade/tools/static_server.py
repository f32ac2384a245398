from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount
from starlette.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

# Open connections get this long to finish once a server is told to stop.
SHUTDOWN_GRACE_S = 5


def build_app(root: Path) -> Starlette:
    """Static files under ``root`` with ``index.html`` for directories; paths outside ``root`` are 404."""
    return Starlette(
        routes=[Mount("/", StaticFiles(directory=root, html=True), name="static")],
        middleware=[Middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])],
    )


class _Server(uvicorn.Server):
    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        # Process signals belong to the host application, not to each embedded server.
        yield


@dataclass
class AppServer:
    """One ASGI app served by uvicorn as a task on the running event loop."""

    port: int
    server: _Server
    task: asyncio.Task
    sock: socket.socket

    @classmethod
    async def start(cls, app: Any, host: str = "127.0.0.1", port: int = 0) -> "AppServer":
        """Bind ``host:port`` (0 picks a free port) and serve ``app`` until ``stop``.

        The socket is bound before the server task starts, so a taken port
        raises OSError here.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if os.name != "nt":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        actual = sock.getsockname()[1]
        config = uvicorn.Config(app, log_config=None, access_log=False, lifespan="off",
                                timeout_graceful_shutdown=SHUTDOWN_GRACE_S)
        server = _Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name=f"uvicorn-{actual}")
        while not server.started:
            if task.done():
                sock.close()
                task.result()
                raise OSError(f"Server on port {actual} exited during startup")
            await asyncio.sleep(0.01)
        return cls(port=actual, server=server, task=task, sock=sock)

    async def stop(self) -> None:
        self.server.should_exit = True
        try:
            await self.task
        finally:
            self.sock.close()


@dataclass(frozen=True)
class ServerInfo:
    port: int
    root: str
    url: str


@dataclass
class _Running:
    info: ServerInfo
    app_server: AppServer


@dataclass
class StaticServerRegistry:
    """Static file servers keyed by port, owned by one orchestrator."""

    host: str = "127.0.0.1"
    _servers: dict[int, _Running] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def get(self, port: int) -> ServerInfo | None:
        r = self._servers.get(port)
        return r.info if r else None

    def list(self) -> list[ServerInfo]:
        return [r.info for r in self._servers.values()]

    async def start(self, root: Path, port: int = 8080) -> ServerInfo:
        """Serve ``root`` on ``port``; a port already served returns the existing info.

        Port 0 picks a free port. Raises OSError if the port is taken by
        something else.
        """
        async with self._lock:
            existing = self._servers.get(port)
            if existing is not None:
                return existing.info
            root = Path(root).resolve()
            app_server = await AppServer.start(build_app(root), self.host, port)
            actual = app_server.port
            info = ServerInfo(port=actual, root=str(root), url=f"http://localhost:{actual}/")
            self._servers[actual] = _Running(info=info, app_server=app_server)
            logger.info("Static server started on port %s serving %s", actual, root)
            return info

    async def stop(self, port: int) -> bool:
        async with self._lock:
            r = self._servers.pop(port, None)
        if r is None:
            return False
        await r.app_server.stop()
        logger.info("Static server on port %s stopped", port)
        return True

    async def stop_all(self) -> None:
        for port in list(self._servers.keys()):
            await self.stop(port)
