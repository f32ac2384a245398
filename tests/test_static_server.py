from __future__ import annotations

import asyncio
import urllib.error
import urllib.request
from pathlib import Path

import pytest

from pycomrade.tools.static_server import StaticServerRegistry


def _get(url: str) -> tuple[int, str, str]:
    try:
        with urllib.request.urlopen(url, timeout=5) as resp:
            return resp.status, resp.headers.get("Content-Type", ""), resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        return e.code, "", ""


@pytest.mark.asyncio
async def test_serves_workspace_files_and_reuses_port(workspace: Path) -> None:
    (workspace / "index.html").write_text("<h1>hi</h1>", encoding="utf-8")
    servers = StaticServerRegistry()
    try:
        info = await servers.start(workspace, 0)
        assert info.port > 0
        assert info.url == f"http://localhost:{info.port}/"

        again = await servers.start(workspace, info.port)
        assert again == info
        assert servers.list() == [info]

        status, ctype, body = await asyncio.to_thread(_get, f"http://127.0.0.1:{info.port}/")
        assert status == 200
        assert ctype.startswith("text/html")
        assert body == "<h1>hi</h1>"
    finally:
        await servers.stop_all()


@pytest.mark.asyncio
async def test_traversal_outside_root_is_not_served(workspace: Path) -> None:
    (workspace.parent / "secret.txt").write_text("nope", encoding="utf-8")
    servers = StaticServerRegistry()
    try:
        info = await servers.start(workspace, 0)
        status, _, body = await asyncio.to_thread(_get, f"http://127.0.0.1:{info.port}/..%2Fsecret.txt")
        assert status == 404
        assert "nope" not in body
    finally:
        await servers.stop_all()


@pytest.mark.asyncio
async def test_stop_is_idempotent(workspace: Path) -> None:
    servers = StaticServerRegistry()
    info = await servers.start(workspace, 0)
    assert await servers.stop(info.port) is True
    assert await servers.stop(info.port) is False
    assert servers.get(info.port) is None


@pytest.mark.asyncio
async def test_cross_origin_requests_are_allowed(workspace: Path) -> None:
    (workspace / "data.json").write_text('{"ok": true}', encoding="utf-8")
    servers = StaticServerRegistry()
    try:
        info = await servers.start(workspace, 0)
        req = urllib.request.Request(f"http://127.0.0.1:{info.port}/data.json", headers={"Origin": "http://example.test"})

        def fetch() -> tuple[str, str]:
            with urllib.request.urlopen(req, timeout=5) as resp:
                return resp.headers.get("Access-Control-Allow-Origin", ""), resp.read().decode("utf-8")

        allow_origin, body = await asyncio.to_thread(fetch)
        assert allow_origin == "*"
        assert body == '{"ok": true}'
    finally:
        await servers.stop_all()


@pytest.mark.asyncio
async def test_port_in_use_raises(workspace: Path) -> None:
    servers = StaticServerRegistry()
    other = StaticServerRegistry()
    try:
        info = await servers.start(workspace, 0)
        with pytest.raises(OSError):
            await other.start(workspace, info.port)
        assert other.list() == []
    finally:
        await servers.stop_all()
