from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from pycomrade.agent.models import ChatChunk
from pycomrade.config.models import BehaviorConfig
from pycomrade.orchestrator import Orchestrator
from pycomrade.session.models import AssistantTurn, ToolCall
from pycomrade.tools.builtin import register_builtin_tools
from pycomrade.tools.registry import ToolRegistry
from pycomrade.workspace import StaticWorkspaceResolver
from tests.helpers import FakeProvider, call, user_contents

ASK = [{"role": "user", "content": "make the files"}]


def _orchestrator(provider: FakeProvider, workspace: Path, **config: Any) -> Orchestrator:
    registry = ToolRegistry()
    register_builtin_tools(registry, browser=False)
    workspaces = StaticWorkspaceResolver()
    workspaces.add("ws-1", workspace)
    cfg = BehaviorConfig(approval_timeout_s=5.0, max_nudges=0, **config)
    return Orchestrator(provider, workspaces, cfg, registry=registry)


async def _drive(orch: Orchestrator, decisions: list[dict[str, Any]], messages=ASK) -> list[ChatChunk]:
    """Consume one turn, answering approval requests from ``decisions`` in order."""
    chunks = []
    async for chunk in orch.chat("ws-1", messages):
        chunks.append(chunk)
        if chunk.approval is not None:
            assert orch.approval_status("ws-1")["pending"]["tool"] == chunk.approval.tool
            assert orch.resolve_approval("ws-1", decisions.pop(0)) is True
    return chunks


def _write(path: str, id: str = "call_1") -> ToolCall:
    return ToolCall(id=id, name="write_file", arguments={"path": path, "content": "x"})


@pytest.mark.asyncio
async def test_denied_write_leaves_workspace_untouched(workspace: Path) -> None:
    provider = FakeProvider(turns=[call("write_file", {"path": "a.txt", "content": "x"})])
    orch = _orchestrator(provider, workspace)
    try:
        chunks = await _drive(orch, [{"allowed": False}])
    finally:
        await orch.aclose()
    assert sum(1 for c in chunks if c.approval) == 1
    assert not (workspace / "a.txt").exists()
    observed = user_contents(provider.calls_in("execution")[1]["messages"])
    assert any(m.startswith("write_file result: REJECTED\nThe user denied this action") for m in observed)
    assert orch.approval_status("ws-1")["approved_tools"] == []


@pytest.mark.asyncio
async def test_allow_all_covers_rest_of_turn_and_next_turn(workspace: Path) -> None:
    provider = FakeProvider(turns=[
        AssistantTurn(tool_calls=[_write("a.txt", "c1"), ToolCall(id="c2", name="create_directory",
                                                                   arguments={"path": "build"})]),
        AssistantTurn(),
        call("execute_command", {"command": "echo hi"}),
    ])
    orch = _orchestrator(provider, workspace)
    try:
        first = await _drive(orch, [{"allowed": True, "allowAll": True}])
        assert sum(1 for c in first if c.approval) == 1
        assert (workspace / "a.txt").exists()
        assert (workspace / "build").is_dir()
        assert orch.approval_status("ws-1")["allow_all"] is True

        second = await _drive(orch, [])
        assert not any(c.approval for c in second)
    finally:
        await orch.aclose()


@pytest.mark.asyncio
async def test_allow_once_is_remembered_per_tool(workspace: Path) -> None:
    provider = FakeProvider(turns=[
        call("write_file", {"path": "a.txt", "content": "x"}),
        AssistantTurn(),
        call("write_file", {"path": "b.txt", "content": "y"}),
    ])
    orch = _orchestrator(provider, workspace)
    try:
        await _drive(orch, [{"allowed": True}])
        assert orch.approval_status("ws-1") == {"approved_tools": ["write_file"], "allow_all": False, "pending": None}
        second = await _drive(orch, [])
        assert not any(c.approval for c in second)
        assert (workspace / "b.txt").read_text(encoding="utf-8") == "y"

        orch.clear_approvals("ws-1")
        assert orch.approval_status("ws-1")["approved_tools"] == []
    finally:
        await orch.aclose()


@pytest.mark.asyncio
async def test_auto_mode_never_asks(workspace: Path) -> None:
    provider = FakeProvider(turns=[call("create_directory", {"path": "out"})])
    orch = _orchestrator(provider, workspace, approval_mode="auto")
    try:
        chunks = await _drive(orch, [])
    finally:
        await orch.aclose()
    assert not any(c.approval for c in chunks)
    assert (workspace / "out").is_dir()


@pytest.mark.asyncio
async def test_unknown_workspace_yields_error(workspace: Path) -> None:
    orch = _orchestrator(FakeProvider(), workspace)
    try:
        chunks = [c async for c in orch.chat("nope", ASK)]
    finally:
        await orch.aclose()
    assert chunks == [ChatChunk(content="", done=True, error="Unknown workspace: nope")]


@pytest.mark.asyncio
async def test_resolve_without_pending_request(workspace: Path) -> None:
    orch = _orchestrator(FakeProvider(), workspace)
    try:
        assert orch.resolve_approval("ws-1", {"allowed": True}) is False
    finally:
        await orch.aclose()


@pytest.mark.asyncio
async def test_connect_reports_failures_per_server(workspace: Path, example_server_config) -> None:
    from pycomrade.mcp.models import MCPServerConfig

    orch = _orchestrator(FakeProvider(), workspace)
    bad = MCPServerConfig(name="broken", command=["pycomrade-no-such-binary"])
    try:
        results = await orch.connect_mcp_servers([example_server_config, bad])
        assert results["demo"].status.value == "connected"
        assert isinstance(results["broken"], str)
        assert "mcp.demo.echo" in orch.registry
    finally:
        await orch.aclose()
    assert "mcp.demo.echo" not in orch.registry


@pytest.mark.asyncio
async def test_abandoned_turn_frees_the_approval_slot(workspace: Path) -> None:
    provider = FakeProvider(turns=[
        call("write_file", {"path": "a.txt", "content": "x"}),
        call("write_file", {"path": "b.txt", "content": "y"}),
    ])
    orch = _orchestrator(provider, workspace)
    try:
        turn = orch.chat("ws-1", ASK)
        async for chunk in turn:
            if chunk.approval is not None:
                break
        await turn.aclose()
        assert orch.approval_status("ws-1")["pending"] is None
        assert not (workspace / "a.txt").exists()

        second = await _drive(orch, [{"allowed": True}])
        assert second[-1].done is True
        assert second[-1].error is None
        assert (workspace / "b.txt").read_text(encoding="utf-8") == "y"
    finally:
        await orch.aclose()
