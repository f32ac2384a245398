from __future__ import annotations

import sys
from pathlib import Path

import pytest

from pycomrade.agent.context import ExecutionContext
from pycomrade.mcp.models import MCPServerConfig
from pycomrade.tools.base import ToolContext

SRC = Path(__file__).resolve().parents[1] / "src"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture
def ctx(workspace: Path) -> ExecutionContext:
    return ExecutionContext.create("ws-1", workspace)


@pytest.fixture
def tool_ctx(workspace: Path) -> ToolContext:
    return ToolContext(cwd=str(workspace), session_id="ws-1")


@pytest.fixture
def example_server_config() -> MCPServerConfig:
    return MCPServerConfig(
        name="demo",
        transport="stdio",
        command=[sys.executable, "-m", "pycomrade.mcp.example_server"],
        env={"PYTHONPATH": str(SRC)},
    )
