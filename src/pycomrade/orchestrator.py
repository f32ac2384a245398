from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable

from .agent.approval import ApprovalGate
from .agent.context import ExecutionContext
from .agent.loop import AgentLoop
from .agent.models import ApprovalDecision, ChatChunk, ChatMessage
from .config.models import BehaviorConfig
from .events.store import EventStore
from .llm.base import ChatProvider
from .mcp.bridge import bridge_mcp_tools
from .mcp.errors import MCPError
from .mcp.manager import MCPManager
from .mcp.models import ExternalConnection, MCPServerConfig
from .session.store import TranscriptStore
from .tools.base import ToolContext
from .tools.browser import BrowserConfig, BrowserSession
from .tools.builtin import register_builtin_tools
from .tools.permissions import PermissionConfig
from .tools.registry import ToolRegistry
from .tools.static_server import StaticServerRegistry
from .workspace import WorkspaceResolver

logger = logging.getLogger(__name__)


@dataclass
class _Retained:
    approved_tools: set[str] = field(default_factory=set)
    allow_all: bool = False


class Orchestrator:
    """Long-lived owner of everything a chat turn needs.

    Holds the tool registry, the approval gate, external tool connections,
    static servers and the browser. Approvals granted in one turn are carried
    into the next turn of the same workspace until cleared.
    """

    def __init__(
        self,
        provider: ChatProvider,
        workspaces: WorkspaceResolver,
        config: BehaviorConfig | None = None,
        *,
        transcripts: TranscriptStore | None = None,
        events: EventStore | None = None,
        registry: ToolRegistry | None = None,
    ):
        self.provider = provider
        self.workspaces = workspaces
        self.config = config or BehaviorConfig()
        self.transcripts = transcripts
        self.events = events

        permissions = PermissionConfig()
        permissions.apply_behavior(self.config.permissions)
        self.gate = ApprovalGate(
            mode="auto" if self.config.approval_mode == "auto" else "manual",
            timeout=self.config.approval_timeout_s,
            permissions=permissions,
        )
        self.mcp = MCPManager(request_timeout=self.config.mcp_request_timeout_s)
        self.servers = StaticServerRegistry()
        self.browser = BrowserSession(BrowserConfig(headless=self.config.browser_headless))

        if registry is None:
            registry = ToolRegistry()
            register_builtin_tools(registry)
        self.registry = registry
        bridge_mcp_tools(self.registry, self.mcp)

        self._retained: dict[str, _Retained] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._active: dict[str, ExecutionContext] = {}

    def _tool_context(self, ctx: ExecutionContext) -> ToolContext:
        return ToolContext(
            cwd=str(ctx.root),
            session_id=ctx.workspace_id,
            shell_timeout_ms=self.config.shell_timeout_ms,
            servers=self.servers,
            mcp=self.mcp,
            browser=self.browser,
        )

    def _new_loop(self) -> AgentLoop:
        return AgentLoop(
            self.provider,
            self.registry,
            self.gate,
            config=self.config,
            events=self.events,
            transcripts=self.transcripts,
            tool_context=self._tool_context,
        )

    async def chat(self, workspace_id: str,
                   messages: Iterable[ChatMessage | dict[str, Any]]) -> AsyncIterator[ChatChunk]:
        """Run one chat turn; concurrent turns on one workspace run one after another."""
        try:
            root = self.workspaces.resolve(workspace_id)
        except KeyError as e:
            yield ChatChunk(content="", done=True, error=str(e.args[0]) if e.args else str(e))
            return

        lock = self._locks.setdefault(workspace_id, asyncio.Lock())
        async with lock:
            retained = self._retained.setdefault(workspace_id, _Retained())
            ctx = ExecutionContext.create(
                workspace_id, root,
                approved_tools=retained.approved_tools,
                allow_all=retained.allow_all,
            )
            self._active[workspace_id] = ctx
            try:
                async with aclosing(self._new_loop().run(messages, ctx)) as chunks:
                    async for chunk in chunks:
                        yield chunk
            finally:
                self.gate.cancel(workspace_id)
                retained.approved_tools = set(ctx.approved_tools)
                retained.allow_all = ctx.allow_all
                self._active.pop(workspace_id, None)

    def resolve_approval(self, workspace_id: str, decision: ApprovalDecision | dict[str, Any]) -> bool:
        """Deliver a decision for the workspace's pending request; False if none is pending."""
        return self.gate.resolve(workspace_id, ApprovalDecision.from_obj(decision))

    def clear_approvals(self, workspace_id: str | None = None) -> None:
        ids = [workspace_id] if workspace_id is not None else list(self._retained) + list(self._active)
        for ws in ids:
            self._retained.pop(ws, None)
            ctx = self._active.get(ws)
            if ctx is not None:
                ctx.approved_tools.clear()
                ctx.allow_all = False
        logger.info("Cleared approvals for %s", workspace_id or "all workspaces")

    def approval_status(self, workspace_id: str) -> dict[str, Any]:
        ctx = self._active.get(workspace_id)
        if ctx is not None:
            tools, allow_all = ctx.approved_tools, ctx.allow_all
        else:
            r = self._retained.get(workspace_id, _Retained())
            tools, allow_all = r.approved_tools, r.allow_all
        pending = self.gate.pending(workspace_id)
        return {
            "approved_tools": sorted(tools),
            "allow_all": allow_all,
            "pending": pending.to_dict() if pending else None,
        }

    async def connect_mcp_servers(
        self, configs: Iterable[MCPServerConfig] | None = None,
    ) -> dict[str, ExternalConnection | str]:
        """Connect configured servers; failures are reported per server, not raised."""
        results: dict[str, ExternalConnection | str] = {}
        for cfg in (configs if configs is not None else self.config.mcp_servers.values()):
            try:
                results[cfg.name] = await self.mcp.connect(cfg)
            except MCPError as e:
                logger.warning("MCP server %s failed to connect: %s", cfg.name, e)
                results[cfg.name] = str(e)
        return results

    async def aclose(self) -> None:
        self.gate.cancel_all()
        await self.mcp.aclose()
        await self.servers.stop_all()
        await self.browser.close()
