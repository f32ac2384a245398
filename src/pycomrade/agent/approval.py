from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from ..tools.permissions import Decision, PermissionConfig, risk_level
from .context import ExecutionContext
from .models import ApprovalDecision, ApprovalRequest

logger = logging.getLogger(__name__)

ApprovalMode = Literal["manual", "auto"]


@dataclass
class _Pending:
    request: ApprovalRequest
    future: asyncio.Future


@dataclass
class ApprovalGate:
    """Suspends a tool call until an out-of-band decision arrives.

    Pending requests live in a registry keyed by workspace id, one slot each.
    The loop calls ``open`` then ``wait``; any other task calls ``resolve``.
    In ``auto`` mode nothing ever blocks.
    """

    mode: ApprovalMode = "manual"
    timeout: float | None = None
    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    _pending: dict[str, _Pending] = field(default_factory=dict)

    def policy(self, ctx: ExecutionContext, tool_name: str, permission_key: str) -> Decision:
        decision = self.permissions.decide(permission_key, tool_name)
        if decision == "deny":
            return "deny"
        if self.mode == "auto" or decision == "allow" or ctx.skips_gate(tool_name):
            return "allow"
        return "ask"

    def pending(self, workspace_id: str) -> ApprovalRequest | None:
        p = self._pending.get(workspace_id)
        return p.request if p else None

    def open(self, ctx: ExecutionContext, tool_name: str, arguments: dict[str, Any],
             permission_key: str = "bash") -> ApprovalRequest:
        if ctx.workspace_id in self._pending:
            raise RuntimeError(f"Approval already pending for workspace {ctx.workspace_id}")
        req = ApprovalRequest(tool=tool_name, arguments=dict(arguments), risk=risk_level(permission_key))
        fut = asyncio.get_running_loop().create_future()
        self._pending[ctx.workspace_id] = _Pending(request=req, future=fut)
        logger.info("Approval requested for %s in workspace %s", tool_name, ctx.workspace_id)
        return req

    async def wait(self, ctx: ExecutionContext) -> ApprovalDecision:
        p = self._pending.get(ctx.workspace_id)
        if p is None:
            raise RuntimeError(f"No approval pending for workspace {ctx.workspace_id}")
        try:
            if self.timeout is not None:
                decision = await asyncio.wait_for(asyncio.shield(p.future), timeout=self.timeout)
            else:
                decision = await p.future
        except asyncio.TimeoutError:
            logger.warning("Approval for %s timed out after %ss", p.request.tool, self.timeout)
            decision = ApprovalDecision(allowed=False, timed_out=True)
        finally:
            if self._pending.get(ctx.workspace_id) is p:
                del self._pending[ctx.workspace_id]
            if not p.future.done():
                p.future.cancel()
        await self._apply(ctx, p.request.tool, decision)
        return decision

    async def request(self, ctx: ExecutionContext, tool_name: str, arguments: dict[str, Any],
                      permission_key: str = "bash") -> ApprovalDecision:
        """Policy check plus open/wait in one call, for callers that don't stream."""
        verdict = self.policy(ctx, tool_name, permission_key)
        if verdict == "allow":
            return ApprovalDecision(allowed=True)
        if verdict == "deny":
            return ApprovalDecision(allowed=False)
        self.open(ctx, tool_name, arguments, permission_key)
        return await self.wait(ctx)

    def resolve(self, workspace_id: str, decision: ApprovalDecision) -> bool:
        """Deliver a decision. Returns False (and does nothing) if none is pending."""
        p = self._pending.get(workspace_id)
        if p is None or p.future.done():
            logger.debug("Approval decision for %s ignored: nothing pending", workspace_id)
            return False
        p.future.set_result(decision)
        return True

    def cancel(self, workspace_id: str) -> bool:
        """Drop the pending slot, e.g. when the consumer stopped reading the turn."""
        p = self._pending.pop(workspace_id, None)
        if p is None:
            return False
        if not p.future.done():
            p.future.cancel()
        return True

    def cancel_all(self) -> None:
        for p in self._pending.values():
            if not p.future.done():
                p.future.cancel()
        self._pending.clear()

    async def _apply(self, ctx: ExecutionContext, tool_name: str, decision: ApprovalDecision) -> None:
        if not decision.allowed:
            return
        async with ctx.lock:
            if decision.allow_all:
                ctx.allow_all = True
            ctx.approved_tools.add(tool_name)
