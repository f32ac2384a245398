from __future__ import annotations

import asyncio

import pytest

from pycomrade.agent.approval import ApprovalGate
from pycomrade.agent.context import ExecutionContext
from pycomrade.agent.models import ApprovalDecision
from pycomrade.tools.permissions import PermissionConfig, PermissionRule


async def _resolve_when_pending(gate: ApprovalGate, ws: str, decision: ApprovalDecision) -> None:
    while gate.pending(ws) is None:
        await asyncio.sleep(0.01)
    assert gate.resolve(ws, decision) is True


@pytest.mark.asyncio
async def test_request_blocks_until_resolved(ctx: ExecutionContext) -> None:
    gate = ApprovalGate()
    resolver = asyncio.create_task(_resolve_when_pending(gate, ctx.workspace_id, ApprovalDecision(allowed=True)))
    decision = await gate.request(ctx, "write_file", {"path": "a.txt"}, "edit")
    await resolver
    assert decision.allowed
    assert "write_file" in ctx.approved_tools
    assert not ctx.allow_all
    assert gate.pending(ctx.workspace_id) is None
    # Already approved for this context: no second prompt.
    assert gate.policy(ctx, "write_file", "edit") == "allow"


@pytest.mark.asyncio
async def test_denied_request_records_nothing(ctx: ExecutionContext) -> None:
    gate = ApprovalGate()
    resolver = asyncio.create_task(_resolve_when_pending(gate, ctx.workspace_id, ApprovalDecision(allowed=False)))
    decision = await gate.request(ctx, "execute_command", {"command": "ls"}, "bash")
    await resolver
    assert not decision.allowed
    assert ctx.approved_tools == set()


@pytest.mark.asyncio
async def test_allow_all_skips_every_later_gate(ctx: ExecutionContext) -> None:
    gate = ApprovalGate()
    resolver = asyncio.create_task(
        _resolve_when_pending(gate, ctx.workspace_id, ApprovalDecision(allowed=True, allow_all=True))
    )
    await gate.request(ctx, "write_file", {}, "edit")
    await resolver
    assert ctx.allow_all
    assert gate.policy(ctx, "execute_command", "bash") == "allow"


@pytest.mark.asyncio
async def test_timeout_counts_as_denial_and_clears_slot(ctx: ExecutionContext) -> None:
    gate = ApprovalGate(timeout=0.05)
    decision = await gate.request(ctx, "write_file", {}, "edit")
    assert not decision.allowed
    assert decision.timed_out
    assert gate.pending(ctx.workspace_id) is None
    assert gate.resolve(ctx.workspace_id, ApprovalDecision(allowed=True)) is False


def test_resolve_without_pending_request_is_ignored() -> None:
    assert ApprovalGate().resolve("nobody", ApprovalDecision(allowed=True)) is False


@pytest.mark.asyncio
async def test_one_pending_slot_per_workspace(ctx: ExecutionContext) -> None:
    gate = ApprovalGate()
    gate.open(ctx, "write_file", {})
    with pytest.raises(RuntimeError):
        gate.open(ctx, "write_file", {})
    assert gate.cancel(ctx.workspace_id) is True
    assert gate.cancel(ctx.workspace_id) is False


@pytest.mark.asyncio
async def test_auto_mode_never_blocks(ctx: ExecutionContext) -> None:
    gate = ApprovalGate(mode="auto")
    decision = await gate.request(ctx, "execute_command", {"command": "ls"}, "bash")
    assert decision.allowed
    assert gate.pending(ctx.workspace_id) is None


def test_read_tools_are_allowed_by_default(ctx: ExecutionContext) -> None:
    assert ApprovalGate().policy(ctx, "read_file", "read") == "allow"
    assert ApprovalGate().policy(ctx, "write_file", "edit") == "ask"


def test_deny_rule_wins_even_in_auto_mode(ctx: ExecutionContext) -> None:
    perms = PermissionConfig(rules=[PermissionRule(match="tool:git_*", decision="deny")])
    gate = ApprovalGate(mode="auto", permissions=perms)
    assert gate.policy(ctx, "git_commit", "bash") == "deny"
    assert gate.policy(ctx, "execute_command", "bash") == "allow"
