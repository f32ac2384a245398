"""The plan/act/observe loop.

One chat turn is one async generator of ``ChatChunk``. The loop asks for a
plan, then repeatedly asks the model to act, dispatching every tool call it
gets through validation, the approval gate and the handler, and feeding each
result back as an observation. It stops when the model answers without tool
calls, when the tool-call ceiling is reached, or on a context-fatal error.
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable

from ..config.models import BehaviorConfig
from ..events.store import EventStore
from ..llm.base import ChatProvider, ProviderError
from ..mcp.errors import MCPConnectionLost
from ..session.models import AssistantTurn, Message, ToolCall
from ..session.store import TranscriptStore
from ..tools.base import ToolContext, ToolResult
from ..tools.registry import ToolRegistry
from ..tools.validation import ArgumentRepairer, validate_arguments
from .approval import ApprovalGate
from .context import ExecutionContext
from .extraction import extract_from_text
from .models import ChatChunk, ChatMessage, LoopState
from .prompts import (
    CONTINUE_MESSAGE,
    INVALID_ARGS_HINT,
    NUDGE_MESSAGE,
    RETRY_MESSAGE,
    execution_prompt,
    planning_prompt,
)

logger = logging.getLogger(__name__)

# Errors the model can't act on; they end the turn.
CONTEXT_FATAL = (ProviderError, MCPConnectionLost)

PREVIEW_CHARS = 200


def truncate_middle(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + "\n\n... (truncated) ...\n\n" + text[-half:]


def _preview(text: str) -> str:
    return text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."


def _args_preview(args: dict[str, Any] | None) -> str:
    try:
        s = json.dumps(args, ensure_ascii=False)
    except (TypeError, ValueError):
        s = str(args)
    return _preview(s)


@dataclass
class _Batch:
    failed: bool = False


class AgentLoop:
    def __init__(
        self,
        provider: ChatProvider,
        registry: ToolRegistry,
        gate: ApprovalGate,
        *,
        config: BehaviorConfig | None = None,
        repairer: ArgumentRepairer | None = None,
        events: EventStore | None = None,
        transcripts: TranscriptStore | None = None,
        tool_context: Callable[[ExecutionContext], ToolContext] | None = None,
    ):
        self.provider = provider
        self.registry = registry
        self.gate = gate
        self.config = config or BehaviorConfig()
        self.repairer = repairer if repairer is not None else ArgumentRepairer(provider)
        self.events = events
        self.transcripts = transcripts
        self._tool_context = tool_context or self._default_tool_context
        self.state = LoopState.PLANNING

    def _default_tool_context(self, ctx: ExecutionContext) -> ToolContext:
        return ToolContext(
            cwd=str(ctx.root),
            session_id=ctx.workspace_id,
            shell_timeout_ms=self.config.shell_timeout_ms,
        )

    # --- bookkeeping -------------------------------------------------------

    def _emit(self, ctx: ExecutionContext, event_type: str, data: dict[str, Any]) -> None:
        if self.events is not None:
            self.events.append(ctx.workspace_id, event_type, data)

    def _set_state(self, ctx: ExecutionContext, state: LoopState) -> None:
        self.state = state
        logger.debug("[%s] state -> %s", ctx.workspace_id, state.value)
        self._emit(ctx, "loop.state", {"state": state.value, "tool_calls": ctx.tool_calls})

    def _append(self, ctx: ExecutionContext, convo: list[dict[str, Any]], role: str, content: str) -> None:
        msg = Message(role=role, content=content)  # type: ignore[arg-type]
        convo.append(msg.to_openai())
        if self.transcripts is not None:
            self.transcripts.append(ctx.workspace_id, msg)

    async def _chat(self, ctx: ExecutionContext, phase: str, messages: list[dict[str, Any]],
                    tools: list[dict[str, Any]] | None, force_tools: bool = False) -> AssistantTurn:
        self._emit(ctx, "llm.request", {
            "phase": phase,
            "messages_count": len(messages),
            "tools_count": len(tools or []),
            "force_tools": force_tools,
        })
        t0 = time.perf_counter()
        try:
            turn = await self.provider.chat(messages, tools=tools, force_tools=force_tools)
        except ProviderError as e:
            self._emit(ctx, "llm.error", {"phase": phase, "error": str(e)[:2000]})
            raise
        self._emit(ctx, "llm.response", {
            "phase": phase,
            "elapsed_ms": int((time.perf_counter() - t0) * 1000),
            "text": (turn.text or "")[:4000],
            "tool_calls": [{"id": c.id, "name": c.name, "arguments": c.arguments} for c in turn.tool_calls],
        })
        return turn

    # --- the turn ----------------------------------------------------------

    async def run(self, messages: Iterable[ChatMessage | dict[str, Any]],
                  ctx: ExecutionContext) -> AsyncIterator[ChatChunk]:
        problem = self.provider.validate()
        if problem:
            self._set_state(ctx, LoopState.ERROR)
            yield ChatChunk(content="", done=True, error=problem)
            return

        try:
            history = [ChatMessage.from_obj(m).to_openai() for m in messages]
        except ValueError as e:
            self._set_state(ctx, LoopState.ERROR)
            yield ChatChunk(content="", done=True, error=str(e))
            return

        try:
            async with aclosing(self._run(history, ctx)) as chunks:
                async for chunk in chunks:
                    yield chunk
        except CONTEXT_FATAL as e:
            logger.error("[%s] turn failed: %s", ctx.workspace_id, e)
            self._set_state(ctx, LoopState.ERROR)
            yield ChatChunk(content="", done=True, error=str(e))

    async def _run(self, history: list[dict[str, Any]], ctx: ExecutionContext) -> AsyncIterator[ChatChunk]:
        self._set_state(ctx, LoopState.PLANNING)
        yield ChatChunk(content="**Planning task...**\n\n")
        plan_messages = [{"role": "system", "content": planning_prompt(self.registry.names())}, *history]
        plan = await self._chat(ctx, "planning", plan_messages, tools=None)
        yield ChatChunk(content=f"**Plan:**\n{plan.text.strip()}\n\n")

        self._set_state(ctx, LoopState.EXECUTING)
        yield ChatChunk(content="**Starting execution...**\n")
        native = self.provider.supports_native_tools
        system = execution_prompt(None if native else self.registry.describe_for_prompt())
        convo: list[dict[str, Any]] = [{"role": "system", "content": system}, *history]
        nudges = 0
        force = False

        while True:
            tools = self.registry.to_openai() if native else None
            turn = await self._chat(ctx, "execution", convo, tools=tools, force_tools=force)
            force = False
            self._append(ctx, convo, "assistant", turn.text or "")

            calls: list[ToolCall] = list(turn.tool_calls) if native else []
            if not calls:
                calls = extract_from_text(turn.text)
                if calls:
                    yield ChatChunk(content=f"Converted {len(calls)} described action(s) to tool calls\n")

            if not calls:
                if native and nudges < self.config.max_nudges:
                    nudges += 1
                    force = True
                    yield ChatChunk(content="\n**Model answered without tools, asking it to act...**\n")
                    self._append(ctx, convo, "user", NUDGE_MESSAGE)
                    continue
                self._set_state(ctx, LoopState.DONE)
                yield ChatChunk(content="\n**Task completed!**\n\n")
                yield ChatChunk(content=turn.text or "", done=True)
                return

            yield ChatChunk(content=f"\n**Executing {len(calls)} tool(s):**\n\n")
            batch = _Batch()
            for call in calls:
                ctx.bump()
                async with aclosing(self._dispatch(call, ctx, convo, turn.text, batch)) as chunks:
                    async for chunk in chunks:
                        yield chunk
                if ctx.tool_calls >= self.config.max_tool_calls:
                    break

            if ctx.tool_calls >= self.config.max_tool_calls:
                logger.warning("[%s] tool-call ceiling reached (%d)", ctx.workspace_id, ctx.tool_calls)
                self._emit(ctx, "loop.ceiling", {"tool_calls": ctx.tool_calls})
                self._set_state(ctx, LoopState.DONE)
                yield ChatChunk(
                    content=f"\n**Task stopped after {ctx.tool_calls} tool operations.** "
                            "The tool-call limit for one turn was reached.",
                    done=True,
                )
                return

            if batch.failed:
                self._append(ctx, convo, "user", RETRY_MESSAGE)
            self._append(ctx, convo, "user", CONTINUE_MESSAGE)
            self._set_state(ctx, LoopState.EXECUTING)

    # --- one call ----------------------------------------------------------

    def _observe(self, ctx: ExecutionContext, convo: list[dict[str, Any]], text: str) -> None:
        self._append(ctx, convo, "user", truncate_middle(text, self.config.max_tool_result_chars))

    async def _dispatch(self, call: ToolCall, ctx: ExecutionContext, convo: list[dict[str, Any]],
                        assistant_text: str | None, batch: _Batch) -> AsyncIterator[ChatChunk]:
        self._set_state(ctx, LoopState.DISPATCH)
        name = call.name or "unknown"

        if call.arguments is None:
            err = "Invalid JSON in tool arguments"
            if call.raw_arguments:
                err += f": {_preview(call.raw_arguments)}"
            self._emit(ctx, "tool.invalid", {"tool": name, "error": err})
            batch.failed = True
            yield ChatChunk(content=f"**{name}** failed: {err}\n\n")
            self._observe(ctx, convo, ToolResult.fail(err).observation(name))
            return

        tool = self.registry.get_optional(call.name)
        if tool is None:
            err = f"Unknown tool: {name}. Available tools: {', '.join(self.registry.names())}"
            self._emit(ctx, "tool.invalid", {"tool": name, "error": "unknown tool"})
            batch.failed = True
            yield ChatChunk(content=f"**{name}** failed: unknown tool\n\n")
            self._observe(ctx, convo, ToolResult.fail(err).observation(name))
            return

        spec = tool.spec
        result = validate_arguments(spec, call.arguments)
        if not result.valid and result.missing_field:
            yield ChatChunk(content=f"**{name}** fetching missing {result.missing_field}...\n")
            result = await self.repairer.repair(spec, result, convo, assistant_text)
        if not result.valid:
            logger.warning("[%s] invalid arguments for %s: %s", ctx.workspace_id, name, result.error)
            self._emit(ctx, "tool.invalid", {"tool": name, "error": result.error, "args": call.arguments})
            batch.failed = True
            yield ChatChunk(content=f"**{name}** failed: {result.error}\n\n")
            self._observe(ctx, convo, f"{name} result: FAILED\n{result.error}\n\n{INVALID_ARGS_HINT}")
            return
        args = result.arguments

        self._emit(ctx, "tool.call", {
            "tool": name, "permission_key": spec.permission_key, "tool_call_id": call.id, "args": args,
        })

        verdict = self.gate.policy(ctx, name, spec.permission_key)
        if verdict == "deny":
            self._emit(ctx, "tool.denied", {"tool": name, "reason": "policy"})
            yield ChatChunk(content=f"**{name}** denied by permission rules\n\n")
            self._observe(ctx, convo, f"{name} result: REJECTED\nThis action is denied by the permission rules.")
            return
        if verdict == "ask":
            self._set_state(ctx, LoopState.AWAIT_APPROVAL)
            request = self.gate.open(ctx, name, args, spec.permission_key)
            self._emit(ctx, "approval.requested", request.to_dict())
            try:
                yield ChatChunk(content=f"**{name}** awaiting approval: {_args_preview(args)}\n", approval=request)
                decision = await self.gate.wait(ctx)
            finally:
                # Consumer stopped reading while the request was open.
                self.gate.cancel(ctx.workspace_id)
            self._emit(ctx, "approval.resolved", {
                "tool": name, "allowed": decision.allowed,
                "allow_all": decision.allow_all, "timed_out": decision.timed_out,
            })
            if not decision.allowed:
                self._emit(ctx, "tool.denied", {"tool": name, "reason": "timeout" if decision.timed_out else "user"})
                if decision.timed_out:
                    reason = "No approval decision arrived in time; the action was not executed."
                else:
                    reason = "The user denied this action. Do not retry it; choose another approach or stop."
                yield ChatChunk(content=f"**{name}** rejected\n\n")
                self._observe(ctx, convo, f"{name} result: REJECTED\n{reason}")
                return

        self._set_state(ctx, LoopState.RUN)
        logger.debug("[%s] executing %s %s", ctx.workspace_id, name, _args_preview(args))
        yield ChatChunk(content=f"**{name}** ")
        t0 = time.perf_counter()
        try:
            res = await tool.execute(self._tool_context(ctx), args)
        except CONTEXT_FATAL:
            raise
        except Exception as e:
            logger.exception("Tool %s raised", name)
            res = ToolResult.fail(f"Tool {name} raised {type(e).__name__}: {e}")
        elapsed_ms = int((time.perf_counter() - t0) * 1000)

        self._set_state(ctx, LoopState.OBSERVE)
        self._emit(ctx, "tool.result", {
            "tool": name,
            "tool_call_id": call.id,
            "success": res.success,
            "elapsed_ms": elapsed_ms,
            "content_len": len(res.text),
            "content_preview": res.text[:4000],
        })
        if res.success:
            body = f"ok\n```\n{_preview(res.output)}\n```\n\n" if res.output else "ok\n\n"
            yield ChatChunk(content=body)
        else:
            batch.failed = True
            yield ChatChunk(content=f"failed: {_preview(res.error or res.text)}\n\n")
        self._observe(ctx, convo, res.observation(name))
