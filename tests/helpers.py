from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pycomrade.session.models import AssistantTurn, ToolCall


@dataclass
class FakeProvider:
    """Scripted provider: one queue per phase, told apart by the system prompt."""

    turns: list[AssistantTurn | Exception] = field(default_factory=list)
    repairs: list[AssistantTurn] = field(default_factory=list)
    plan: str = "1. Do the thing"
    # Returned once ``turns`` is exhausted; None means a plain "Done." answer.
    default: AssistantTurn | None = None
    supports_native_tools: bool = True
    problem: str | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)

    def validate(self) -> str | None:
        return self.problem

    def phase(self, messages: list[dict[str, Any]]) -> str:
        system = messages[0]["content"] if messages and messages[0]["role"] == "system" else ""
        if "creating a plan" in system:
            return "planning"
        if "code generator" in system:
            return "repair"
        return "execution"

    def calls_in(self, phase: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["phase"] == phase]

    async def chat(self, messages, tools=None, *, force_tools=False, temperature=None, max_tokens=None):
        phase = self.phase(messages)
        self.calls.append({
            "phase": phase,
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "force_tools": force_tools,
        })
        if phase == "planning":
            return AssistantTurn(text=self.plan)
        if phase == "repair":
            return self.repairs.pop(0) if self.repairs else AssistantTurn(text="")
        if self.turns:
            nxt = self.turns.pop(0)
            if isinstance(nxt, Exception):
                raise nxt
            return nxt
        return self.default or AssistantTurn(text="Done.")


def call(name: str, arguments: dict[str, Any] | None, *, id: str = "call_1", raw: str | None = None) -> AssistantTurn:
    return AssistantTurn(tool_calls=[ToolCall(id=id, name=name, arguments=arguments, raw_arguments=raw)])


def user_contents(messages: list[dict[str, Any]]) -> list[str]:
    return [m["content"] for m in messages if m["role"] == "user"]


async def collect(agen) -> list:
    return [chunk async for chunk in agen]
