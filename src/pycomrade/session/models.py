from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class Message:
    role: Role
    content: str | None
    name: str | None = None

    def to_openai(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role, "content": self.content or ""}
        if self.name and self.role != "tool":
            d["name"] = self.name
        return d


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] | None  # parsed json, None when unparsable
    # Provider's raw argument string, kept so a parse failure can be reported.
    raw_arguments: str | None = None

    def key(self) -> tuple[str, str]:
        try:
            body = json.dumps(self.arguments, sort_keys=True, ensure_ascii=False)
        except (TypeError, ValueError):
            body = repr(self.arguments)
        return self.name, body if self.arguments is not None else (self.raw_arguments or "")


@dataclass
class AssistantTurn:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    reasoning_content: str | None = None
