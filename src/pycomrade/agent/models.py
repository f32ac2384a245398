from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

ChatRole = Literal["user", "assistant", "system"]


class LoopState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    DISPATCH = "dispatch"
    AWAIT_APPROVAL = "await_approval"
    RUN = "run"
    OBSERVE = "observe"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str

    @staticmethod
    def from_obj(obj: Any) -> "ChatMessage":
        if isinstance(obj, ChatMessage):
            return obj
        if not isinstance(obj, dict):
            raise ValueError(f"Invalid chat message: {obj!r}")
        role = obj.get("role")
        if role not in {"user", "assistant", "system"}:
            raise ValueError(f"Invalid chat role: {role!r}")
        return ChatMessage(role=role, content=str(obj.get("content") or ""))

    def to_openai(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ApprovalRequest:
    tool: str
    arguments: dict[str, Any]
    risk: str = "high"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool, "arguments": self.arguments, "risk": self.risk, "timestamp": self.created_at}


@dataclass(frozen=True)
class ApprovalDecision:
    allowed: bool
    allow_all: bool = False
    timed_out: bool = False

    @staticmethod
    def from_obj(obj: Any) -> "ApprovalDecision":
        if isinstance(obj, ApprovalDecision):
            return obj
        if not isinstance(obj, dict):
            raise ValueError(f"Invalid approval decision: {obj!r}")
        allow_all = obj.get("allow_all", obj.get("allowAll", False))
        return ApprovalDecision(allowed=bool(obj.get("allowed")), allow_all=bool(allow_all))


@dataclass(frozen=True)
class ChatChunk:
    content: str
    done: bool = False
    error: str | None = None
    approval: ApprovalRequest | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"content": self.content, "done": self.done}
        if self.error is not None:
            d["error"] = self.error
        if self.approval is not None:
            d["approval"] = self.approval.to_dict()
        return d
