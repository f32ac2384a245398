from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any, Iterable, Literal

Decision = Literal["allow", "ask", "deny"]

DECISIONS: frozenset[str] = frozenset({"allow", "ask", "deny"})

# Risk classes: "read" is low risk; "edit", "net" and "browser" are medium;
# "bash" and "mcp" can do anything the host can.
RISK_LEVELS: dict[str, str] = {
    "read": "low",
    "edit": "medium",
    "net": "medium",
    "browser": "medium",
    "bash": "high",
    "mcp": "high",
}


def risk_level(permission_key: str) -> str:
    return RISK_LEVELS.get(permission_key, "high")


@dataclass(frozen=True)
class PermissionRule:
    """One ``{"match": ..., "decision": ...}`` entry from the behavior config.

    ``tool:<glob>`` matches the tool name only (``tool:mcp.github.*``); any
    other pattern is matched against both the permission key and the tool name.
    """

    match: str
    decision: Decision

    @staticmethod
    def from_obj(obj: Any) -> "PermissionRule | None":
        if not isinstance(obj, dict):
            return None
        pattern, decision = obj.get("match"), obj.get("decision")
        if not isinstance(pattern, str) or not pattern or decision not in DECISIONS:
            return None
        return PermissionRule(match=pattern, decision=decision)

    def matches(self, permission_key: str, tool_name: str) -> bool:
        if self.match.startswith("tool:"):
            return fnmatch(tool_name, self.match[len("tool:"):])
        return fnmatch(permission_key, self.match) or fnmatch(tool_name, self.match)


def _default_decisions() -> dict[str, Decision]:
    return {key: ("allow" if key == "read" else "ask") for key in RISK_LEVELS}


@dataclass
class PermissionConfig:
    """Static policy in front of the approval gate.

    Config rules are checked last to first, so a later rule overrides an
    earlier one; without a matching rule the per-key default applies and
    unknown keys ask.
    """

    defaults: dict[str, Decision] = field(default_factory=_default_decisions)
    rules: list[PermissionRule] = field(default_factory=list)

    def apply_behavior(self, rules: Iterable[PermissionRule]) -> None:
        self.rules.extend(rules)

    def decide(self, permission_key: str, tool_name: str) -> Decision:
        for rule in reversed(self.rules):
            if rule.matches(permission_key, tool_name):
                return rule.decision
        return self.defaults.get(permission_key, self.defaults.get(tool_name, "ask"))
