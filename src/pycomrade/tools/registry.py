from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .base import Tool, ToolSpec


@dataclass
class ToolRegistry:
    _tools: Dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        name = tool.spec.name
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}")
        return self._tools[name]

    def get_optional(self, name: str) -> Optional[Tool]:
        """Return a tool if registered, otherwise None.

        Use this in agent loops to avoid crashing when the model hallucinates
        an unknown tool name.
        """
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def list_specs(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def to_openai(self) -> list[dict[str, Any]]:
        out = []
        for spec in self.list_specs():
            out.append({
                "type": "function",
                "function": {
                    "name": spec.name,
                    "description": spec.description,
                    "parameters": spec.parameters,
                },
            })
        return out

    def describe_for_prompt(self) -> str:
        """Plain-text catalog for models without native function calling."""
        lines = []
        for spec in self.list_specs():
            props = spec.parameters.get("properties") or {}
            required = set(spec.parameters.get("required") or [])
            params = ", ".join(
                f"{k}{'' if k in required else '?'}: {v.get('type', 'any')}" for k, v in props.items()
            )
            lines.append(f"- {spec.name}({params}): {spec.description}")
        return "\n".join(lines)
