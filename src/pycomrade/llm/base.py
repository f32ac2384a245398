from __future__ import annotations

from typing import Any, Protocol

from ..session.models import AssistantTurn


class ProviderError(RuntimeError):
    """The model endpoint is unreachable, misconfigured or returned garbage."""


class ChatProvider(Protocol):
    supports_native_tools: bool

    def validate(self) -> str | None:
        """Return a configuration problem, or None when the provider looks usable."""
        ...

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        force_tools: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AssistantTurn: ...
