from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from ..session.models import AssistantTurn, ToolCall
from .base import ProviderError

logger = logging.getLogger(__name__)


def parse_tool_calls(raw_calls: list[dict[str, Any]] | None) -> list[ToolCall]:
    """OpenAI ``tool_calls`` -> ToolCall list; unparsable arguments stay raw."""
    out: list[ToolCall] = []
    for i, tc in enumerate(raw_calls or []):
        fn = tc.get("function") or {}
        arg_str = fn.get("arguments")
        args: dict[str, Any] | None
        raw: str | None = None
        if isinstance(arg_str, dict):
            args = arg_str
        elif not arg_str:
            args = {}
        else:
            raw = str(arg_str)
            try:
                parsed = json.loads(raw)
                args = parsed if isinstance(parsed, dict) else None
            except json.JSONDecodeError:
                args = None
        out.append(ToolCall(
            id=str(tc.get("id") or f"call_{i}"),
            name=str(fn.get("name") or ""),
            arguments=args,
            raw_arguments=raw,
        ))
    return out


@dataclass
class OpenAICompatProvider:
    """
    Minimal OpenAI-compatible Chat Completions client.
    Works with OpenAI and many compatible gateways (OpenRouter, vLLM, LM Studio, Ollama, etc.)

    ``native_tools=False`` is for endpoints without function calling: the
    catalog goes into the system prompt and calls are recovered from text.
    """
    model: str
    base_url: str
    api_key: str
    provider_name: str = "openai"
    native_tools: bool = True
    temperature: float = 0.2
    timeout: float = 120.0
    enabled: bool = True

    @property
    def supports_native_tools(self) -> bool:
        return self.native_tools

    def validate(self) -> str | None:
        if not self.enabled:
            return f"Provider {self.provider_name} is not enabled."
        if not self.model:
            return "Model is required. Set PYCOMRADE_MODEL in the provider config."
        if not self.base_url:
            return "Base URL is required. Set PYCOMRADE_BASE_URL in the provider config."
        # Local gateways (Ollama, LM Studio) accept any key.
        if not self.api_key and self.native_tools:
            return "API key required. Set PYCOMRADE_API_KEY in the provider config."
        return None

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        force_tools: bool,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if tools and self.native_tools:
            payload["tools"] = tools
            payload["tool_choice"] = "required" if force_tools else "auto"
        return payload

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + "/chat/completions"
        data = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = urllib.request.Request(url, data=data, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise ProviderError(f"Provider HTTPError {e.code}: {e.reason}\n{body}") from e
        except urllib.error.URLError as e:
            raise ProviderError(f"Provider URLError: {e}") from e
        except TimeoutError as e:
            raise ProviderError(f"Provider timed out after {self.timeout}s") from e
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Provider returned invalid JSON: {raw[:500]}") from e
        if not isinstance(obj, dict):
            raise ProviderError(f"Provider returned unexpected payload: {raw[:500]}")
        return obj

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        force_tools: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AssistantTurn:
        problem = self.validate()
        if problem:
            raise ProviderError(problem)
        payload = self._build_payload(messages, tools, force_tools, temperature, max_tokens)
        logger.debug("chat request: model=%s messages=%d tools=%d", self.model, len(messages), len(tools or []))
        obj = await asyncio.to_thread(self._post, payload)
        try:
            msg = obj["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            err = obj.get("error")
            raise ProviderError(f"Provider response has no message: {err or obj}") from e
        return AssistantTurn(
            text=msg.get("content") or "",
            tool_calls=parse_tool_calls(msg.get("tool_calls")),
            reasoning_content=msg.get("reasoning_content"),
        )
