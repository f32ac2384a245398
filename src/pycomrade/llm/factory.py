from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .openai_compat import OpenAICompatProvider

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str
    native_tools: bool = True
    enabled: bool = True


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ValueError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            raise ValueError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ValueError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]

    def names(self) -> list[str]:
        return sorted(self._items.keys())


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ValueError(f"Placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "on"}


def load_provider_registry(yaml_path: str | Path) -> ProviderRegistry:
    p = Path(yaml_path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Config YAML not found: {p}")

    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    providers = data.get("providers")
    if not isinstance(providers, dict) or not providers:
        raise ValueError("YAML must contain a non-empty 'providers:' mapping.")

    reg = ProviderRegistry()

    for name, cfg in providers.items():
        if not isinstance(cfg, dict):
            raise ValueError(f"providers.{name} must be a mapping/dict.")

        base_url = str(cfg.get("PYCOMRADE_BASE_URL") or "").strip()
        model = str(cfg.get("PYCOMRADE_MODEL") or "").strip()
        api_key = str(cfg.get("PYCOMRADE_API_KEY") or "").strip()
        native_tools = _as_bool(cfg.get("native_tools"), True)

        missing = [k for k, v in {
            "PYCOMRADE_BASE_URL": base_url,
            "PYCOMRADE_MODEL": model,
        }.items() if not v]
        # Text-only gateways usually run locally and need no key.
        if native_tools and not api_key:
            missing.append("PYCOMRADE_API_KEY")
        if missing:
            raise ValueError(f"providers.{name} missing required field(s): {', '.join(missing)}")

        if api_key:
            api_key = _expand_env_placeholders(api_key)

        reg.add(ProviderConfig(
            name=str(name),
            base_url=base_url,
            model=model,
            api_key=api_key,
            native_tools=native_tools,
            enabled=_as_bool(cfg.get("enabled"), True),
        ))

    return reg


def resolve_provider(
    provider: Optional[str],
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    yaml_path: Optional[Path] = None,
) -> OpenAICompatProvider:
    """
    Priority:
      - CLI overrides (model/base_url/api_key)
      - YAML (by provider name)
    """
    if not provider:
        raise RuntimeError("Missing --provider (must match a name in pycomrade.yaml).")

    yaml_path = (yaml_path or Path("pycomrade.yaml")).expanduser().resolve()
    logger.info("provider config: %s", yaml_path)
    reg = load_provider_registry(yaml_path)
    cfg = reg.get(provider)

    return OpenAICompatProvider(
        model=model or cfg.model,
        base_url=base_url or cfg.base_url,
        api_key=api_key or cfg.api_key,
        provider_name=cfg.name,
        native_tools=cfg.native_tools,
        enabled=cfg.enabled,
    )
