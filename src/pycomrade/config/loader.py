from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from .models import BehaviorConfig
from ..mcp.models import MCPServerConfig
from ..tools.permissions import PermissionRule

logger = logging.getLogger(__name__)

APP_NAME = "pycomrade"


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level (higher priority)
    return [
        cwd / ".pycomrade.json",
        cwd / "pycomrade.json",
    ]


def _global_candidate_paths() -> list[Path]:
    return [Path(user_config_dir(APP_NAME)) / "pycomrade.json"]


def _load_json(p: Path) -> dict[str, Any] | None:
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", p, e)
        return None
    if not isinstance(obj, dict):
        logger.warning("Ignoring config %s: top level must be an object", p)
        return None
    return obj


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)
        else:
            out[k] = v
    return out


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return default
    return int(value)


def _positive_float(value: Any, default: float | None) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return default
    return float(value)


def config_from_dict(merged: dict[str, Any]) -> BehaviorConfig:
    cfg = BehaviorConfig()

    approval = merged.get("approval", {})
    if isinstance(approval, dict):
        mode = approval.get("mode")
        if mode in {"manual", "auto"}:
            cfg.approval_mode = mode
        if "timeout_s" in approval:
            # null disables the timeout
            t = approval.get("timeout_s")
            cfg.approval_timeout_s = None if t is None else _positive_float(t, cfg.approval_timeout_s)

    cfg.max_tool_calls = _positive_int(merged.get("max_tool_calls"), cfg.max_tool_calls)
    nudges = merged.get("max_nudges")
    if isinstance(nudges, int) and not isinstance(nudges, bool) and nudges >= 0:
        cfg.max_nudges = nudges
    cfg.shell_timeout_ms = _positive_int(merged.get("shell_timeout_ms"), cfg.shell_timeout_ms)
    cfg.mcp_request_timeout_s = _positive_float(merged.get("mcp_request_timeout_s"), cfg.mcp_request_timeout_s)
    cfg.max_tool_result_chars = _positive_int(merged.get("max_tool_result_chars"), cfg.max_tool_result_chars)
    browser = merged.get("browser", {})
    if isinstance(browser, dict) and isinstance(browser.get("headless"), bool):
        cfg.browser_headless = browser["headless"]

    # permissions
    perms = merged.get("permissions", [])
    if isinstance(perms, list):
        for it in perms:
            r = PermissionRule.from_obj(it)
            if r is not None:
                cfg.permissions.append(r)
            else:
                logger.warning("Ignoring invalid permission rule: %r", it)

    # mcp servers
    mcp = merged.get("mcp_servers", {}) or merged.get("mcpServers", {})
    if isinstance(mcp, dict):
        for name, obj in mcp.items():
            if not isinstance(name, str):
                continue
            sc = MCPServerConfig.from_obj(name, obj)
            if sc is not None:
                cfg.mcp_servers[name] = sc
            else:
                logger.warning("Ignoring invalid MCP server config %s", name)

    return cfg


def load_behavior_config(*, cwd: Path, explicit_path: Path | None = None) -> BehaviorConfig:
    """Load behavior config.

    Merge order: global < project < explicit_path.
    """
    merged: dict[str, Any] = {}
    loaded_from: Path | None = None

    for p in _global_candidate_paths():
        if p.is_file():
            obj = _load_json(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p

    for p in _candidate_paths(cwd):
        if p.is_file():
            obj = _load_json(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p
                break  # first match wins for project-level

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        obj = _load_json(p)
        if obj is not None:
            merged = _merge_dicts(merged, obj)
            loaded_from = p

    cfg = config_from_dict(merged)
    cfg.loaded_from = loaded_from
    if loaded_from:
        logger.debug("Behavior config loaded from %s", loaded_from)
    return cfg
