"""Schema-driven argument checks plus the per-tool rules a schema can't express."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from .base import ToolSpec

if TYPE_CHECKING:
    from ..llm.base import ChatProvider

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[\w+.-]*[ \t]*\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    arguments: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    # Set when the only problem is a field the repairer knows how to recover.
    missing_field: str | None = None


def _coerce(value: Any, expected: str) -> tuple[bool, Any]:
    if expected == "string":
        if isinstance(value, str):
            return True, value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return True, str(value)
        return False, value
    if expected == "integer":
        if isinstance(value, bool):
            return False, value
        if isinstance(value, int):
            return True, value
        if isinstance(value, float) and value.is_integer():
            return True, int(value)
        if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
            return True, int(value)
        return False, value
    if expected == "number":
        if isinstance(value, bool):
            return False, value
        if isinstance(value, (int, float)):
            return True, value
        if isinstance(value, str):
            try:
                return True, float(value)
            except ValueError:
                return False, value
        return False, value
    if expected == "boolean":
        if isinstance(value, bool):
            return True, value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return True, value.strip().lower() == "true"
        return False, value
    if expected == "array":
        return isinstance(value, list), value
    if expected == "object":
        return isinstance(value, dict), value
    return True, value


def _require_text(*names: str) -> Callable[[str, dict[str, Any]], ValidationResult | None]:
    def rule(tool: str, args: dict[str, Any]) -> ValidationResult | None:
        for n in names:
            v = args.get(n)
            if not isinstance(v, str) or not v.strip():
                return ValidationResult(False, args, f"{tool} requires a non-empty {n} parameter")
        return None
    return rule


def _write_file_rule(tool: str, args: dict[str, Any]) -> ValidationResult | None:
    path = args.get("path")
    if not isinstance(path, str) or not path.strip():
        return ValidationResult(False, args, "write_file requires a path parameter - specify which file to create")
    content = args.get("content")
    if content is None or (isinstance(content, str) and not content.strip()):
        return ValidationResult(
            False,
            args,
            f'write_file for "{path}" is MISSING the content parameter. You MUST provide the file content.',
            missing_field="content",
        )
    if not isinstance(content, str):
        return ValidationResult(False, args, f"write_file content must be a string, got {type(content).__name__}")
    return None


def _git_commit_rule(tool: str, args: dict[str, Any]) -> ValidationResult | None:
    msg = args.get("message")
    if not isinstance(msg, str) or not msg.strip():
        logger.info("git_commit missing message, using default")
        args["message"] = "Auto-commit"
    return None


def _package_install_rule(tool: str, args: dict[str, Any]) -> ValidationResult | None:
    pk = args.get("packages")
    if isinstance(pk, list):
        pk = " ".join(str(x) for x in pk)
        args["packages"] = pk
    if not isinstance(pk, str) or not pk.strip():
        return ValidationResult(False, args, "package_install requires a packages parameter")
    return None


def _http_method_rule(tool: str, args: dict[str, Any]) -> ValidationResult | None:
    method = str(args.get("method") or "").upper()
    if method not in {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}:
        return ValidationResult(False, args, f"http_request: unsupported method {args.get('method')!r}")
    args["method"] = method
    return None


TOOL_RULES: dict[str, Callable[[str, dict[str, Any]], ValidationResult | None]] = {
    "write_file": _write_file_rule,
    "read_file": _require_text("path"),
    "create_directory": _require_text("path"),
    "apply_patch": _require_text("patch"),
    "execute_command": _require_text("command"),
    "git_commit": _git_commit_rule,
    "package_install": _package_install_rule,
    "code_search": _require_text("pattern"),
    "find_symbol": _require_text("symbol"),
    "web_search": _require_text("query"),
    "web_fetch": _require_text("url"),
    "http_request": _http_method_rule,
}


def validate_arguments(spec: ToolSpec, arguments: Any) -> ValidationResult:
    """Check ``arguments`` against ``spec.parameters`` and the override table.

    Returns a copy of the arguments with lenient coercions applied (numeric
    strings, "true"/"false") and defaults from the override table filled in.
    """
    if not isinstance(arguments, dict):
        return ValidationResult(False, {}, f"{spec.name}: arguments must be an object, got {type(arguments).__name__}")
    args = dict(arguments)
    schema = spec.parameters or {}
    props: dict[str, Any] = schema.get("properties") or {}

    # The per-tool rule runs first so it can fill defaults or flag a repairable gap.
    rule = TOOL_RULES.get(spec.name)
    if rule is not None:
        res = rule(spec.name, args)
        if res is not None:
            return res

    for name in schema.get("required") or []:
        if args.get(name) is None:
            return ValidationResult(False, args, f"{spec.name} requires a {name} parameter")

    for name, value in list(args.items()):
        if value is None:
            del args[name]
            continue
        expected = (props.get(name) or {}).get("type")
        if not expected:
            continue
        ok, coerced = _coerce(value, expected)
        if not ok:
            return ValidationResult(
                False, args, f"{spec.name}: {name} must be {expected}, got {type(value).__name__}"
            )
        args[name] = coerced
    return ValidationResult(True, args)


def strip_code_fences(text: str) -> str:
    text = text.strip()
    m = _FENCE_RE.search(text)
    if m and text.startswith("```"):
        return m.group(1).rstrip("\n")
    return text


def salvage_code_block(text: str | None) -> str | None:
    """Return the largest fenced block in ``text``, if any."""
    if not text:
        return None
    blocks = [b.rstrip("\n") for b in _FENCE_RE.findall(text) if b.strip()]
    if not blocks:
        return None
    return max(blocks, key=len)


REPAIR_SYSTEM_PROMPT = (
    "You are a code generator. Output ONLY the raw file content, nothing else. "
    "No markdown, no explanations, no code blocks - just the actual content that should go in the file."
)


@dataclass
class ArgumentRepairer:
    """Recovers a missing write_file content field, at most once per call."""

    provider: "ChatProvider"
    context_messages: int = 12

    async def repair(
        self,
        spec: ToolSpec,
        result: ValidationResult,
        transcript: list[dict[str, Any]],
        assistant_text: str | None = None,
    ) -> ValidationResult:
        if result.valid or result.missing_field != "content":
            return result
        args = dict(result.arguments)
        path = str(args.get("path") or "")

        salvaged = salvage_code_block(assistant_text)
        if salvaged:
            logger.info("Recovered content for %s from the assistant's prose", path)
            args["content"] = salvaged
            return validate_arguments(spec, args)

        messages = [{"role": "system", "content": REPAIR_SYSTEM_PROMPT}]
        messages.extend(m for m in transcript[-self.context_messages:] if m.get("role") != "system")
        messages.append({
            "role": "user",
            "content": (
                f"Based on the conversation context, generate the complete content for the file: {path}\n\n"
                "Output ONLY the file content, nothing else."
            ),
        })
        logger.info("Requesting missing content for %s", path)
        turn = await self.provider.chat(messages, tools=None)
        content = strip_code_fences(turn.text or "")
        if not content.strip():
            return ValidationResult(False, args, f"{result.error} (content could not be recovered)")
        args["content"] = content
        return validate_arguments(spec, args)
