"""Recover tool calls from model text.

Two sources besides native function calling:

* ``<tool_call>{"tool": ..., "arguments": {...}}</tool_call>`` tags, which the
  text-only system prompt asks for;
* pseudo calls: an ordered table of rules, each a regex plus an argument
  mapper, e.g. ``create_directory("build")`` or ``run the command `ls```.

Every rule is evaluated; results are unioned in table order and duplicates
(same tool, same arguments) are dropped.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..session.models import ToolCall

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "'": "'", "\\": "\\", "`": "`"}


def parse_tagged_calls(text: str) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for i, m in enumerate(_TAG_RE.finditer(text or "")):
        body = m.group(1).strip()
        if body.startswith("```"):
            body = re.sub(r"^```\w*\s*|\s*```$", "", body)
        try:
            obj = json.loads(body)
        except json.JSONDecodeError:
            logger.warning("Unparsable <tool_call> body: %s", body[:200])
            calls.append(ToolCall(id=f"tag_{i}", name="", arguments=None, raw_arguments=body))
            continue
        if not isinstance(obj, dict):
            continue
        name = obj.get("tool") or obj.get("name")
        args = obj.get("arguments", obj.get("parameters", {}))
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError:
                calls.append(ToolCall(id=f"tag_{i}", name=str(name or ""), arguments=None, raw_arguments=args))
                continue
        if not isinstance(name, str) or not name or not isinstance(args, dict):
            continue
        calls.append(ToolCall(id=f"tag_{i}", name=name, arguments=args))
    return calls


def strip_tagged_calls(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


# --- call-shaped arguments -------------------------------------------------

def _read_string(text: str, i: int) -> tuple[str, int] | None:
    quote = text[i]
    out: list[str] = []
    i += 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    return None


_NUM_RE = re.compile(r"-?\d+(?:\.\d+)?")
_KW_RE = re.compile(r"([A-Za-z_]\w*)\s*=\s*")


def parse_call_args(text: str, start: int) -> tuple[list[Any], dict[str, Any]] | None:
    """Parse literal arguments after an opening paren at ``start``.

    Accepts quoted strings (single, double, backtick, with escapes), numbers,
    true/false and ``key=value`` pairs. Anything else (a bare identifier,
    say) means the text was prose about a call, not a call, and yields None.
    """
    positional: list[Any] = []
    keywords: dict[str, Any] = {}
    i = start
    n = len(text)
    while i < n:
        while i < n and text[i] in " \t\r\n,":
            i += 1
        if i >= n:
            return None
        if text[i] == ")":
            return positional, keywords
        key = None
        kw = _KW_RE.match(text, i)
        if kw:
            key = kw.group(1)
            i = kw.end()
        if i >= n:
            return None
        ch = text[i]
        if ch in "\"'`":
            res = _read_string(text, i)
            if res is None:
                return None
            value, i = res
        else:
            m = _NUM_RE.match(text, i)
            if m:
                raw = m.group(0)
                value = float(raw) if "." in raw else int(raw)
                i = m.end()
            elif text.startswith("true", i) or text.startswith("false", i):
                value = text.startswith("true", i)
                i += 4 if value else 5
            else:
                return None
        if key is None:
            if keywords:
                return None
            positional.append(value)
        else:
            keywords[key] = value
    return None


@dataclass(frozen=True)
class PseudoRule:
    pattern: re.Pattern[str]
    tool: str
    mapper: Callable[[re.Match[str], str], dict[str, Any] | None]


def _call_shape(params: tuple[str, ...], required: int) -> Callable[[re.Match[str], str], dict[str, Any] | None]:
    def mapper(m: re.Match[str], text: str) -> dict[str, Any] | None:
        parsed = parse_call_args(text, m.end())
        if parsed is None:
            return None
        positional, keywords = parsed
        if len(positional) > len(params):
            return None
        args = dict(zip(params, positional))
        args.update(keywords)
        if any(p not in args for p in params[:required]):
            return None
        return args
    return mapper


def _group(**names: int) -> Callable[[re.Match[str], str], dict[str, Any] | None]:
    def mapper(m: re.Match[str], text: str) -> dict[str, Any] | None:
        args = {k: m.group(g).strip() for k, g in names.items()}
        return args if all(args.values()) else None
    return mapper


def _call(tool: str, params: tuple[str, ...] = (), required: int | None = None) -> PseudoRule:
    return PseudoRule(
        re.compile(rf"\b{tool}\s*\("),
        tool,
        _call_shape(params, len(params) if required is None else required),
    )


_Q = r"[\"'`]([^\"'`\n]+)[\"'`]"

PSEUDO_RULES: tuple[PseudoRule, ...] = (
    _call("write_file", ("path", "content"), required=1),
    _call("create_directory", ("path",)),
    _call("read_file", ("path",)),
    _call("list_directory", ("path", "recursive"), required=0),
    _call("apply_patch", ("patch",)),
    _call("execute_command", ("command", "timeout"), required=1),
    _call("git_status"),
    _call("git_diff", ("staged", "file"), required=0),
    _call("git_add", ("files",)),
    _call("git_commit", ("message",)),
    _call("git_log", ("count",), required=0),
    _call("package_install", ("packages", "manager"), required=1),
    _call("code_search", ("pattern", "file_pattern"), required=1),
    _call("find_symbol", ("symbol",)),
    _call("web_search", ("query", "count"), required=1),
    _call("web_fetch", ("url", "max_length"), required=1),
    _call("run_tests", ("test_path", "framework"), required=0),
    _call("start_server", ("path", "port"), required=0),
    PseudoRule(
        re.compile(rf"\b(?:create|make)\s+(?:a\s+)?(?:new\s+)?(?:folder|directory)\s+(?:called\s+|named\s+)?{_Q}", re.I),
        "create_directory",
        _group(path=1),
    ),
    PseudoRule(
        re.compile(rf"\b(?:run|execute)\s+(?:the\s+)?(?:command|cmd)\s*:?\s*{_Q}", re.I),
        "execute_command",
        _group(command=1),
    ),
    PseudoRule(
        re.compile(rf"\bread\s+(?:the\s+)?file\s+{_Q}", re.I),
        "read_file",
        _group(path=1),
    ),
    PseudoRule(
        re.compile(rf"\bcommit\s+(?:the\s+changes\s+)?with\s+(?:the\s+)?message\s+{_Q}", re.I),
        "git_commit",
        _group(message=1),
    ),
    PseudoRule(
        re.compile(rf"\binstall\s+(?:the\s+)?packages?\s+{_Q}", re.I),
        "package_install",
        _group(packages=1),
    ),
    PseudoRule(
        re.compile(r"\bcheck\s+(?:the\s+)?git\s+status\b", re.I),
        "git_status",
        lambda m, text: {},
    ),
)


def dedupe(calls: Iterable[ToolCall]) -> list[ToolCall]:
    seen: set[tuple[str, str]] = set()
    out: list[ToolCall] = []
    for c in calls:
        k = c.key()
        if k in seen:
            continue
        seen.add(k)
        out.append(c)
    return out


def parse_pseudo_calls(text: str, rules: Iterable[PseudoRule] = PSEUDO_RULES) -> list[ToolCall]:
    found: list[ToolCall] = []
    for rule in rules:
        for m in rule.pattern.finditer(text or ""):
            args = rule.mapper(m, text)
            if args is None:
                continue
            found.append(ToolCall(id=f"pseudo_{len(found)}", name=rule.tool, arguments=args))
    return dedupe(found)


def extract_from_text(text: str) -> list[ToolCall]:
    """Tagged calls first, then pseudo calls from the remaining prose."""
    tagged = parse_tagged_calls(text)
    pseudo = parse_pseudo_calls(strip_tagged_calls(text))
    return dedupe([*tagged, *pseudo])
