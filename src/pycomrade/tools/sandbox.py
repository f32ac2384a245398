"""Shell guards: catastrophic-command denylist, POSIX-to-cmd translation, cd prefix split."""
from __future__ import annotations

import re
import sys
from typing import Optional

# Substrings refused outright, whatever the platform.
DENYLIST = (
    "rm -rf /",
    "rm -rf ~",
    "rm -rf *",
    "dd if=",
    "mkfs",
    "> /dev/sd",
)

DANGEROUS_PATTERNS = [
    r"rm\s+(-[rRf]+\s+)*(/|~|\$HOME|/\*)",
    r"rm\s+.*\s+(/etc|/usr|/bin|/lib|/boot|/var|/sys|/proc)",
    r"(mv|cp)\s+.*\s+(/etc|/usr|/bin|/lib|/boot)/",
    r"dd\s+.*of=/dev/",
    r"mkfs\.",
    r"^sudo\s+",
    r"(^\s*|[;&|]\s*)(sudo\s+)?(shutdown|reboot|halt|poweroff)\b",
    r"chmod\s+(-R\s+)?(777|666)\s+/",
    r":\(\)\s*\{",
    r"(curl|wget).*\|\s*(ba)?sh",
    r"format\s+[a-z]:",
    r"del\s+/[sq]\s+.*[a-z]:\\",
]
_DANGEROUS_COMMAND_RES = [re.compile(p, re.IGNORECASE) for p in DANGEROUS_PATTERNS]

_CD_PREFIX_RE = re.compile(r"^cd\s+([^\s&]+)\s*&&\s*(.+)$", re.DOTALL)

# Ordered: "rm -rf" must be rewritten before the bare "rm".
_WINDOWS_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bpython3\b"), "python"),
    (re.compile(r"\bpip3\b"), "pip"),
    (re.compile(r"^ls(\s+-[a-zA-Z]+)*\b"), "dir"),
    (re.compile(r"^cat\b"), "type"),
    (re.compile(r"^rm\s+-(rf|fr|r)\b"), "rmdir /s /q"),
    (re.compile(r"^rm\b(\s+-f)?"), "del"),
    (re.compile(r"^mkdir\s+-p\b"), "mkdir"),
    (re.compile(r"^touch\s+(\S+)"), r"type nul > \1"),
    (re.compile(r"^which\b"), "where"),
    (re.compile(r"^clear\b"), "cls"),
]


def check_dangerous_command(command: str) -> Optional[str]:
    """Return the matched rule if ``command`` is refused, else None."""
    lowered = " ".join(command.lower().split())
    for bad in DENYLIST:
        if bad in lowered:
            return bad
    for pattern_re in _DANGEROUS_COMMAND_RES:
        if pattern_re.search(command):
            return pattern_re.pattern
    return None


def split_cd_prefix(command: str) -> tuple[str | None, str]:
    """``cd build && make`` -> ``("build", "make")``; anything else -> ``(None, command)``."""
    m = _CD_PREFIX_RE.match(command.strip())
    if not m:
        return None, command
    target = m.group(1).strip("'\"")
    return target, m.group(2).strip()


def _translate_segment(segment: str) -> str:
    seg = segment.strip()
    for rx, repl in _WINDOWS_RULES:
        seg = rx.sub(repl, seg, count=1)
    return seg


def translate_command(command: str, platform: str | None = None) -> str:
    """Best-effort rewrite of common POSIX idioms for the local shell.

    A trailing ``&`` is always dropped since background jobs would escape the
    timeout. On Windows, ``;`` chaining becomes ``&&`` and each segment is
    rewritten through the rule table.
    """
    platform = platform or sys.platform
    cmd = command.strip()
    if cmd.endswith("&") and not cmd.endswith("&&"):
        cmd = cmd[:-1].rstrip()
    if not platform.startswith("win"):
        return cmd
    cmd = re.sub(r"\s*;\s*", " && ", cmd)
    parts = [_translate_segment(p) for p in cmd.split("&&")]
    return " && ".join(p for p in parts if p)
