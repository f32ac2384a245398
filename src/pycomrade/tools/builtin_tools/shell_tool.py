from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ..sandbox import check_dangerous_command, split_cd_prefix, translate_command
from ...util.fs import FsError, resolve_in_workspace
from ...util.subprocess import CmdResult, run_shell

logger = logging.getLogger(__name__)

MAX_TIMEOUT_MS = 600_000
MAX_OUTPUT_CHARS = 30_000


def format_cmd_result(res: CmdResult) -> str:
    out = ""
    if res.stdout:
        out += f"STDOUT:\n{res.stdout.rstrip()}\n"
    if res.stderr:
        out += f"STDERR:\n{res.stderr.rstrip()}\n"
    out += f"EXIT_CODE: {res.returncode}"
    if len(out) > MAX_OUTPUT_CHARS:
        half = MAX_OUTPUT_CHARS // 2
        out = out[:half] + "\n\n... (truncated) ...\n\n" + out[-half:]
    return out


@dataclass
class ExecuteCommandTool:
    spec: ToolSpec = ToolSpec(
        name="execute_command",
        description=(
            "Run a shell command in the workspace. A leading 'cd <dir> &&' sets the working directory. "
            "Returns stdout/stderr and exit code."
        ),
        permission_key="bash",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run."},
                "timeout": {"type": "integer", "description": "Timeout in milliseconds (default 30000)."},
            },
            "required": ["command"],
        },
    )
    platform: str = sys.platform

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cmd = (args.get("command") or "").strip()
        if not cmd:
            return ToolResult.fail("Empty command.")
        timeout_ms = int(args.get("timeout") or ctx.shell_timeout_ms)
        timeout_ms = max(1000, min(timeout_ms, MAX_TIMEOUT_MS))

        blocked = check_dangerous_command(cmd)
        if blocked:
            logger.warning("Blocked dangerous command: %s", cmd)
            return ToolResult.fail(f"Command blocked for safety (matched: {blocked})")

        subdir, rest = split_cd_prefix(cmd)
        cwd = ctx.root
        if subdir is not None:
            try:
                cwd = resolve_in_workspace(ctx.root, subdir)
            except FsError as e:
                return ToolResult.fail(str(e))
            if not cwd.is_dir():
                return ToolResult.fail(f"Directory not found: {subdir}")

        final = translate_command(rest, self.platform)
        logger.debug("execute_command cwd=%s cmd=%s", cwd, final)
        res = await run_shell(final, cwd=str(cwd), timeout=timeout_ms / 1000)
        if res.timed_out:
            return ToolResult.fail(f"Command timed out after {timeout_ms}ms", output=format_cmd_result(res))
        text = format_cmd_result(res)
        if res.returncode != 0:
            return ToolResult.fail(text)
        return ToolResult.ok(text)
