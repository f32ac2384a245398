from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# Shell children run in their own process group; a timeout kills the group.
_NEW_GROUP = os.name != "nt"


@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def _kill(proc: asyncio.subprocess.Process, group: bool) -> None:
    if group:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except OSError as e:
            logger.debug("killpg(%s) failed: %s", proc.pid, e)
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def _collect(proc: asyncio.subprocess.Process, timeout: Optional[float], *, group: bool = False) -> CmdResult:
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.CancelledError:
        # Cancelled turn: the child goes with it.
        _kill(proc, group)
        raise
    except asyncio.TimeoutError:
        logger.warning("Killing child process %s after %ss timeout", proc.pid, timeout)
        _kill(proc, group)
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Child process %s left its pipes open after kill", proc.pid)
            out, err = b"", b""
        return CmdResult(
            proc.returncode if proc.returncode is not None else -9,
            _decode(out),
            _decode(err),
            timed_out=True,
        )
    return CmdResult(proc.returncode if proc.returncode is not None else 0, _decode(out), _decode(err))


async def run_cmd(cmd: Sequence[str], cwd: str, timeout: Optional[float] = 120) -> CmdResult:
    """Run an argv command without a shell; the child is killed on timeout."""
    proc = await asyncio.create_subprocess_exec(
        *list(cmd),
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    return await _collect(proc, timeout)


async def run_shell(command: str, cwd: str, timeout: Optional[float] = 30) -> CmdResult:
    """Run a command line through the platform shell; the whole process group is killed on timeout."""
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=_NEW_GROUP,
    )
    return await _collect(proc, timeout, group=_NEW_GROUP)
