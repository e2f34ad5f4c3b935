"""Subprocess plumbing and scheduler detection.

Scheduler client tools are run with ``asyncio.create_subprocess_exec`` (no
shell).  Any failure to run a tool, a timeout, or a non-zero exit becomes a
``SchedulerQueryError``; callers decide whether that skips a poll tick or
reaches the user.
"""

from __future__ import annotations

import asyncio
import shutil

from charmer.core.exceptions import SchedulerQueryError
from charmer.core.logging import get_logger
from charmer.state.records import SchedulerType

_logger = get_logger("schedulers")

DEFAULT_TIMEOUT_SECONDS = 30.0

# Detection order; the first tool that answers wins
DETECTION_COMMANDS: tuple[tuple[SchedulerType, tuple[str, ...]], ...] = (
    (SchedulerType.SLURM, ("squeue", "--version")),
    (SchedulerType.LSF, ("bjobs", "-V")),
)


async def run_command(
    *cmd: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    allow_failure: bool = False,
) -> str:
    """Run a scheduler tool and return its decoded stdout.

    Args:
        *cmd: Program and arguments.
        timeout: Seconds to wait before killing the process.
        allow_failure: Return stdout even when the exit code is non-zero.
            Some tools (bjobs, bhist) exit 255 for "no jobs found".

    Raises:
        SchedulerQueryError: If the tool is missing, times out, or exits
            non-zero without ``allow_failure``.
    """
    tool = cmd[0]
    _logger.debug("schedulers.command", cmd=list(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise SchedulerQueryError(tool, f"cannot execute: {e}") from e

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout)
    except TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise SchedulerQueryError(tool, f"timed out after {timeout:.0f}s") from e

    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
    exit_code = proc.returncode or 0
    if exit_code != 0 and not allow_failure:
        raise SchedulerQueryError(tool, f"exit code {exit_code}: {stderr[:500]}")
    return stdout


async def detect_scheduler(timeout: float = 5.0) -> SchedulerType | None:
    """Look for scheduler client tools in a fixed order.

    Returns None when no scheduler answers; that disables polling but is
    never fatal.
    """
    for scheduler, command in DETECTION_COMMANDS:
        if shutil.which(command[0]) is None:
            continue
        try:
            await run_command(*command, timeout=timeout)
        except SchedulerQueryError as e:
            _logger.debug("schedulers.detection_failed", scheduler=scheduler.value, error=str(e))
            continue
        _logger.info("schedulers.detected", scheduler=scheduler.value)
        return scheduler
    _logger.info("schedulers.none_detected")
    return None


__all__ = ["DETECTION_COMMANDS", "detect_scheduler", "run_command"]
