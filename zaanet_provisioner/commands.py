"""Async subprocess helpers."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a finished (or abandoned) command."""
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


async def run_command(*args: str, timeout: float = 30.0, input_data: Optional[str] = None) -> CommandResult:
    """Run a command, killing it if it outlives the timeout.

    A missing executable is reported as returncode 127 rather than raised.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        logger.debug(f"Command not found: {args[0]}")
        return CommandResult(returncode=127, stderr=f"{args[0]}: not found")

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(input_data.encode() if input_data is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.debug(f"Command timed out after {timeout}s: {' '.join(args)}")
        return CommandResult(returncode=None, timed_out=True)

    return CommandResult(
        returncode=proc.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
