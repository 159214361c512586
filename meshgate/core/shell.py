# meshgate/core/shell.py
"""
Async host command runner

All wg / wg-quick / ip / nginx / ping calls go through `run_command` so they
never block the event loop. Components take the runner as a constructor
argument; tests pass a fake with the same signature.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from .errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    cmd: Sequence[str],
    input: Optional[str] = None,
    timeout: float = 10,
    check: bool = True,
) -> CommandResult:
    """
    Run a command without blocking the event loop

    Args:
        cmd: Command and arguments
        input: Optional text written to stdin
        timeout: Seconds before the process is killed
        check: Raise CommandError on non-zero exit

    Returns:
        CommandResult with decoded stdout/stderr
    """
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if input is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise CommandError(list(cmd), 127, f"{cmd[0]}: command not found")

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(input=input.encode() if input is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise CommandError(list(cmd), -1, f"timed out after {timeout}s")

    result = CommandResult(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )

    if check and not result.ok:
        raise CommandError(list(cmd), result.returncode, result.stderr)

    return result
