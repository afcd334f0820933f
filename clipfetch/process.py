"""
Bounded subprocess execution for the external tools (yt-dlp, curl).

Every process gets a wall-clock timeout and is killed when it expires.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    spawn_error: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.spawn_error


ProcessRunner = Callable[[Sequence[str], float], Awaitable[ProcessResult]]


async def run_process(cmd: Sequence[str], timeout: float) -> ProcessResult:
    """Run cmd, collecting stdout/stderr, killing it after timeout seconds."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (OSError, ValueError) as e:
        # ValueError: an argument the OS cannot pass, e.g. an embedded NUL
        logger.error(f"❌ Could not start {cmd[0]}: {e}")
        return ProcessResult(returncode=-1, spawn_error=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"⏱️ {cmd[0]} exceeded {timeout:.0f}s, killing pid {proc.pid}")
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        return ProcessResult(returncode=-1, timed_out=True)

    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
