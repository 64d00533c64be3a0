"""Subprocess runner for external build and test commands.

Runs a command with a bounded wait, captures stdout and stderr, and reports
every outcome, including a process that could not be started at all, as a
``SubprocessResult`` rather than an exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

START_FAILURE_RETURNCODE = -1
"""Exit code reported when the process could not be started or was killed."""


@dataclass
class SubprocessResult:
    """Result of subprocess execution."""

    returncode: int
    """Exit code of the process, or ``START_FAILURE_RETURNCODE``."""

    stdout: str
    """Standard output captured from the process."""

    stderr: str
    """Standard error captured from the process, or the start failure message."""

    timed_out: bool = False
    """True if the process was terminated due to timeout."""

    not_found: bool = False
    """True if the process could not be started."""

    duration_ms: float = 0.0
    """Actual duration of execution in milliseconds."""

    @property
    def success(self) -> bool:
        """True if the process exited with code 0."""
        return self.returncode == 0 and not self.timed_out and not self.not_found


def _start_failure(message: str, *, started: float) -> SubprocessResult:
    return SubprocessResult(
        returncode=START_FAILURE_RETURNCODE,
        stdout="",
        stderr=message,
        not_found=True,
        duration_ms=(time.perf_counter() - started) * 1000,
    )


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        return  # already exited
    await process.wait()


async def run_subprocess(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float = 600.0,
    env: dict[str, str] | None = None,
) -> SubprocessResult:
    """Execute a command in a subprocess with timeout and error handling.

    Args:
        command: Command and arguments as a sequence (e.g. ``['dotnet', 'build']``).
        cwd: Working directory for the subprocess. Defaults to current directory.
        timeout: Maximum seconds to wait for completion.
        env: Environment for the child. ``None`` inherits the current one.

    Returns:
        SubprocessResult with exit code, output, and metadata. A command that
        cannot be started yields ``returncode == -1`` and ``not_found``; a
        command that exceeds *timeout* is killed and yields ``timed_out``.

    Raises:
        ValueError: If command is empty or timeout is invalid.
    """
    if not command:
        raise ValueError("Command cannot be empty")

    if timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")

    work_dir = cwd.resolve() if cwd else Path.cwd()
    start_time = time.perf_counter()
    display = " ".join(str(c) for c in command)

    if not work_dir.is_dir():
        logger.error("Working directory does not exist: %s", work_dir)
        return _start_failure(f"Working directory does not exist: {work_dir}", started=start_time)

    logger.debug("Running subprocess: %s (cwd=%s, timeout=%s)", display, work_dir, timeout)

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=work_dir,
            env=env,
        )
    except FileNotFoundError as exc:
        logger.error("Command not found: %s", command[0])
        return _start_failure(f"Command not found: {command[0]} ({exc})", started=start_time)
    except OSError as exc:
        logger.error("Failed to start %s: %s", command[0], exc)
        return _start_failure(f"Failed to start {command[0]}: {exc}", started=start_time)

    timed_out = False
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except TimeoutError:
        logger.warning("Subprocess timed out after %s seconds: %s", timeout, display)
        timed_out = True
        await _kill(process)
        stdout_bytes = b""
        stderr_bytes = b"Process timed out and was killed"
    except asyncio.CancelledError:
        # Host shutdown: do not leave the child running behind us.
        await _kill(process)
        raise

    duration_ms = (time.perf_counter() - start_time) * 1000
    returncode = START_FAILURE_RETURNCODE if timed_out else process.returncode
    if returncode is None:
        returncode = START_FAILURE_RETURNCODE

    result = SubprocessResult(
        returncode=returncode,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
        timed_out=timed_out,
        duration_ms=duration_ms,
    )

    logger.debug(
        "Subprocess completed: returncode=%d, duration=%.2fms, success=%s",
        returncode,
        duration_ms,
        result.success,
    )
    return result


class SubprocessRunner:
    """Thin object wrapper around ``run_subprocess`` so callers can inject fakes."""

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout: float,
    ) -> SubprocessResult:
        """Run *command* in *cwd*, waiting at most *timeout* seconds."""
        return await run_subprocess(command, cwd=cwd, timeout=timeout)
