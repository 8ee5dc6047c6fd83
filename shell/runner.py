"""
Shell - Command Runner.

============================================================
PURPOSE
============================================================
The "run command, get exit code + streams" capability that
every probe and job submission is built on.

DESIGN PRINCIPLES:
- A command that cannot be started is a DispatchError
- A command that runs is a CommandResult, whatever its exit code
- Interchangeable with a scripted runner in tests

============================================================
"""

import asyncio
import logging
import os
import shlex
import shutil
import signal
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from core.exceptions import DispatchError


logger = logging.getLogger(__name__)


# ============================================================
# COMMAND RESULT
# ============================================================

@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command that ran to completion."""

    command: str
    """Command line as executed."""

    exit_code: int
    """Process exit code."""

    stdout: str = ""
    """Captured standard output."""

    stderr: str = ""
    """Captured standard error."""

    duration_seconds: float = 0.0
    """Wall time spent running."""

    @property
    def succeeded(self) -> bool:
        """Check if exit code is zero."""
        return self.exit_code == 0


# ============================================================
# RUNNER INTERFACE
# ============================================================

class CommandRunner(ABC):
    """Abstract interface for running shell commands."""

    @abstractmethod
    async def run(self, command: str) -> CommandResult:
        """
        Run a command to completion.

        Args:
            command: Full command line

        Returns:
            CommandResult

        Raises:
            DispatchError: If the command could not be invoked
        """
        pass

    async def is_program_present(self, program: str) -> bool:
        """
        Check that a program answers `--version` with exit 0.

        Dispatch failures count as absent.
        """
        try:
            result = await self.run(f"{shlex.quote(program)} --version")
        except DispatchError:
            return False
        return result.succeeded


# ============================================================
# SHELL RUNNER (PRODUCTION)
# ============================================================

class ShellCommandRunner(CommandRunner):
    """
    Runs commands through the system shell with asyncio.

    Output is decoded as UTF-8 with replacement so that odd bytes
    in agent output never break status parsing.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = 60.0,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        """
        Initialize runner.

        Args:
            timeout_seconds: Per-command timeout (None for no limit)
            env: Environment for child processes (None inherits)
            cwd: Working directory for child processes
        """
        self._timeout = timeout_seconds
        self._env = env
        self._cwd = cwd

    async def run(self, command: str) -> CommandResult:
        started = time.monotonic()
        logger.debug(f"exec: {command}")

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                cwd=self._cwd,
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            raise DispatchError(
                message=f"Could not run '{command}': {e}",
                command=command,
                cause=e,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise DispatchError(
                message=f"'{command}' did not finish within {self._timeout}s",
                command=command,
                cause=e,
            )
        except asyncio.CancelledError:
            logger.debug(f"exec cancelled, killing PID {process.pid}: {command}")
            await self._kill(process)
            raise

        result = CommandResult(
            command=command,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_seconds=time.monotonic() - started,
        )

        logger.debug(
            f"exec done: {command} | code={result.exit_code} "
            f"| {result.duration_seconds:.2f}s"
        )
        return result

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        """Kill the shell and everything it started, then reap it."""
        if process.returncode is None:
            try:
                if sys.platform == "win32":
                    process.kill()
                else:
                    os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        await process.wait()

    async def is_program_present(self, program: str) -> bool:
        if shutil.which(program) is None:
            return False
        return await super().is_program_present(program)


def join_command(args: Sequence[str]) -> str:
    """Quote and join arguments into one shell command line."""
    return " ".join(shlex.quote(str(a)) for a in args)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "ShellCommandRunner",
    "join_command",
]
