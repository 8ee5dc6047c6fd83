"""
Cluster - Process Handle.

============================================================
PURPOSE
============================================================
Ownership of one long-lived child process (an agent).

INVARIANTS:
- Liveness is monotonic: once not alive, never alive again
- Terminating a dead or never-live handle is a no-op
  (NO_INSTANCE_RUNNING), never an error
- Signal accepted is not process exited: after a signal the
  handle waits, with backoff, for an observed exit

============================================================
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from core.clock import ClockProtocol
from core.exceptions import DispatchError
from polling.models import PollOutcome, PollStatus
from polling.poller import ReadinessPoller
from polling.probes import Probe
from .models import ProcessRole, StopResult, TerminationConfig


logger = logging.getLogger(__name__)


# ============================================================
# EXIT PROBE
# ============================================================

class ProcessExitProbe(Probe):
    """READY once the process has exited."""

    def __init__(self, handle: "ProcessHandle"):
        self._handle = handle
        self.name = f"{handle.role.value} exit (pid {handle.pid})"

    async def check(self) -> PollOutcome:
        if self._handle.has_exited:
            return PollOutcome.READY
        return PollOutcome.NOT_READY


# ============================================================
# PROCESS HANDLE
# ============================================================

class ProcessHandle:
    """
    One spawned agent process.

    Output is drained to the logger at DEBUG so that a chatty agent
    never blocks on a full pipe.
    """

    def __init__(
        self,
        role: ProcessRole,
        process: asyncio.subprocess.Process,
        argv: Sequence[str],
        clock: Optional[ClockProtocol] = None,
    ):
        self.role = role
        self.argv = list(argv)
        self._process = process
        self._clock = clock
        self._dead = False
        self._drain_tasks: List[asyncio.Task] = []
        self.signals_sent: List[int] = []

    # --------------------------------------------------------
    # Spawn
    # --------------------------------------------------------

    @classmethod
    async def spawn(
        cls,
        role: ProcessRole,
        command: str,
        args: Sequence[str],
        clock: Optional[ClockProtocol] = None,
    ) -> "ProcessHandle":
        """
        Start a child process.

        Args:
            role: Role of the process
            command: Executable
            args: Arguments

        Returns:
            Live ProcessHandle

        Raises:
            DispatchError: If the OS refused to start it
        """
        argv = [command, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DispatchError(
                message=f"Could not start {role.value} agent '{command}': {e}",
                command=" ".join(argv),
                stage=role.value,
                cause=e,
            )

        handle = cls(role, process, argv, clock=clock)
        handle._start_draining()
        logger.info(f"{role.value} agent started (PID: {process.pid}): {' '.join(argv)}")
        return handle

    def _start_draining(self) -> None:
        for stream, label in ((self._process.stdout, "out"), (self._process.stderr, "err")):
            if stream is not None:
                self._drain_tasks.append(asyncio.create_task(self._drain(stream, label)))

    async def _drain(self, stream: asyncio.StreamReader, label: str) -> None:
        async for line in stream:
            logger.debug(f"[{self.role.value}:{label}] {line.decode(errors='replace').rstrip()}")

    # --------------------------------------------------------
    # Liveness
    # --------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def exit_code(self) -> Optional[int]:
        """Exit status, None while running."""
        return self._process.returncode

    @property
    def has_exited(self) -> bool:
        return self._process.returncode is not None

    @property
    def is_alive(self) -> bool:
        """True iff not exited and not confirmed dead after a signal."""
        if self._dead:
            return False
        if self.has_exited:
            self._dead = True
            return False
        return True

    # --------------------------------------------------------
    # Termination
    # --------------------------------------------------------

    def _send(self, sig: int) -> bool:
        """Send one signal; True iff the OS accepted it for delivery."""
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            return False
        except OSError as e:
            logger.warning(f"{self.role.value}: signal {sig} refused: {e}")
            return False
        self.signals_sent.append(sig)
        return True

    async def _wait_for_exit(self, config: TerminationConfig) -> bool:
        poller = ReadinessPoller(config.wait, clock=self._clock)
        result = await poller.poll(ProcessExitProbe(self))
        return result.status == PollStatus.READY

    async def terminate(self, config: Optional[TerminationConfig] = None) -> StopResult:
        """
        Stop the process with the first signal the OS accepts.

        Refused signals fall through to the next one in the ladder.
        The first accepted signal starts a liveness wait and, by
        default, its outcome is final. With escalate_on_timeout the
        remaining signals each get their own wait before the stop is
        reported as failed.
        """
        config = config or TerminationConfig()

        if not self.is_alive:
            return StopResult.NO_INSTANCE_RUNNING

        ladder = list(config.signals)
        while ladder:
            sig = ladder.pop(0)
            if not self._send(sig):
                if self.has_exited:
                    break
                continue

            logger.info(f"Stopping {self.role.value} agent (PID: {self.pid}) with signal {sig}")
            if await self._wait_for_exit(config):
                break
            if not config.escalate_on_timeout:
                break
            logger.warning(f"{self.role.value} agent outlived signal {sig}, escalating")

        if self.has_exited:
            self._dead = True
            await self._stop_draining()
            logger.info(f"{self.role.value} agent stopped (exit {self.exit_code})")
            return StopResult.STOPPED

        logger.error(f"{self.role.value} agent (PID: {self.pid}) could not be stopped")
        return StopResult.STOP_FAILED

    async def _stop_draining(self) -> None:
        for task in self._drain_tasks:
            if not task.done():
                task.cancel()
        if self._drain_tasks:
            await asyncio.gather(*self._drain_tasks, return_exceptions=True)
        self._drain_tasks = []

    def __repr__(self) -> str:
        return f"ProcessHandle(role={self.role.value}, pid={self.pid}, alive={self.is_alive})"


__all__ = [
    "ProcessExitProbe",
    "ProcessHandle",
]
