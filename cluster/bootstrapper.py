"""
Cluster - Bootstrapper.

============================================================
RESPONSIBILITY
============================================================
Brings the local cluster from nothing to "scheduler sees the
discovery agent as alive".

FLOW:
1. (optional) OS release check
2. Prerequisites: both agent binaries answer --version
3. Spawn discovery agent
4. Spawn scheduler agent pointed at the discovery agent
5. Poll scheduler membership until "alive" (bounded)

Spawned handles are recorded on the LocalInstance as soon as
they exist, so the caller can always tear down what was
started. The bootstrapper itself never stops processes.

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from core.clock import ClockProtocol
from core.exceptions import StartupError
from polling.models import PollOutcome, PollResult
from polling.poller import ReadinessPoller
from polling.probes import CommandProbe
from shell.runner import CommandRunner
from .instance import LocalInstance
from .models import ClusterConfig, ProcessRole
from .prerequisites import check_os_release, check_prerequisites
from .process_handle import ProcessHandle


Spawner = Callable[..., Awaitable[ProcessHandle]]


# ============================================================
# MEMBERSHIP PROBE
# ============================================================

class MembershipProbe(CommandProbe):
    """
    Scheduler membership probe that fails fast on a dead agent.

    Waiting for "alive" is pointless once either agent process
    has exited, so that case ends the poll with a StartupError.
    """

    def __init__(self, runner: CommandRunner, config: ClusterConfig, instance: LocalInstance):
        super().__init__(
            runner,
            config.membership_command(),
            config.membership_ready_token,
            name="scheduler membership",
        )
        self._instance = instance

    async def check(self) -> PollOutcome:
        for handle in self._instance.handles():
            if not handle.is_alive:
                raise StartupError(
                    message=(
                        f"{handle.role.value} agent exited before the cluster "
                        f"was ready (exit {handle.exit_code})"
                    ),
                    stage="bootstrap",
                    context={"role": handle.role.value, "pid": handle.pid},
                )
        return await super().check()


# ============================================================
# BOOTSTRAPPER
# ============================================================

class ClusterBootstrapper:
    """
    Starts the discovery and scheduler agents.

    Example:
        bootstrapper = ClusterBootstrapper(ClusterConfig(), ShellCommandRunner())
        instance = await instance_manager.reserve()
        await bootstrapper.bootstrap(instance)
    """

    def __init__(
        self,
        config: ClusterConfig,
        runner: CommandRunner,
        spawner: Optional[Spawner] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize bootstrapper.

        Args:
            config: Cluster launch configuration
            runner: Command runner for prerequisite and membership checks
            spawner: Process factory (default: ProcessHandle.spawn)
            clock: Clock for the membership poll
        """
        self.config = config
        self._runner = runner
        self._spawner = spawner or ProcessHandle.spawn
        self._clock = clock
        self._logger = logging.getLogger(__name__)

    async def check(self) -> None:
        """
        Run the pre-spawn checks only.

        Raises:
            UnsupportedPlatformError: OS check enabled and failed
            MissingDependencyError: An agent binary is missing
        """
        if self.config.check_os_release:
            release = await check_os_release(self._runner)
            self._logger.info(f"OS release {release} supported")

        await check_prerequisites(
            self._runner,
            self.config.discovery_binary,
            self.config.scheduler_binary,
        )

    async def bootstrap(
        self,
        instance: LocalInstance,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """
        Start both agents and wait for scheduler membership.

        Args:
            instance: Reserved instance that will own the handles
            cancel_event: asyncio.Event checked on every poll

        Returns:
            PollResult of the membership wait

        Raises:
            MissingDependencyError: Before anything is spawned
            DispatchError: An agent could not be started
            StartupError: An agent exited during the wait
            PollTimeoutError: Membership never showed "alive"
            PipelineCancelledError: Cancelled during the wait
        """
        config = self.config

        await self.check()
        await instance.mark_starting()

        instance.set_discovery(
            await self._spawn(ProcessRole.DISCOVERY, config.discovery_binary, config.discovery_args())
        )
        instance.set_scheduler(
            await self._spawn(ProcessRole.SCHEDULER, config.scheduler_binary, config.scheduler_args())
        )

        poller = ReadinessPoller(config.readiness, clock=self._clock)
        result = await poller.poll_or_raise(
            MembershipProbe(self._runner, config, instance),
            cancel_event=cancel_event,
        )

        await instance.mark_running()
        self._logger.info(
            f"Cluster running | discovery PID {instance.discovery.pid} "
            f"| scheduler PID {instance.scheduler.pid}"
        )
        return result

    async def _spawn(self, role: ProcessRole, command: str, args: Sequence[str]) -> ProcessHandle:
        return await self._spawner(role, command, args, clock=self._clock)


__all__ = [
    "MembershipProbe",
    "ClusterBootstrapper",
]
