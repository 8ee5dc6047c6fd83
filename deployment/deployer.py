"""
Deployment - Job Deployer.

============================================================
RESPONSIBILITY
============================================================
Deploys one job and waits for it to report healthy.

FLOW:
1. Submit detached: nomad job run -detach -var=k=v ... <template>
2. Poll job status at a fixed interval
3. Succeed on the first healthy status

FAILURES (returned, never raised):
- DISPATCH: scheduler could not be invoked
- SUBMIT_REJECTED: submission exited nonzero (carries stderr)
- STATUS_UNAVAILABLE: more than N consecutive status failures
- HEALTH_EXHAUSTED: not healthy within max duration
- CANCELLED: cancel event set while waiting

============================================================
"""

import asyncio
import logging
from typing import Optional

from core.clock import ClockFactory, ClockProtocol
from core.constants import MAX_CONSECUTIVE_STATUS_FAILURES, SCHEDULER_BINARY
from core.exceptions import (
    ClusterException,
    CommandError,
    DispatchError,
    HealthCheckExhaustedError,
    NonZeroExitError,
    PipelineCancelledError,
    StatusQueryError,
)
from polling.models import PollOutcome, RetryPolicy
from polling.poller import ReadinessPoller
from polling.probes import Probe
from shell.runner import CommandRunner, join_command
from .models import DeploymentFailure, DeploymentResult, JobDescriptor
from .status import JobStatusSource, StatusSnapshot


# ============================================================
# JOB HEALTH PROBE
# ============================================================

class JobHealthProbe(Probe):
    """
    Health probe for one job with a consecutive-failure counter.

    A failed status query is a tolerated PROBE_ERROR until more
    than `max_consecutive_failures` happen in a row; any
    successful query resets the streak.
    """

    def __init__(
        self,
        source: JobStatusSource,
        job: str,
        max_consecutive_failures: int = MAX_CONSECUTIVE_STATUS_FAILURES,
    ):
        self._source = source
        self.job = job
        self.max_consecutive_failures = max_consecutive_failures
        self.consecutive_failures = 0
        self.last_snapshot: Optional[StatusSnapshot] = None
        self.name = f"{job} health"
        self._logger = logging.getLogger(__name__)

    async def check(self) -> PollOutcome:
        try:
            snapshot = await self._source.query(self.job)
        except CommandError as e:
            self.consecutive_failures += 1
            self._logger.debug(
                f"[{self.name}] status query failed "
                f"({self.consecutive_failures} in a row): {e.message}"
            )
            if self.consecutive_failures > self.max_consecutive_failures:
                raise StatusQueryError(
                    message=f"Repeatedly could not query status of {self.job}",
                    stage=self.job,
                    failures=self.consecutive_failures,
                    cause=e,
                )
            return PollOutcome.PROBE_ERROR

        self.consecutive_failures = 0
        self.last_snapshot = snapshot
        if snapshot.healthy:
            return PollOutcome.READY
        self._logger.debug(f"[{self.name}] not healthy yet: {snapshot.summary()}")
        return PollOutcome.NOT_READY


# ============================================================
# JOB DEPLOYER
# ============================================================

class JobDeployer:
    """
    Submits jobs to the scheduler and waits for health.

    Example:
        deployer = JobDeployer(runner, CliStatusSource(runner))
        result = await deployer.deploy(descriptor)
        if not result.success:
            print(result.reason)
    """

    def __init__(
        self,
        runner: CommandRunner,
        status_source: JobStatusSource,
        policy: Optional[RetryPolicy] = None,
        scheduler_binary: str = SCHEDULER_BINARY,
        max_consecutive_failures: int = MAX_CONSECUTIVE_STATUS_FAILURES,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize deployer.

        Args:
            runner: Command runner for submission
            status_source: Where job health comes from
            policy: Health poll schedule (default: every 1s, at most 300s)
            scheduler_binary: Scheduler CLI
            max_consecutive_failures: Status failures tolerated in a row
            clock: Clock for polling
        """
        self._runner = runner
        self._status = status_source
        self.policy = policy or RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=300.0)
        self._binary = scheduler_binary
        self.max_consecutive_failures = max_consecutive_failures
        self._clock = clock
        self._logger = logging.getLogger(__name__)

    def submit_command(self, descriptor: JobDescriptor) -> str:
        return join_command([
            self._binary, "job", "run", "-detach",
            *descriptor.var_args(),
            str(descriptor.template_path),
        ])

    async def submit(self, descriptor: JobDescriptor) -> None:
        """
        Submit a job in detached mode.

        Raises:
            DispatchError: Scheduler could not be invoked
            NonZeroExitError: Scheduler rejected the job
        """
        command = self.submit_command(descriptor)
        self._logger.info(f"Submitting job {descriptor.name}: {command}")

        result = await self._runner.run(command)
        if not result.succeeded:
            raise NonZeroExitError(
                message=f"Scheduler rejected job {descriptor.name} (exit {result.exit_code})",
                exit_code=result.exit_code,
                stderr=result.stderr,
                command=command,
                stage=descriptor.name,
            )

    async def deploy(
        self,
        descriptor: JobDescriptor,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DeploymentResult:
        """
        Submit a job and wait until it is healthy.

        Args:
            descriptor: Job to deploy
            cancel_event: Set to abandon the wait

        Returns:
            DeploymentResult (failures are returned, not raised)
        """
        clock = self._clock or ClockFactory.get_clock()
        started = clock.monotonic()

        try:
            await self.submit(descriptor)
        except DispatchError as e:
            self._logger.error(f"Job {descriptor.name}: could not invoke scheduler: {e.message}")
            return DeploymentResult.failed(descriptor.name, DeploymentFailure.DISPATCH, e)
        except NonZeroExitError as e:
            self._logger.error(f"Job {descriptor.name}: {e.message}: {e.stderr.strip()}")
            return DeploymentResult.failed(descriptor.name, DeploymentFailure.SUBMIT_REJECTED, e)

        probe = JobHealthProbe(self._status, descriptor.name, self.max_consecutive_failures)
        poller = ReadinessPoller(self.policy, clock=self._clock)

        try:
            poll = await poller.poll_or_raise(
                probe,
                cancel_event=cancel_event,
                timeout_error=HealthCheckExhaustedError,
                job=descriptor.name,
            )
        except StatusQueryError as e:
            return self._failed(descriptor, DeploymentFailure.STATUS_UNAVAILABLE, e, clock, started)
        except HealthCheckExhaustedError as e:
            return self._failed(descriptor, DeploymentFailure.HEALTH_EXHAUSTED, e, clock, started)
        except PipelineCancelledError as e:
            return self._failed(descriptor, DeploymentFailure.CANCELLED, e, clock, started)
        except ClusterException as e:
            return self._failed(descriptor, DeploymentFailure.STATUS_UNAVAILABLE, e, clock, started)

        self._logger.info(f"Job {descriptor.name} healthy after {poll.attempts} status checks")
        return DeploymentResult.ok(
            descriptor.name,
            attempts=poll.attempts,
            duration_seconds=clock.monotonic() - started,
        )

    def _failed(
        self,
        descriptor: JobDescriptor,
        failure: DeploymentFailure,
        error: ClusterException,
        clock: ClockProtocol,
        started: float,
    ) -> DeploymentResult:
        self._logger.error(f"Job {descriptor.name} failed ({failure.value}): {error.message}")
        return DeploymentResult.failed(
            descriptor.name,
            failure,
            error,
            attempts=error.context.get("attempts", 0),
            duration_seconds=clock.monotonic() - started,
        )


__all__ = [
    "JobHealthProbe",
    "JobDeployer",
]
