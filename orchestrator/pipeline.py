"""
Orchestrator - Deployment Pipeline.

============================================================
RESPONSIBILITY
============================================================
Runs bootstrap -> proxy -> storage -> registry -> registry
health in strict order, as a validated state machine.

- Execute stages in correct order
- Short-circuit on first failure
- Tear down per TeardownPolicy on failure or cancellation
- Publish the instance only on READY
- Track execution timing

============================================================
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from cluster.bootstrapper import ClusterBootstrapper, Spawner
from cluster.instance import InstanceManager, LocalInstance
from core.clock import ClockFactory, ClockProtocol
from core.constants import HEALTH_READY_TOKEN
from core.exceptions import (
    ClusterException,
    ErrorClassification,
    PipelineCancelledError,
    PipelineError,
    StateTransitionError,
    classify_exception,
)
from core.state_manager import StateManager
from deployment.deployer import JobDeployer
from deployment.jobs import JobRole, default_jobs
from deployment.manifest import load_manifest
from deployment.models import JobDescriptor
from deployment.status import JobStatusSource, create_status_source
from polling.poller import ReadinessPoller
from polling.probes import HttpProbe, Probe
from shell.runner import CommandRunner, ShellCommandRunner
from .models import (
    PIPELINE_TRANSITIONS,
    OrchestratorConfig,
    PipelineResult,
    PipelineStage,
    PipelineState,
    StageResult,
)


# ============================================================
# STAGE HANDLER TYPE
# ============================================================

StageHandler = Callable[[], Awaitable[Dict[str, Any]]]

STAGE_JOB_ROLES: Dict[PipelineStage, JobRole] = {
    PipelineStage.DEPLOY_PROXY: JobRole.PROXY,
    PipelineStage.DEPLOY_STORAGE: JobRole.STORAGE,
    PipelineStage.DEPLOY_REGISTRY: JobRole.REGISTRY,
}


# ============================================================
# STAGE EXECUTOR
# ============================================================

class StageExecutor:
    """
    Executes a single stage with timing and error handling.

    Exceptions never escape: every failure becomes a failed
    StageResult naming the stage and the reason.
    """

    def __init__(
        self,
        stage: PipelineStage,
        handler: StageHandler,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize stage executor.

        Args:
            stage: The stage to execute
            handler: Async function to execute
            timeout_seconds: Hard ceiling (None: rely on poll budgets)
        """
        self.stage = stage
        self.handler = handler
        self.timeout_seconds = timeout_seconds
        self._logger = logging.getLogger(__name__)

    async def execute(self) -> StageResult:
        """
        Execute the stage.

        Returns:
            StageResult with execution details
        """
        clock = ClockFactory.get_clock()
        started_at = clock.now()

        self._logger.info(
            f"Stage [{self.stage.order:02d}] START: {self.stage.description}"
        )

        try:
            context = await asyncio.wait_for(
                self.handler(),
                timeout=self.timeout_seconds,
            )

            completed_at = clock.now()
            duration = (completed_at - started_at).total_seconds()

            self._logger.info(
                f"Stage [{self.stage.order:02d}] COMPLETE: {self.stage.description} "
                f"({duration:.2f}s)"
            )

            return StageResult(
                stage=self.stage,
                success=True,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                context=context or {},
            )

        except asyncio.TimeoutError:
            completed_at = clock.now()
            duration = (completed_at - started_at).total_seconds()

            self._logger.error(
                f"Stage [{self.stage.order:02d}] TIMEOUT: {self.stage.description} "
                f"(>{self.timeout_seconds}s)"
            )

            return StageResult(
                stage=self.stage,
                success=False,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                error=f"Stage timeout after {self.timeout_seconds}s",
                error_type="TimeoutError",
                recoverable=True,
            )

        except ClusterException as e:
            completed_at = clock.now()
            duration = (completed_at - started_at).total_seconds()

            self._logger.error(
                f"Stage [{self.stage.order:02d}] FAILED: {self.stage.description} "
                f"- {e.to_log_format()}"
            )

            return StageResult(
                stage=self.stage,
                success=False,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                error=e.message,
                error_type=type(e).__name__,
                recoverable=e.is_recoverable,
                context=e.context,
            )

        except Exception as e:
            completed_at = clock.now()
            duration = (completed_at - started_at).total_seconds()

            classification = classify_exception(e)

            self._logger.error(
                f"Stage [{self.stage.order:02d}] ERROR: {self.stage.description} "
                f"- {type(e).__name__}: {e}",
                exc_info=True,
            )

            return StageResult(
                stage=self.stage,
                success=False,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                error=str(e),
                error_type=type(e).__name__,
                recoverable=classification != ErrorClassification.NON_RECOVERABLE,
            )


# ============================================================
# DEPLOYMENT PIPELINE
# ============================================================

class DeploymentPipeline:
    """
    One bootstrap-and-deploy run.

    Features:
    - Strict ordering enforcement
    - Failure short-circuit with policy-driven teardown
    - Cancellation checked before every stage and on every poll
    - Instance published only once everything is ready
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        instance_manager: InstanceManager,
        bootstrapper: ClusterBootstrapper,
        deployer: JobDeployer,
        jobs: Dict[JobRole, JobDescriptor],
        health_probe: Probe,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize pipeline.

        Args:
            config: Orchestrator configuration
            instance_manager: Owner of the active-instance slot
            bootstrapper: Starts the agents
            deployer: Deploys one job
            jobs: Job per deployment role
            health_probe: Registry health probe
            clock: Clock for the health poll
        """
        self.config = config
        self._manager = instance_manager
        self._bootstrapper = bootstrapper
        self._deployer = deployer
        self._jobs = jobs
        self._health_probe = health_probe
        self._clock = clock
        self._logger = logging.getLogger(__name__)

        self._state = StateManager(PIPELINE_TRANSITIONS, PipelineState.IDLE, name="pipeline")
        self._cancel_event = asyncio.Event()
        self.instance: Optional[LocalInstance] = None
        self.result: Optional[PipelineResult] = None

    @property
    def state(self) -> PipelineState:
        return self._state.state

    @property
    def state_manager(self) -> StateManager:
        return self._state

    @property
    def stages(self) -> List[PipelineStage]:
        return PipelineStage.get_ordered_stages()

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    def cancel(self) -> None:
        """Request cancellation; the run tears down at the next check."""
        if not self._cancel_event.is_set():
            self._logger.warning("Pipeline cancellation requested")
            self._cancel_event.set()

    def _generate_run_id(self) -> str:
        """Generate a unique run ID."""
        return f"run_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"

    # --------------------------------------------------------
    # Stage handlers
    # --------------------------------------------------------

    def _handler_for(self, stage: PipelineStage, instance: LocalInstance) -> StageHandler:
        if stage == PipelineStage.BOOTSTRAP:
            return lambda: self._run_bootstrap(instance)
        if stage == PipelineStage.AWAIT_REGISTRY_HEALTH:
            return self._run_registry_health
        role = STAGE_JOB_ROLES[stage]
        return lambda: self._run_deploy(stage, self._jobs[role])

    async def _run_bootstrap(self, instance: LocalInstance) -> Dict[str, Any]:
        poll = await self._bootstrapper.bootstrap(instance, cancel_event=self._cancel_event)
        return {
            "membership_attempts": poll.attempts,
            "discovery_pid": instance.discovery.pid if instance.discovery else None,
            "scheduler_pid": instance.scheduler.pid if instance.scheduler else None,
        }

    async def _run_deploy(self, stage: PipelineStage, job: JobDescriptor) -> Dict[str, Any]:
        result = await self._deployer.deploy(job, cancel_event=self._cancel_event)
        if result.success:
            return result.to_dict()

        error = result.error
        if isinstance(error, ClusterException):
            error.context.setdefault("job", job.name)
            error.context["failure"] = result.failure.value if result.failure else None
            raise error
        raise PipelineError(
            message=f"{job.name} deployment failed: {result.reason}",
            stage=stage.stage_id,
            context=result.to_dict(),
        )

    async def _run_registry_health(self) -> Dict[str, Any]:
        poller = ReadinessPoller(self.config.external_health, clock=self._clock)
        poll = await poller.poll_or_raise(self._health_probe, cancel_event=self._cancel_event)
        return {"health_attempts": poll.attempts, "probe_errors": poll.probe_errors}

    # --------------------------------------------------------
    # Run
    # --------------------------------------------------------

    async def run(self) -> PipelineResult:
        """
        Execute the whole pipeline once.

        Returns:
            PipelineResult (stage failures are reported, not raised)

        Raises:
            InstanceAlreadyActiveError: An instance is already running
            BootstrapInProgressError: Another run holds the slot
            StateTransitionError: The pipeline was already run
        """
        if self.state != PipelineState.IDLE:
            raise StateTransitionError(
                message=f"Pipeline already ran (state {self.state.value})",
                from_state=self.state.value,
            )

        instance = await self._manager.reserve()
        self.instance = instance

        clock = ClockFactory.get_clock()
        result = PipelineResult(
            run_id=self._generate_run_id(),
            started_at=clock.now(),
            instance_id=instance.instance_id,
        )
        self.result = result

        self._logger.info(
            f"=== PIPELINE START: {result.run_id} | instance={instance.instance_id} "
            f"| stages={len(self.stages)} ==="
        )

        try:
            for stage in self.stages:
                await self._state.transition_to(stage.state, stage.description)

                if self._cancel_event.is_set():
                    stage_result = self._cancelled_result(stage, clock)
                else:
                    executor = StageExecutor(
                        stage=stage,
                        handler=self._handler_for(stage, instance),
                        timeout_seconds=self.config.stage_timeout_seconds,
                    )
                    stage_result = await executor.execute()

                result.add_stage_result(stage_result)

                if not stage_result.success:
                    await self._fail(result, stage, instance)
                    return result

            await self._state.transition_to(PipelineState.READY, "all stages complete")
            await self._manager.publish(instance)

        except asyncio.CancelledError:
            self._logger.warning(f"=== PIPELINE INTERRUPTED: {result.run_id} ===")
            result.cancelled = True
            await self._fail(result, result.failed_stage, instance, interrupted=True)
            raise

        result.completed_at = clock.now()
        result.success = True
        result.final_state = self.state

        self._logger.info(
            f"=== PIPELINE COMPLETE: {result.run_id} | "
            f"duration={result.duration_seconds:.2f}s | "
            f"stages_completed={result.stages_completed} ==="
        )
        return result

    def _cancelled_result(self, stage: PipelineStage, clock: ClockProtocol) -> StageResult:
        now = clock.now()
        error = PipelineCancelledError(message=f"Cancelled before {stage.stage_id}")
        return StageResult(
            stage=stage,
            success=False,
            started_at=now,
            completed_at=now,
            duration_seconds=0.0,
            error=error.message,
            error_type=type(error).__name__,
            recoverable=False,
        )

    async def _fail(
        self,
        result: PipelineResult,
        stage: Optional[PipelineStage],
        instance: LocalInstance,
        interrupted: bool = False,
    ) -> None:
        stage_id = stage.stage_id if stage else "unknown"
        if result.error_type == PipelineCancelledError.__name__:
            result.cancelled = True

        if self._state.can_transition_to(PipelineState.FAILED):
            await self._state.transition_to(
                PipelineState.FAILED,
                f"{stage_id}: {result.error}" if not interrupted else "interrupted",
            )

        if interrupted or self.config.teardown_policy.applies_to(stage):
            stops = await instance.stop(self.config.cluster.termination, reason=f"{stage_id} failed")
            result.teardown = {role.value: outcome.value for role, outcome in stops.items()}
        else:
            self._logger.warning(
                f"Teardown policy '{self.config.teardown_policy.value}' leaves processes running: "
                f"{instance.to_dict()}"
            )

        await self._manager.release(instance)

        result.completed_at = ClockFactory.get_clock().now()
        result.success = False
        result.final_state = self.state

        self._logger.error(
            f"=== PIPELINE ABORTED: {result.run_id} | "
            f"failed_stage={stage_id} | error={result.error} ==="
        )

    # --------------------------------------------------------
    # Stop
    # --------------------------------------------------------

    async def stop(self) -> Dict[str, str]:
        """
        Stop whatever this run left running.

        READY: stops the published instance through the manager.
        FAILED: stops processes a teardown policy left behind.
        """
        if self.state == PipelineState.READY:
            stops = await self._manager.stop_active()
        elif self.state == PipelineState.FAILED and self.instance is not None:
            stops = await self.instance.stop(self.config.cluster.termination, reason="stop requested")
        else:
            return {}

        await self._state.transition_to(PipelineState.STOPPED, "stop requested")
        return {role.value: outcome.value for role, outcome in stops.items()}


# ============================================================
# PIPELINE BUILDER
# ============================================================

class PipelineBuilder:
    """
    Builder for constructing deployment pipelines.

    Every collaborator has a production default derived from the
    configuration; tests substitute fakes.
    """

    def __init__(self, config: OrchestratorConfig):
        """
        Initialize builder.

        Args:
            config: Orchestrator configuration
        """
        self._config = config
        self._runner: Optional[CommandRunner] = None
        self._spawner: Optional[Spawner] = None
        self._clock: Optional[ClockProtocol] = None
        self._manager: Optional[InstanceManager] = None
        self._status_source: Optional[JobStatusSource] = None
        self._jobs: Optional[Dict[JobRole, JobDescriptor]] = None
        self._health_probe: Optional[Probe] = None

    def with_runner(self, runner: CommandRunner) -> "PipelineBuilder":
        """Set command runner."""
        self._runner = runner
        return self

    def with_spawner(self, spawner: Spawner) -> "PipelineBuilder":
        """Set process spawner."""
        self._spawner = spawner
        return self

    def with_clock(self, clock: ClockProtocol) -> "PipelineBuilder":
        """Set clock for every poll."""
        self._clock = clock
        return self

    def with_instance_manager(self, manager: InstanceManager) -> "PipelineBuilder":
        """Share an instance manager across runs."""
        self._manager = manager
        return self

    def with_status_source(self, source: JobStatusSource) -> "PipelineBuilder":
        """Set job status source."""
        self._status_source = source
        return self

    def with_jobs(self, jobs: Dict[JobRole, JobDescriptor]) -> "PipelineBuilder":
        """Set jobs per deployment role."""
        self._jobs = jobs
        return self

    def with_health_probe(self, probe: Probe) -> "PipelineBuilder":
        """Set registry health probe."""
        self._health_probe = probe
        return self

    def _default_jobs(self) -> Dict[JobRole, JobDescriptor]:
        config = self._config
        job_dir = config.cluster.job_dir
        if config.jobs_file:
            manifest = load_manifest(config.jobs_file)
            return manifest.descriptors(job_dir, config.resolved_os, config.resolved_arch)
        return default_jobs(job_dir, config.resolved_os, config.resolved_arch)

    def build(self) -> DeploymentPipeline:
        """
        Build the pipeline.

        Raises:
            ConfigurationError: Job manifest unreadable or invalid
        """
        config = self._config
        runner = self._runner or ShellCommandRunner()

        status_source = self._status_source or create_status_source(
            config.status_source.value,
            runner,
            scheduler_binary=config.cluster.scheduler_binary,
            api_url=config.scheduler_api_url,
        )

        return DeploymentPipeline(
            config=config,
            instance_manager=self._manager or InstanceManager(config.cluster.termination),
            bootstrapper=ClusterBootstrapper(
                config.cluster,
                runner,
                spawner=self._spawner,
                clock=self._clock,
            ),
            deployer=JobDeployer(
                runner,
                status_source,
                policy=config.job_health,
                scheduler_binary=config.cluster.scheduler_binary,
                clock=self._clock,
            ),
            jobs=self._jobs or self._default_jobs(),
            health_probe=self._health_probe or HttpProbe(
                config.health_url,
                HEALTH_READY_TOKEN,
                name="registry health",
            ),
            clock=self._clock,
        )


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "StageHandler",
    "STAGE_JOB_ROLES",
    "StageExecutor",
    "DeploymentPipeline",
    "PipelineBuilder",
]
