"""
Tests for the Deployment Pipeline.

============================================================
PURPOSE
============================================================
End-to-end runs of bootstrap -> proxy -> storage -> registry ->
registry health against fake agents and a scripted scheduler.

TEST PRINCIPLES:
- Stages run strictly in order; the first failure short-circuits
- The instance is visible to stop requests only once READY
- Teardown follows the configured policy
- Cancellation and interruption always tear down

============================================================
"""

import asyncio

import pytest

from cluster.models import ProcessRole
from core.exceptions import InstanceAlreadyActiveError, StateTransitionError
from orchestrator.cli import EXIT_INTERRUPTED, EXIT_MISSING_DEPENDENCY, exit_code_for
from orchestrator.models import PipelineStage, PipelineState, TeardownPolicy
from orchestrator.pipeline import StageExecutor
from polling.models import PollOutcome
from shell.runner import CommandResult


HIPPO_SUBMIT = "nomad job run -detach -var=os=linux"


# ============================================================
# SUCCESS
# ============================================================

class TestPipelineSuccess:
    """Tests for a run where everything comes up."""

    @pytest.mark.asyncio
    async def test_reaches_ready(self, build_pipeline, instance_manager, runner, spawner):
        pipeline = build_pipeline()

        result = await pipeline.run()

        assert result.success
        assert result.final_state == PipelineState.READY
        assert result.stages_completed == 5
        assert [r.stage for r in result.stage_results] == PipelineStage.get_ordered_stages()
        assert instance_manager.active is pipeline.instance
        assert spawner.calls == [ProcessRole.DISCOVERY, ProcessRole.SCHEDULER]

    @pytest.mark.asyncio
    async def test_jobs_deployed_in_order(self, build_pipeline, runner):
        await build_pipeline().run()

        submitted = [cmd.split()[-1].rsplit("/", 1)[-1] for cmd in runner.calls_to("nomad job run")]
        assert submitted == ["traefik.nomad", "bindle.nomad", "hippo.nomad"]

    @pytest.mark.asyncio
    async def test_each_job_healthy_before_next(self, build_pipeline, runner):
        await build_pipeline().run()

        job_commands = [c for c in runner.history if c.startswith("nomad job")]
        assert job_commands == [
            job_commands[0],
            "nomad job status traefik",
            job_commands[2],
            "nomad job status bindle",
            job_commands[4],
            "nomad job status hippo",
        ]

    @pytest.mark.asyncio
    async def test_instance_not_visible_before_ready(self, build_pipeline, instance_manager, registry_probe):
        seen = []

        async def record():
            seen.append(instance_manager.active)

        registry_probe.on_check = record

        await build_pipeline().run()

        assert seen == [None]
        assert instance_manager.active is not None

    @pytest.mark.asyncio
    async def test_stop_after_ready(self, build_pipeline, instance_manager, spawner):
        pipeline = build_pipeline()
        await pipeline.run()

        stops = await pipeline.stop()

        assert stops == {"scheduler": "stopped", "discovery": "stopped"}
        assert pipeline.state == PipelineState.STOPPED
        assert instance_manager.active is None
        assert spawner.live_roles() == []

    @pytest.mark.asyncio
    async def test_pipeline_runs_once(self, build_pipeline):
        pipeline = build_pipeline()
        await pipeline.run()

        with pytest.raises(StateTransitionError):
            await pipeline.run()

    @pytest.mark.asyncio
    async def test_second_pipeline_rejected_while_active(self, build_pipeline, spawner):
        await build_pipeline().run()

        with pytest.raises(InstanceAlreadyActiveError):
            await build_pipeline().run()

        assert len(spawner.calls) == 2


# ============================================================
# FAILURES
# ============================================================

class TestPipelineFailure:
    """Tests for failed runs and teardown policies."""

    @pytest.mark.asyncio
    async def test_missing_scheduler_spawns_nothing(self, build_pipeline, runner, spawner, instance_manager):
        runner.fail("nomad --version", exit_code=127, stderr="nomad: not found")

        result = await build_pipeline().run()

        assert not result.success
        assert result.failed_stage == PipelineStage.BOOTSTRAP
        assert result.error_type == "MissingDependencyError"
        assert "Nomad" in result.error
        assert spawner.calls == []
        assert result.teardown == {}
        assert not instance_manager.is_busy
        assert exit_code_for(result, interrupted=False) == EXIT_MISSING_DEPENDENCY

    @pytest.mark.asyncio
    async def test_job_failure_tears_down(self, build_pipeline, runner, spawner, instance_manager):
        runner.fail(HIPPO_SUBMIT, exit_code=1, stderr="Error parsing job file hippo.nomad")

        result = await build_pipeline().run()

        assert result.failed_stage == PipelineStage.DEPLOY_REGISTRY
        assert result.final_state == PipelineState.FAILED
        assert result.teardown == {"scheduler": "stopped", "discovery": "stopped"}
        assert result.stage_results[-1].context["stderr"] == "Error parsing job file hippo.nomad"
        assert result.stage_results[-1].context["failure"] == "submit_rejected"
        assert spawner.live_roles() == []
        assert instance_manager.active is None
        assert not instance_manager.is_busy

    @pytest.mark.asyncio
    async def test_later_stages_skipped(self, build_pipeline, runner, registry_probe):
        runner.fail(HIPPO_SUBMIT, exit_code=1)

        result = await build_pipeline().run()

        assert len(result.stage_results) == 4
        assert registry_probe.checks == 0
        assert runner.calls_to("nomad job status hippo") == []

    @pytest.mark.asyncio
    async def test_bootstrap_only_keeps_agents_after_job_failure(
        self, config, build_pipeline, runner, spawner, instance_manager,
    ):
        config.teardown_policy = TeardownPolicy.BOOTSTRAP_ONLY
        runner.fail(HIPPO_SUBMIT, exit_code=1)
        pipeline = build_pipeline()

        result = await pipeline.run()

        assert result.teardown == {}
        assert sorted(r.value for r in spawner.live_roles()) == ["discovery", "scheduler"]
        assert instance_manager.active is None
        assert not instance_manager.is_busy

        stops = await pipeline.stop()

        assert stops == {"scheduler": "stopped", "discovery": "stopped"}
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_bootstrap_only_stops_agents_after_bootstrap_failure(self, config, build_pipeline, runner, spawner):
        config.teardown_policy = TeardownPolicy.BOOTSTRAP_ONLY
        runner.fail("nomad server members", stderr="No cluster leader")

        result = await build_pipeline().run()

        assert result.failed_stage == PipelineStage.BOOTSTRAP
        assert result.error_type == "PollTimeoutError"
        assert result.teardown == {"scheduler": "stopped", "discovery": "stopped"}
        assert spawner.live_roles() == []

    @pytest.mark.asyncio
    async def test_never_leaves_agents_running(self, config, build_pipeline, runner, spawner):
        config.teardown_policy = TeardownPolicy.NEVER
        runner.fail("nomad server members", stderr="No cluster leader")

        result = await build_pipeline().run()

        assert result.teardown == {}
        assert len(spawner.live_roles()) == 2

    @pytest.mark.asyncio
    async def test_registry_health_timeout(self, build_pipeline, registry_probe, spawner):
        registry_probe.outcome = PollOutcome.NOT_READY

        result = await build_pipeline().run()

        assert result.failed_stage == PipelineStage.AWAIT_REGISTRY_HEALTH
        assert result.error_type == "PollTimeoutError"
        assert registry_probe.checks == 11
        assert spawner.live_roles() == []

    @pytest.mark.asyncio
    async def test_job_never_healthy(self, build_pipeline, runner):
        runner.on(
            "nomad job status bindle",
            CommandResult("", 0, "Deployed\nbindle  1  1  0  0  100%\n", ""),
        )

        result = await build_pipeline().run()

        assert result.failed_stage == PipelineStage.DEPLOY_STORAGE
        assert result.error_type == "HealthCheckExhaustedError"
        assert result.stage_results[-1].context["job"] == "bindle"
        assert len(runner.calls_to("nomad job status bindle")) == 11

    @pytest.mark.asyncio
    async def test_stop_after_teardown_is_noop(self, build_pipeline, runner):
        runner.fail(HIPPO_SUBMIT, exit_code=1)
        pipeline = build_pipeline()
        await pipeline.run()

        assert await pipeline.stop() == {}
        assert pipeline.state == PipelineState.STOPPED


# ============================================================
# CANCELLATION
# ============================================================

class TestPipelineCancellation:
    """Tests for cancel requests and task interruption."""

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, build_pipeline, spawner):
        pipeline = build_pipeline()
        pipeline.cancel()

        result = await pipeline.run()

        assert result.cancelled
        assert result.failed_stage == PipelineStage.BOOTSTRAP
        assert spawner.calls == []
        assert exit_code_for(result, interrupted=False) == EXIT_INTERRUPTED

    @pytest.mark.asyncio
    async def test_cancel_during_wait_tears_down(self, build_pipeline, registry_probe, spawner):
        pipeline = build_pipeline()
        registry_probe.outcome = PollOutcome.NOT_READY

        async def cancel():
            pipeline.cancel()

        registry_probe.on_check = cancel

        result = await pipeline.run()

        assert result.cancelled
        assert result.failed_stage == PipelineStage.AWAIT_REGISTRY_HEALTH
        assert result.error_type == "PipelineCancelledError"
        assert result.teardown == {"scheduler": "stopped", "discovery": "stopped"}
        assert registry_probe.checks == 1

    @pytest.mark.asyncio
    async def test_cancel_follows_teardown_policy(self, config, build_pipeline, registry_probe, spawner):
        """An explicit cancel is a failure like any other for the teardown policy."""
        config.teardown_policy = TeardownPolicy.NEVER
        pipeline = build_pipeline()
        registry_probe.outcome = PollOutcome.NOT_READY

        async def cancel():
            pipeline.cancel()

        registry_probe.on_check = cancel

        result = await pipeline.run()

        assert result.cancelled
        assert len(spawner.live_roles()) == 2

    @pytest.mark.asyncio
    async def test_task_interruption_always_tears_down(
        self, config, build_pipeline, registry_probe, spawner, instance_manager,
    ):
        config.teardown_policy = TeardownPolicy.NEVER
        pipeline = build_pipeline()
        started = asyncio.Event()

        async def block():
            started.set()
            await asyncio.Event().wait()

        registry_probe.on_check = block

        task = asyncio.create_task(pipeline.run())
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert pipeline.result.cancelled
        assert pipeline.result.teardown == {"scheduler": "stopped", "discovery": "stopped"}
        assert pipeline.state == PipelineState.FAILED
        assert spawner.live_roles() == []
        assert not instance_manager.is_busy


# ============================================================
# STAGE EXECUTOR
# ============================================================

class TestStageExecutor:
    """Tests for StageExecutor."""

    @pytest.mark.asyncio
    async def test_success_context(self):
        async def handler():
            return {"attempts": 2}

        result = await StageExecutor(PipelineStage.DEPLOY_PROXY, handler).execute()

        assert result.success
        assert result.context == {"attempts": 2}

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_result(self):
        async def handler():
            raise KeyError("TaskGroups")

        result = await StageExecutor(PipelineStage.DEPLOY_PROXY, handler).execute()

        assert not result.success
        assert result.error_type == "KeyError"
        assert result.recoverable

    @pytest.mark.asyncio
    async def test_stage_timeout(self):
        async def handler():
            await asyncio.Event().wait()

        result = await StageExecutor(PipelineStage.DEPLOY_PROXY, handler, timeout_seconds=0.05).execute()

        assert not result.success
        assert result.error_type == "TimeoutError"
        assert "timeout" in result.error
