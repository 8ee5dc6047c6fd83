"""
Shared fixtures for orchestrator tests.

A scripted scheduler CLI and a configurable registry health
probe on top of the shared fake agents, so that whole pipelines
run in milliseconds.
"""

import pytest

from cluster.instance import InstanceManager
from cluster.models import ClusterConfig
from core.clock import MockClock
from orchestrator.models import OrchestratorConfig, TeardownPolicy
from orchestrator.pipeline import PipelineBuilder
from polling.models import PollOutcome, RetryPolicy
from polling.probes import Probe
from shell.mock import ScriptedCommandRunner
from shell.runner import CommandResult


# ============================================================
# FAKES
# ============================================================

class RegistryProbe(Probe):
    """
    Registry health probe driven by the test.

    `outcome` is returned on every check; `on_check` runs first
    and may cancel, block or record.
    """

    name = "registry health"

    def __init__(self, outcome: PollOutcome = PollOutcome.READY):
        self.outcome = outcome
        self.on_check = None
        self.checks = 0

    async def check(self) -> PollOutcome:
        self.checks += 1
        if self.on_check is not None:
            await self.on_check()
        return self.outcome


def healthy_status(command: str) -> CommandResult:
    """`nomad job status <job>` answer showing the job healthy."""
    job = command.split()[-1]
    return CommandResult(command, 0, f"Deployed\n{job}  1  1  1  0  100%\n", "")


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def registry_probe():
    return RegistryProbe()


@pytest.fixture
def runner():
    """Both agents installed, membership alive, every job healthy."""
    return (
        ScriptedCommandRunner()
        .ok("consul --version", stdout="Consul v1.12.0")
        .ok("nomad --version", stdout="Nomad v1.3.1")
        .ok("nomad server members", stdout="laptop.global  127.0.0.1  4648  alive  true")
        .ok("nomad job run", stdout="Job registration successful")
        .on("nomad job status", healthy_status)
    )


@pytest.fixture
def config(tmp_path):
    return OrchestratorConfig(
        cluster=ClusterConfig(
            installer_dir=tmp_path,
            readiness=RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=5.0),
        ),
        os_name="linux",
        arch="amd64",
        job_health=RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=10.0),
        external_health=RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=10.0),
        teardown_policy=TeardownPolicy.ALWAYS,
        hold=False,
    )


@pytest.fixture
def instance_manager():
    return InstanceManager()


@pytest.fixture
def pipeline_factory(runner, spawner, clock, registry_probe):
    """Builds pipelines wired to the fakes above."""

    def factory(config, manager):
        return (
            PipelineBuilder(config)
            .with_runner(runner)
            .with_spawner(spawner)
            .with_clock(clock)
            .with_instance_manager(manager)
            .with_health_probe(registry_probe)
            .build()
        )

    return factory


@pytest.fixture
def build_pipeline(config, instance_manager, pipeline_factory):
    """Build a pipeline for `config` sharing one instance manager."""

    def build(cfg=None):
        return pipeline_factory(cfg or config, instance_manager)

    return build
