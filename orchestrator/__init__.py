"""
Orchestrator Package - Cluster Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
This package provides the orchestration layer for the local
cluster bootstrapper. It is the SINGLE ENTRYPOINT that controls
startup, hold and shutdown of one local cluster.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO deployment logic
2. Stages run strictly in order, one at a time
3. The first failure short-circuits the rest
4. Whatever was started is torn down per TeardownPolicy
5. The instance is visible to stop requests only once READY

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                     Orchestrator                    |
    |-----------------------------------------------------|
    |  PipelineState  |  Validated state machine          |
    |  PipelineStage  |  5 stages in strict order         |
    |  Pipeline       |  Stage execution coordination     |
    |  CLI            |  Command-line interface           |
    +-----------------------------------------------------+

============================================================
PIPELINE STAGES (5 in strict order)
============================================================
 1. BOOTSTRAP              - Start consul and nomad, wait for membership
 2. DEPLOY_PROXY           - Deploy traefik
 3. DEPLOY_STORAGE         - Deploy bindle
 4. DEPLOY_REGISTRY        - Deploy hippo
 5. AWAIT_REGISTRY_HEALTH  - Wait for hippo /healthz

============================================================
"""

from .models import (
    PIPELINE_TRANSITIONS,
    OrchestratorConfig,
    PipelineResult,
    PipelineStage,
    PipelineState,
    StageResult,
    StatusSourceKind,
    TeardownPolicy,
)
from .pipeline import (
    DeploymentPipeline,
    PipelineBuilder,
    StageExecutor,
    StageHandler,
)
from .core import (
    Orchestrator,
    create_orchestrator,
    setup_logging,
)


__all__ = [
    # Models
    "PIPELINE_TRANSITIONS",
    "OrchestratorConfig",
    "PipelineResult",
    "PipelineStage",
    "PipelineState",
    "StageResult",
    "StatusSourceKind",
    "TeardownPolicy",

    # Pipeline
    "DeploymentPipeline",
    "PipelineBuilder",
    "StageExecutor",
    "StageHandler",

    # Core
    "Orchestrator",
    "create_orchestrator",
    "setup_logging",
]
