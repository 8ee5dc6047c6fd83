"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the deployment pipeline.

- Pipeline states and their transition table
- Pipeline stages with strict ordering
- Teardown policy on failure
- Stage and pipeline results
- Configuration dataclasses

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
import os

from dotenv import load_dotenv

from cluster.models import ClusterConfig, TerminationConfig
from cluster.prerequisites import detect_arch, detect_os
from core.constants import (
    DEFAULT_BINDLE_URL,
    DEFAULT_HIPPO_URL,
    HEALTH_PATH,
    SCHEDULER_API_URL,
)
from polling.models import RetryPolicy


# ============================================================
# PIPELINE STATES
# ============================================================

class PipelineState(Enum):
    """States of one bootstrap-and-deploy run."""

    IDLE = "idle"
    """Nothing started."""

    BOOTSTRAPPING = "bootstrapping"
    """Starting agents, waiting for membership."""

    PROXY_DEPLOYING = "proxy_deploying"
    """Deploying the reverse proxy job."""

    STORAGE_DEPLOYING = "storage_deploying"
    """Deploying the artifact storage job."""

    REGISTRY_DEPLOYING = "registry_deploying"
    """Deploying the application registry job."""

    AWAITING_EXTERNAL_HEALTH = "awaiting_external_health"
    """Waiting for the registry's HTTP health endpoint."""

    READY = "ready"
    """Everything is up; instance is published."""

    FAILED = "failed"
    """A stage failed (terminal until stopped)."""

    STOPPED = "stopped"
    """Explicitly stopped after READY or FAILED."""

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.READY, PipelineState.FAILED, PipelineState.STOPPED)


PIPELINE_TRANSITIONS: Dict[PipelineState, Set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.BOOTSTRAPPING},
    PipelineState.BOOTSTRAPPING: {PipelineState.PROXY_DEPLOYING, PipelineState.FAILED},
    PipelineState.PROXY_DEPLOYING: {PipelineState.STORAGE_DEPLOYING, PipelineState.FAILED},
    PipelineState.STORAGE_DEPLOYING: {PipelineState.REGISTRY_DEPLOYING, PipelineState.FAILED},
    PipelineState.REGISTRY_DEPLOYING: {PipelineState.AWAITING_EXTERNAL_HEALTH, PipelineState.FAILED},
    PipelineState.AWAITING_EXTERNAL_HEALTH: {PipelineState.READY, PipelineState.FAILED},
    PipelineState.READY: {PipelineState.STOPPED, PipelineState.FAILED},
    PipelineState.FAILED: {PipelineState.STOPPED},
    PipelineState.STOPPED: set(),
}


# ============================================================
# PIPELINE STAGES
# ============================================================

class PipelineStage(Enum):
    """
    Pipeline stages in strict order.

    Each stage runs only after the previous one succeeded.
    Failure short-circuits downstream.
    """

    BOOTSTRAP = (1, "bootstrap", "Start discovery and scheduler agents", PipelineState.BOOTSTRAPPING)
    DEPLOY_PROXY = (2, "deploy_proxy", "Deploy reverse proxy job", PipelineState.PROXY_DEPLOYING)
    DEPLOY_STORAGE = (3, "deploy_storage", "Deploy artifact storage job", PipelineState.STORAGE_DEPLOYING)
    DEPLOY_REGISTRY = (4, "deploy_registry", "Deploy application registry job", PipelineState.REGISTRY_DEPLOYING)
    AWAIT_REGISTRY_HEALTH = (
        5, "await_registry_health", "Wait for registry health endpoint",
        PipelineState.AWAITING_EXTERNAL_HEALTH,
    )

    def __init__(self, order: int, stage_id: str, description: str, state: PipelineState):
        self._order = order
        self._stage_id = stage_id
        self._description = description
        self._state = state

    @property
    def order(self) -> int:
        """Get execution order."""
        return self._order

    @property
    def stage_id(self) -> str:
        """Get stage identifier."""
        return self._stage_id

    @property
    def description(self) -> str:
        """Get stage description."""
        return self._description

    @property
    def state(self) -> PipelineState:
        """Pipeline state while this stage runs."""
        return self._state

    @classmethod
    def get_ordered_stages(cls) -> List["PipelineStage"]:
        """Get all stages in execution order."""
        return sorted(cls, key=lambda s: s.order)


# ============================================================
# POLICIES
# ============================================================

class TeardownPolicy(Enum):
    """What to stop when a stage fails."""

    ALWAYS = "always"
    """Stop every spawned process on any failure."""

    BOOTSTRAP_ONLY = "bootstrap_only"
    """Stop processes only when bootstrap fails; leave them after job failures."""

    NEVER = "never"
    """Leave processes running (debugging)."""

    def applies_to(self, stage: Optional[PipelineStage]) -> bool:
        """Whether a failure in `stage` triggers teardown."""
        if self == TeardownPolicy.ALWAYS:
            return True
        if self == TeardownPolicy.BOOTSTRAP_ONLY:
            return stage in (None, PipelineStage.BOOTSTRAP)
        return False


class StatusSourceKind(Enum):
    """Where job health is read from."""

    CLI = "cli"
    """`nomad job status` text."""

    API = "api"
    """Scheduler HTTP API JSON."""

    AUTO = "auto"
    """API, falling back to CLI text when unreachable."""


# ============================================================
# STAGE RESULT
# ============================================================

@dataclass
class StageResult:
    """Result of executing a stage."""

    stage: PipelineStage
    success: bool
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta:
        """Get duration as timedelta."""
        return timedelta(seconds=self.duration_seconds)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stage": self.stage.stage_id,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "error_type": self.error_type,
            "recoverable": self.recoverable,
            "context": self.context,
        }


@dataclass
class PipelineResult:
    """Result of one complete pipeline run."""

    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    final_state: PipelineState = PipelineState.IDLE
    stage_results: List[StageResult] = field(default_factory=list)
    failed_stage: Optional[PipelineStage] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    cancelled: bool = False
    instance_id: Optional[str] = None
    teardown: Dict[str, str] = field(default_factory=dict)
    """Per-role stop results when teardown ran."""

    @property
    def duration_seconds(self) -> float:
        """Get total duration in seconds."""
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    @property
    def stages_completed(self) -> int:
        """Get number of completed stages."""
        return len([r for r in self.stage_results if r.success])

    def add_stage_result(self, result: StageResult) -> None:
        """Add a stage result."""
        self.stage_results.append(result)
        if not result.success:
            self.failed_stage = result.stage
            self.error = result.error
            self.error_type = result.error_type

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "final_state": self.final_state.value,
            "duration_seconds": self.duration_seconds,
            "stages_completed": self.stages_completed,
            "failed_stage": self.failed_stage.stage_id if self.failed_stage else None,
            "error": self.error,
            "error_type": self.error_type,
            "cancelled": self.cancelled,
            "instance_id": self.instance_id,
            "teardown": self.teardown,
            "stage_results": [r.to_dict() for r in self.stage_results],
        }


# ============================================================
# ORCHESTRATOR CONFIGURATION
# ============================================================

@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    # Cluster
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    """Agent launch and termination settings."""

    # Jobs
    os_name: Optional[str] = None
    """Target OS for job artifacts (default: detected)."""

    arch: Optional[str] = None
    """Target architecture for job artifacts (default: detected)."""

    jobs_file: Optional[str] = None
    """JSON job manifest replacing the built-in job list."""

    status_source: StatusSourceKind = StatusSourceKind.CLI
    """Where job health is read from."""

    scheduler_api_url: str = SCHEDULER_API_URL
    """Scheduler HTTP API base URL."""

    job_health: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=300.0)
    )
    """Per-job health poll schedule."""

    # Registry
    hippo_url: str = DEFAULT_HIPPO_URL
    """Application registry base URL."""

    bindle_url: str = DEFAULT_BINDLE_URL
    """Artifact storage URL (reported once ready)."""

    external_health: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=300.0)
    )
    """Registry health endpoint poll schedule."""

    # Pipeline
    teardown_policy: TeardownPolicy = TeardownPolicy.ALWAYS
    """What to stop when a stage fails."""

    stage_timeout_seconds: Optional[float] = None
    """Hard ceiling per stage on top of poll budgets (None: polls only)."""

    hold: bool = True
    """Keep the cluster running until interrupted once ready."""

    # Logging
    log_level: str = "INFO"
    """Logging level."""

    log_format: str = "text"
    """Log format: text or json."""

    correlation_id_prefix: str = "bootstrap"
    """Prefix for correlation IDs."""

    @property
    def resolved_os(self) -> str:
        return self.os_name or detect_os()

    @property
    def resolved_arch(self) -> str:
        return self.arch or detect_arch()

    @property
    def health_url(self) -> str:
        return f"{self.hippo_url.rstrip('/')}{HEALTH_PATH}"

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv()

        installer_dir = os.getenv("FERMYON_INSTALLER_DIR")
        data_dir = os.getenv("FERMYON_DATA_DIR")
        interval = float(os.getenv("FERMYON_POLL_INTERVAL_SECONDS", "1.0"))

        cluster = ClusterConfig(
            data_dir=Path(data_dir) if data_dir else None,
            readiness=RetryPolicy.fixed(
                interval_seconds=interval,
                max_duration_seconds=float(os.getenv("FERMYON_BOOTSTRAP_TIMEOUT_SECONDS", "120")),
            ),
            termination=TerminationConfig(
                wait=RetryPolicy.exponential(
                    initial_seconds=0.05,
                    max_interval_seconds=1.0,
                    max_duration_seconds=float(os.getenv("FERMYON_STOP_TIMEOUT_SECONDS", "10")),
                ),
                escalate_on_timeout=os.getenv("FERMYON_ESCALATE_ON_TIMEOUT", "false").lower() == "true",
            ),
            check_os_release=os.getenv("FERMYON_CHECK_OS", "false").lower() == "true",
        )
        if installer_dir:
            cluster.installer_dir = Path(installer_dir)

        return cls(
            cluster=cluster,
            os_name=os.getenv("FERMYON_OS") or None,
            arch=os.getenv("FERMYON_ARCH") or None,
            jobs_file=os.getenv("FERMYON_JOBS_FILE") or None,
            status_source=StatusSourceKind(os.getenv("FERMYON_STATUS_SOURCE", "cli").lower()),
            scheduler_api_url=os.getenv("FERMYON_SCHEDULER_API_URL", SCHEDULER_API_URL),
            job_health=RetryPolicy.fixed(
                interval_seconds=interval,
                max_duration_seconds=float(os.getenv("FERMYON_JOB_TIMEOUT_SECONDS", "300")),
            ),
            hippo_url=os.getenv("FERMYON_HIPPO_URL", DEFAULT_HIPPO_URL),
            bindle_url=os.getenv("FERMYON_BINDLE_URL", DEFAULT_BINDLE_URL),
            external_health=RetryPolicy.fixed(
                interval_seconds=interval,
                max_duration_seconds=float(os.getenv("FERMYON_HEALTH_TIMEOUT_SECONDS", "300")),
            ),
            teardown_policy=TeardownPolicy(os.getenv("FERMYON_TEARDOWN_POLICY", "always").lower()),
            hold=os.getenv("FERMYON_HOLD", "true").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = self.cluster.validate()

        errors.extend(self.job_health.validate("job_health"))
        errors.extend(self.external_health.validate("external_health"))

        if not self.hippo_url.startswith(("http://", "https://")):
            errors.append("hippo_url must be an http(s) URL")

        if not self.scheduler_api_url.startswith(("http://", "https://")):
            errors.append("scheduler_api_url must be an http(s) URL")

        if self.stage_timeout_seconds is not None and self.stage_timeout_seconds <= 0:
            errors.append("stage_timeout_seconds must be positive")

        if self.log_format not in ("text", "json"):
            errors.append("log_format must be 'text' or 'json'")

        if self.jobs_file and not Path(self.jobs_file).is_file():
            errors.append(f"jobs_file not found: {self.jobs_file}")

        return errors


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    # Enums
    "PipelineState",
    "PIPELINE_TRANSITIONS",
    "PipelineStage",
    "TeardownPolicy",
    "StatusSourceKind",

    # Results
    "StageResult",
    "PipelineResult",

    # Configuration
    "OrchestratorConfig",
]
