"""
Deployment - Models.

============================================================
RESPONSIBILITY
============================================================
Data models for job deployment.

- JobDescriptor: immutable job input (name, template, vars)
- JobHealth: one health summary row parsed from status
- DeploymentResult: outcome of deploying one job

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


# ============================================================
# JOB DESCRIPTOR
# ============================================================

@dataclass(frozen=True)
class JobDescriptor:
    """A job to submit to the scheduler. Opaque to the deployer."""

    name: str
    """Job name as the scheduler knows it."""

    template_path: Path
    """Job specification file."""

    variables: Mapping[str, str] = field(default_factory=dict)
    """Template variables, passed as -var=key=value."""

    def __post_init__(self):
        object.__setattr__(self, "template_path", Path(self.template_path))
        object.__setattr__(
            self,
            "variables",
            MappingProxyType({str(k): str(v) for k, v in dict(self.variables).items()}),
        )

    def var_args(self) -> List[str]:
        """Variables as scheduler CLI arguments, in key order."""
        return [f"-var={key}={self.variables[key]}" for key in sorted(self.variables)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "template_path": str(self.template_path),
            "variables": dict(self.variables),
        }


# ============================================================
# JOB HEALTH
# ============================================================

@dataclass(frozen=True)
class JobHealth:
    """Deployment counts for one job (or task group)."""

    name: str
    desired: int = 0
    placed: int = 0
    healthy: int = 0
    unhealthy: int = 0
    progress: str = ""

    @property
    def is_healthy(self) -> bool:
        """Exactly one allocation placed and healthy, none unhealthy."""
        return self.placed == 1 and self.healthy == 1 and self.unhealthy == 0


# ============================================================
# DEPLOYMENT RESULT
# ============================================================

class DeploymentFailure(Enum):
    """Why a deployment did not succeed."""

    DISPATCH = "dispatch"
    """Scheduler could not be invoked."""

    SUBMIT_REJECTED = "submit_rejected"
    """Scheduler exited nonzero on submission."""

    STATUS_UNAVAILABLE = "status_unavailable"
    """Status could not be queried repeatedly."""

    HEALTH_EXHAUSTED = "health_exhausted"
    """Job never became healthy within its budget."""

    CANCELLED = "cancelled"
    """A cancellation was requested."""


@dataclass
class DeploymentResult:
    """Outcome of deploying one job."""

    job: str
    success: bool
    reason: str = ""
    failure: Optional[DeploymentFailure] = None
    error: Optional[Exception] = None
    attempts: int = 0
    duration_seconds: float = 0.0
    stderr: str = ""

    @classmethod
    def ok(cls, job: str, attempts: int, duration_seconds: float) -> "DeploymentResult":
        return cls(
            job=job,
            success=True,
            reason="healthy",
            attempts=attempts,
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failed(
        cls,
        job: str,
        failure: DeploymentFailure,
        error: Exception,
        attempts: int = 0,
        duration_seconds: float = 0.0,
    ) -> "DeploymentResult":
        return cls(
            job=job,
            success=False,
            reason=getattr(error, "message", str(error)),
            failure=failure,
            error=error,
            attempts=attempts,
            duration_seconds=duration_seconds,
            stderr=getattr(error, "stderr", "") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "success": self.success,
            "reason": self.reason,
            "failure": self.failure.value if self.failure else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "attempts": self.attempts,
            "duration_seconds": round(self.duration_seconds, 3),
            "stderr": self.stderr,
        }


__all__ = [
    "JobDescriptor",
    "JobHealth",
    "DeploymentFailure",
    "DeploymentResult",
]
