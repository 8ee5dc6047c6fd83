"""
Deployment Package.

Submits jobs to the scheduler and decides when they are healthy.
"""

from .models import DeploymentFailure, DeploymentResult, JobDescriptor, JobHealth
from .health import find_health_fields, parse_health, parse_health_row
from .status import (
    ApiStatusSource,
    CliStatusSource,
    FallbackStatusSource,
    JobStatusSource,
    StatusSnapshot,
    create_status_source,
)
from .deployer import JobDeployer, JobHealthProbe
from .jobs import JOB_ORDER, JobRole, default_jobs
from .manifest import JobEntry, JobManifest, load_manifest


__all__ = [
    "DeploymentFailure",
    "DeploymentResult",
    "JobDescriptor",
    "JobHealth",
    "find_health_fields",
    "parse_health",
    "parse_health_row",
    "ApiStatusSource",
    "CliStatusSource",
    "FallbackStatusSource",
    "JobStatusSource",
    "StatusSnapshot",
    "create_status_source",
    "JobDeployer",
    "JobHealthProbe",
    "JOB_ORDER",
    "JobRole",
    "default_jobs",
    "JobEntry",
    "JobManifest",
    "load_manifest",
]
