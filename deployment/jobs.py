"""
Deployment - Default Jobs.

The built-in job list: reverse proxy, artifact storage, then
application registry, each deployed only after the previous one
is healthy.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List

from .models import JobDescriptor


class JobRole(Enum):
    """Position of a job in the deployment order."""

    PROXY = "proxy"
    STORAGE = "storage"
    REGISTRY = "registry"


JOB_ORDER: List[JobRole] = [JobRole.PROXY, JobRole.STORAGE, JobRole.REGISTRY]


def default_jobs(job_dir: Path, os_name: str, arch: str) -> Dict[JobRole, JobDescriptor]:
    """
    Traefik, bindle and hippo from the installer's job directory.

    Args:
        job_dir: Directory holding the *.nomad files
        os_name: Target OS for binary artifacts
        arch: Target architecture for binary artifacts
    """
    job_dir = Path(job_dir)
    return {
        JobRole.PROXY: JobDescriptor(
            name="traefik",
            template_path=job_dir / "traefik.nomad",
        ),
        JobRole.STORAGE: JobDescriptor(
            name="bindle",
            template_path=job_dir / "bindle.nomad",
            variables={"os": os_name, "arch": arch},
        ),
        JobRole.REGISTRY: JobDescriptor(
            name="hippo",
            template_path=job_dir / "hippo.nomad",
            variables={"os": os_name},
        ),
    }


__all__ = [
    "JobRole",
    "JOB_ORDER",
    "default_jobs",
]
