"""
Pydantic Schemas for Job Manifests.

A manifest replaces the built-in job list, e.g. to point at a
different installer checkout or pin other template variables:

    {
      "jobs": [
        {"role": "proxy", "name": "traefik", "template": "traefik.nomad"},
        {"role": "storage", "name": "bindle", "template": "bindle.nomad",
         "variables": {"os": "{os}", "arch": "{arch}"}},
        {"role": "registry", "name": "hippo", "template": "/opt/jobs/hippo.nomad",
         "variables": {"os": "linux"}}
      ]
    }

Relative templates resolve against the installer job directory.
"{os}" and "{arch}" in variable values are filled from config.
"""

import json
from pathlib import Path
from typing import Dict, List, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from core.exceptions import ConfigurationError
from .jobs import JOB_ORDER, JobRole
from .models import JobDescriptor


# =============================================================
# SCHEMAS
# =============================================================

class JobEntry(BaseModel):
    """One job in the manifest."""
    role: JobRole
    name: str = Field(min_length=1)
    template: str = Field(min_length=1)
    variables: Dict[str, str] = Field(default_factory=dict)

    def to_descriptor(self, job_dir: Path, os_name: str, arch: str) -> JobDescriptor:
        template = Path(self.template)
        if not template.is_absolute():
            template = Path(job_dir) / template
        return JobDescriptor(
            name=self.name,
            template_path=template,
            variables={
                k: v.replace("{os}", os_name).replace("{arch}", arch)
                for k, v in self.variables.items()
            },
        )


class JobManifest(BaseModel):
    """Proxy, storage and registry jobs, in deployment order."""
    jobs: List[JobEntry]

    @field_validator("jobs")
    @classmethod
    def check_order(cls, jobs: List[JobEntry]) -> List[JobEntry]:
        roles = [job.role for job in jobs]
        if roles != JOB_ORDER:
            expected = ", ".join(r.value for r in JOB_ORDER)
            raise ValueError(f"jobs must be exactly [{expected}] in that order")
        return jobs

    def descriptors(self, job_dir: Path, os_name: str, arch: str) -> Dict[JobRole, JobDescriptor]:
        return {
            job.role: job.to_descriptor(job_dir, os_name, arch)
            for job in self.jobs
        }


# =============================================================
# LOADING
# =============================================================

def load_manifest(path: Union[str, Path]) -> JobManifest:
    """
    Read and validate a manifest file.

    Raises:
        ConfigurationError: Unreadable, not JSON, or invalid
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read jobs file {path}: {e}",
            config_key="jobs_file",
            cause=e,
        )
    except ValueError as e:
        raise ConfigurationError(
            f"Jobs file {path} is not valid JSON: {e}",
            config_key="jobs_file",
            cause=e,
        )

    try:
        return JobManifest.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Jobs file {path} is invalid",
            config_key="jobs_file",
            errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            cause=e,
        )


__all__ = [
    "JobEntry",
    "JobManifest",
    "load_manifest",
]
