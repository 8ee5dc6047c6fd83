"""
Tests for Job Descriptors, Default Jobs and Manifests.

============================================================
PURPOSE
============================================================
Verify how the three jobs are described and loaded.

TEST PRINCIPLES:
- Descriptors are immutable
- Default jobs follow proxy -> storage -> registry
- Manifests are validated before anything is started

============================================================
"""

import json
from pathlib import Path

import pytest

from core.exceptions import ConfigurationError, NonZeroExitError
from deployment.jobs import JOB_ORDER, JobRole, default_jobs
from deployment.manifest import JobManifest, load_manifest
from deployment.models import DeploymentFailure, DeploymentResult, JobDescriptor


# ============================================================
# FIXTURES
# ============================================================

MANIFEST = {
    "jobs": [
        {"role": "proxy", "name": "traefik", "template": "traefik.nomad"},
        {
            "role": "storage",
            "name": "bindle",
            "template": "bindle.nomad",
            "variables": {"os": "{os}", "arch": "{arch}"},
        },
        {
            "role": "registry",
            "name": "hippo",
            "template": "/srv/jobs/hippo.nomad",
            "variables": {"os": "linux", "registry": "hippo-{arch}"},
        },
    ]
}


@pytest.fixture
def manifest_file(tmp_path):
    path = tmp_path / "jobs.json"
    path.write_text(json.dumps(MANIFEST), encoding="utf-8")
    return path


# ============================================================
# DESCRIPTORS
# ============================================================

class TestJobDescriptor:
    """Tests for JobDescriptor."""

    def test_variables_are_read_only(self):
        variables = {"os": "linux"}
        descriptor = JobDescriptor("hippo", "job/hippo.nomad", variables)
        variables["os"] = "windows"

        assert descriptor.variables["os"] == "linux"
        with pytest.raises(TypeError):
            descriptor.variables["os"] = "darwin"

    def test_template_path_coerced(self):
        assert JobDescriptor("hippo", "job/hippo.nomad").template_path == Path("job/hippo.nomad")

    def test_var_args_sorted(self):
        descriptor = JobDescriptor("bindle", "bindle.nomad", {"os": "linux", "arch": "arm64"})

        assert descriptor.var_args() == ["-var=arch=arm64", "-var=os=linux"]

    def test_to_dict(self):
        data = JobDescriptor("traefik", "traefik.nomad").to_dict()

        assert data == {"name": "traefik", "template_path": "traefik.nomad", "variables": {}}


class TestDeploymentResult:
    """Tests for DeploymentResult."""

    def test_failed_takes_stderr_from_error(self):
        error = NonZeroExitError(message="rejected", exit_code=1, stderr="bad job")

        result = DeploymentResult.failed("hippo", DeploymentFailure.SUBMIT_REJECTED, error)

        assert result.reason == "rejected"
        assert result.stderr == "bad job"
        assert result.to_dict()["failure"] == "submit_rejected"


# ============================================================
# DEFAULT JOBS
# ============================================================

class TestDefaultJobs:
    """Tests for default_jobs."""

    def test_order_and_names(self, tmp_path):
        jobs = default_jobs(tmp_path, "linux", "amd64")

        assert list(jobs) == JOB_ORDER
        assert [jobs[r].name for r in JOB_ORDER] == ["traefik", "bindle", "hippo"]

    def test_variables(self, tmp_path):
        jobs = default_jobs(tmp_path, "linux", "arm64")

        assert dict(jobs[JobRole.PROXY].variables) == {}
        assert dict(jobs[JobRole.STORAGE].variables) == {"os": "linux", "arch": "arm64"}
        assert dict(jobs[JobRole.REGISTRY].variables) == {"os": "linux"}
        assert jobs[JobRole.REGISTRY].template_path == tmp_path / "hippo.nomad"


# ============================================================
# MANIFEST
# ============================================================

class TestManifest:
    """Tests for manifest loading."""

    def test_load_and_resolve(self, manifest_file, tmp_path):
        manifest = load_manifest(manifest_file)

        jobs = manifest.descriptors(tmp_path / "job", "linux", "arm64")

        assert jobs[JobRole.PROXY].template_path == tmp_path / "job" / "traefik.nomad"
        assert dict(jobs[JobRole.STORAGE].variables) == {"os": "linux", "arch": "arm64"}
        assert jobs[JobRole.REGISTRY].template_path == Path("/srv/jobs/hippo.nomad")
        assert jobs[JobRole.REGISTRY].variables["registry"] == "hippo-arm64"

    def test_wrong_order_rejected(self):
        jobs = list(reversed(MANIFEST["jobs"]))

        with pytest.raises(ValueError):
            JobManifest.model_validate({"jobs": jobs})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_manifest(tmp_path / "absent.json")

        assert exc_info.value.context["config_key"] == "jobs_file"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            load_manifest(path)

        assert "not valid JSON" in exc_info.value.message

    def test_schema_errors_listed(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text(json.dumps({"jobs": [{"role": "proxy", "name": ""}]}), encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            load_manifest(path)

        errors = exc_info.value.context["errors"]
        assert any(e.startswith("jobs.0.name") for e in errors)
        assert any(e.startswith("jobs.0.template") for e in errors)
