"""
Tests for the CLI and Configuration Loading.

============================================================
PURPOSE
============================================================
Verify argument parsing, environment loading, exit codes and
failure reporting.

TEST PRINCIPLES:
- Environment first, CLI flags on top
- Exit codes distinguish missing agents from other failures
- The failing stage and its stderr reach the user

============================================================
"""

import logging
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from orchestrator.cli import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_MISSING_DEPENDENCY,
    EXIT_OK,
    async_main,
    build_config,
    create_parser,
    exit_code_for,
    main,
    report_failure,
    show_stages,
    validate_args,
)
from orchestrator.models import (
    OrchestratorConfig,
    PipelineResult,
    PipelineStage,
    StageResult,
    StatusSourceKind,
    TeardownPolicy,
)
from shell.mock import ScriptedCommandRunner


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No FERMYON_* settings leak in from the host."""
    for key in list(os.environ):
        if key.startswith("FERMYON_") or key in ("LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(key)


@pytest.fixture
def quiet_logging():
    with patch("orchestrator.core.setup_logging", return_value=logging.getLogger("orchestrator")):
        yield


def parse(*argv):
    return create_parser().parse_args(list(argv))


def failed_result(stage=PipelineStage.DEPLOY_REGISTRY, error_type="NonZeroExitError", context=None):
    result = PipelineResult(run_id="run_test", started_at=NOW)
    result.add_stage_result(StageResult(
        stage=stage,
        success=False,
        started_at=NOW,
        completed_at=NOW,
        duration_seconds=0.0,
        error="hippo submission rejected",
        error_type=error_type,
        context=context or {},
    ))
    return result


# ============================================================
# CONFIGURATION
# ============================================================

class TestBuildConfig:
    """Tests for build_config."""

    def test_defaults(self):
        config = build_config(parse())

        assert config.teardown_policy == TeardownPolicy.ALWAYS
        assert config.status_source == StatusSourceKind.CLI
        assert config.hold
        assert config.cluster.readiness.interval_seconds == 1.0
        assert config.cluster.readiness.max_duration_seconds == 120.0
        assert config.job_health.max_duration_seconds == 300.0
        assert config.external_health.max_duration_seconds == 300.0
        assert config.cluster.termination.wait.max_duration_seconds == 10.0
        assert not config.cluster.termination.escalate_on_timeout

    def test_cli_overrides(self, tmp_path):
        config = build_config(parse(
            "--installer-dir", str(tmp_path),
            "--poll-interval", "2",
            "--bootstrap-timeout", "30",
            "--stop-timeout", "3",
            "--status-source", "auto",
            "--os", "linux",
            "--arch", "arm64",
            "--hippo-url", "https://hippo.local.fermyon.link",
            "--teardown-policy", "bootstrap_only",
            "--escalate",
            "--no-hold",
        ))

        assert config.cluster.installer_dir == tmp_path
        assert config.cluster.readiness.interval_seconds == 2.0
        assert config.cluster.readiness.max_duration_seconds == 30.0
        assert config.job_health.interval_seconds == 2.0
        assert config.cluster.termination.wait.max_duration_seconds == 3.0
        assert config.status_source == StatusSourceKind.AUTO
        assert config.resolved_arch == "arm64"
        assert config.health_url == "https://hippo.local.fermyon.link/healthz"
        assert config.teardown_policy == TeardownPolicy.BOOTSTRAP_ONLY
        assert not config.hold
        assert config.cluster.termination.escalate_on_timeout

    def test_cli_wins_over_environment(self, monkeypatch):
        monkeypatch.setenv("FERMYON_TEARDOWN_POLICY", "never")
        monkeypatch.setenv("FERMYON_JOB_TIMEOUT_SECONDS", "60")

        config = build_config(parse("--teardown-policy", "always"))

        assert config.teardown_policy == TeardownPolicy.ALWAYS
        assert config.job_health.max_duration_seconds == 60.0


class TestOrchestratorConfig:
    """Tests for OrchestratorConfig."""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FERMYON_INSTALLER_DIR", str(tmp_path))
        monkeypatch.setenv("FERMYON_STATUS_SOURCE", "API")
        monkeypatch.setenv("FERMYON_POLL_INTERVAL_SECONDS", "0.5")
        monkeypatch.setenv("FERMYON_HOLD", "false")
        monkeypatch.setenv("FERMYON_CHECK_OS", "true")
        monkeypatch.setenv("FERMYON_ESCALATE_ON_TIMEOUT", "true")

        config = OrchestratorConfig.from_env()

        assert config.cluster.installer_dir == tmp_path
        assert config.cluster.resolved_data_dir == tmp_path / "data"
        assert config.status_source == StatusSourceKind.API
        assert config.external_health.interval_seconds == 0.5
        assert config.cluster.check_os_release
        assert config.cluster.termination.escalate_on_timeout
        assert not config.hold

    def test_unknown_policy_rejected(self, monkeypatch):
        monkeypatch.setenv("FERMYON_TEARDOWN_POLICY", "sometimes")

        with pytest.raises(ValueError):
            OrchestratorConfig.from_env()

    def test_validate(self):
        config = OrchestratorConfig(
            scheduler_api_url="127.0.0.1:4646",
            stage_timeout_seconds=0,
            log_format="xml",
        )

        errors = config.validate()

        assert "scheduler_api_url must be an http(s) URL" in errors
        assert "stage_timeout_seconds must be positive" in errors
        assert "log_format must be 'text' or 'json'" in errors


class TestValidateArgs:
    """Tests for validate_args."""

    def test_valid(self, tmp_path):
        assert validate_args(parse("--installer-dir", str(tmp_path), "--poll-interval", "0.5")) == []

    def test_non_positive_timeouts(self):
        errors = validate_args(parse("--poll-interval", "0", "--job-timeout", "-1"))

        assert errors == ["--poll-interval must be positive", "--job-timeout must be positive"]

    def test_missing_paths(self, tmp_path):
        errors = validate_args(parse(
            "--installer-dir", str(tmp_path / "absent"),
            "--jobs-file", str(tmp_path / "jobs.json"),
        ))

        assert len(errors) == 2


# ============================================================
# EXIT CODES AND REPORTING
# ============================================================

class TestExitCodes:
    """Tests for exit_code_for."""

    def test_success(self):
        result = PipelineResult(run_id="run_test", started_at=NOW, success=True)

        assert exit_code_for(result, interrupted=True) == EXIT_OK

    def test_missing_dependency(self):
        result = failed_result(PipelineStage.BOOTSTRAP, "MissingDependencyError")

        assert exit_code_for(result, interrupted=False) == EXIT_MISSING_DEPENDENCY

    def test_interrupted(self):
        assert exit_code_for(failed_result(), interrupted=True) == EXIT_INTERRUPTED

    def test_other_failure(self):
        assert exit_code_for(failed_result(), interrupted=False) == EXIT_FAILURE


class TestReportFailure:
    """Tests for report_failure."""

    def test_names_stage_and_stderr(self, capsys):
        result = failed_result(context={"stderr": "Error parsing job file hippo.nomad"})
        result.teardown = {"scheduler": "stopped", "discovery": "stopped"}

        report_failure(result)

        err = capsys.readouterr().err
        assert "stage 'deploy_registry' failed: hippo submission rejected" in err
        assert "Error parsing job file hippo.nomad" in err
        assert "Teardown: scheduler=stopped, discovery=stopped" in err


# ============================================================
# ENTRY POINTS
# ============================================================

class TestMain:
    """Tests for main and async_main."""

    def test_show_stages(self, capsys):
        show_stages()

        out = capsys.readouterr().out
        assert out.index("bootstrap") < out.index("deploy_proxy") < out.index("await_registry_health")

    def test_main_show_stages(self, capsys):
        assert main(["--show-stages"]) == EXIT_OK

    def test_main_rejects_bad_args(self, capsys):
        assert main(["--poll-interval", "0"]) == EXIT_FAILURE
        assert "--poll-interval must be positive" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_check_prereqs_missing_scheduler(self, quiet_logging, capsys):
        runner = ScriptedCommandRunner().ok("consul --version")

        with patch("orchestrator.core.ShellCommandRunner", return_value=runner):
            code = await async_main(parse("--check-prereqs"))

        assert code == EXIT_MISSING_DEPENDENCY
        assert "requires Nomad" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_check_prereqs_satisfied(self, quiet_logging, capsys):
        runner = ScriptedCommandRunner().ok("consul --version").ok("nomad --version")

        with patch("orchestrator.core.ShellCommandRunner", return_value=runner):
            code = await async_main(parse("--check-prereqs"))

        assert code == EXIT_OK
        assert "consul and nomad are installed" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_invalid_configuration(self, quiet_logging, capsys):
        code = await async_main(parse("--hippo-url", "hippo.local"))

        assert code == EXIT_FAILURE
        assert "hippo_url must be an http(s) URL" in capsys.readouterr().err
