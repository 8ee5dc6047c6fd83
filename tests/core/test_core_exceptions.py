"""
Tests for the Exception Hierarchy.

============================================================
PURPOSE
============================================================
Verify error classification and the context every error carries.

TEST PRINCIPLES:
- Missing dependencies name exactly what is missing
- Command errors keep exit code and stderr
- Classification drives the poller's retry decision

============================================================
"""

import pytest

from core.exceptions import (
    ClusterException,
    ConfigurationError,
    DispatchError,
    ErrorClassification,
    HealthCheckExhaustedError,
    INSTALL_HINTS,
    MissingDependency,
    MissingDependencyError,
    NonZeroExitError,
    PipelineCancelledError,
    PollTimeoutError,
    StartupError,
    StatusQueryError,
    classify_exception,
)


class TestMissingDependencyError:
    """Tests for MissingDependencyError."""

    @pytest.mark.parametrize("missing,tool", [
        (MissingDependency.DISCOVERY, "Consul"),
        (MissingDependency.SCHEDULER, "Nomad"),
    ])
    def test_single_tool_message(self, missing, tool):
        """Message names the one missing tool and its install link."""
        error = MissingDependencyError(missing)

        assert error.missing == missing
        assert tool in error.message
        assert INSTALL_HINTS[missing] in error.message
        assert error.context["missing"] == missing.value

    def test_both_missing(self):
        error = MissingDependencyError(MissingDependency.BOTH)

        assert "Nomad and Consul" in error.message
        assert error.install_hint == INSTALL_HINTS[MissingDependency.BOTH]

    def test_not_recoverable(self):
        error = MissingDependencyError(MissingDependency.BOTH)

        assert not error.is_recoverable


class TestCommandErrors:
    """Tests for DispatchError and NonZeroExitError."""

    def test_dispatch_error_is_transient(self):
        error = DispatchError(message="no such file", command="nomad job run x")

        assert classify_exception(error) == ErrorClassification.TRANSIENT
        assert error.is_recoverable

    def test_nonzero_exit_keeps_stderr(self):
        error = NonZeroExitError(
            message="rejected",
            exit_code=1,
            stderr="Error parsing job file\n",
        )

        assert error.exit_code == 1
        assert error.stderr == "Error parsing job file\n"
        assert error.context["stderr"] == "Error parsing job file"
        assert error.context["exit_code"] == 1


class TestPollingErrors:
    """Tests for polling error context."""

    def test_poll_timeout_context(self):
        error = PollTimeoutError(
            message="not ready",
            probe="scheduler membership",
            attempts=120,
            elapsed_seconds=119.99999,
        )

        assert error.context["probe"] == "scheduler membership"
        assert error.context["attempts"] == 120
        assert error.context["elapsed_seconds"] == 120.0

    def test_health_exhausted_is_poll_timeout(self):
        error = HealthCheckExhaustedError(message="never healthy", job="bindle", attempts=300)

        assert isinstance(error, PollTimeoutError)
        assert error.job == "bindle"
        assert error.context["job"] == "bindle"

    def test_status_query_error_is_fatal(self):
        error = StatusQueryError(message="status unavailable", stage="hippo", failures=6)

        assert classify_exception(error) == ErrorClassification.NON_RECOVERABLE
        assert error.context["consecutive_failures"] == 6

    def test_cancelled_is_fatal(self):
        assert not PipelineCancelledError(message="cancelled").is_recoverable


class TestClassification:
    """Tests for classify_exception."""

    def test_os_errors_are_transient(self):
        assert classify_exception(ConnectionError()) == ErrorClassification.TRANSIENT
        assert classify_exception(OSError()) == ErrorClassification.TRANSIENT

    def test_value_errors_are_recoverable(self):
        assert classify_exception(ValueError()) == ErrorClassification.RECOVERABLE

    def test_cluster_exception_uses_own_classification(self):
        error = ClusterException(
            message="boom",
            classification=ErrorClassification.NON_RECOVERABLE,
        )

        assert classify_exception(error) == ErrorClassification.NON_RECOVERABLE


class TestFormatting:
    """Tests for serialization helpers."""

    def test_cause_recorded_in_context(self):
        cause = FileNotFoundError("consul")
        error = StartupError(message="spawn failed", stage="bootstrap", cause=cause)

        assert error.context["stage"] == "bootstrap"
        assert error.context["cause_type"] == "FileNotFoundError"

    def test_log_format(self):
        error = ConfigurationError(message="bad config", config_key="jobs_file")

        line = error.to_log_format()

        assert line.startswith("[HIGH] ConfigurationError: bad config")
        assert "config_key=jobs_file" in line

    def test_to_dict(self):
        error = ConfigurationError(message="bad", errors=["a", "b"])

        data = error.to_dict()

        assert data["type"] == "ConfigurationError"
        assert data["context"]["errors"] == ["a", "b"]
        assert data["cause"] is None
