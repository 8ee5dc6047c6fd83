"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the local cluster bootstrapper.

- Provides clear exception hierarchy
- Tells the caller WHICH stage failed and WHY
- Supports error categorization (recoverable vs not)
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
ClusterException (base)
├── ConfigurationError
├── MissingDependencyError
├── UnsupportedPlatformError
├── CommandError
│   ├── DispatchError
│   └── NonZeroExitError
├── StatusQueryError
├── PollTimeoutError
│   └── HealthCheckExhaustedError
├── PipelineCancelledError
├── TerminationError
└── OrchestrationError
    ├── InstanceAlreadyActiveError
    ├── BootstrapInProgressError
    ├── StartupError
    ├── StateTransitionError
    └── PipelineError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for reporting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, the cluster cannot come up."""

    CRITICAL = "critical"
    """Critical issue, processes may have been left behind."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class ClusterException(Exception):
    """
    Base exception for all cluster bootstrapper errors.

    All exceptions carry:
    - severity: for reporting
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(ClusterException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        errors: Optional[List[str]] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if errors:
            context["errors"] = list(errors)

        super().__init__(message, context=context, **kwargs)


# ============================================================
# PREREQUISITE ERRORS
# ============================================================

class MissingDependency(Enum):
    """Which agent binaries could not be found."""

    DISCOVERY = "discovery"
    """Only the service-discovery agent (consul) is missing."""

    SCHEDULER = "scheduler"
    """Only the workload scheduler agent (nomad) is missing."""

    BOTH = "both"
    """Neither agent is present."""

    @property
    def install_hint(self) -> str:
        """Where the user should go to install what is missing."""
        return INSTALL_HINTS[self]


INSTALL_HINTS: Dict[MissingDependency, str] = {
    MissingDependency.DISCOVERY: "https://www.consul.io/docs/install",
    MissingDependency.SCHEDULER: "https://www.nomadproject.io/docs/install",
    MissingDependency.BOTH: "https://github.com/fermyon/installer/tree/main/local",
}


class MissingDependencyError(ClusterException):
    """
    A required agent binary is not installed.

    Carries an enumerable `missing` value so the caller can tell
    the user exactly which tool to install.
    """

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, missing: MissingDependency, **kwargs):
        self.missing = missing
        self.install_hint = missing.install_hint

        if missing == MissingDependency.DISCOVERY:
            message = (
                "Fermyon requires Consul which is not present. "
                f"See {self.install_hint} for instructions."
            )
        elif missing == MissingDependency.SCHEDULER:
            message = (
                "Fermyon requires Nomad which is not present. "
                f"See {self.install_hint} for instructions."
            )
        else:
            message = (
                "Fermyon requires Nomad and Consul which are not present. "
                f"See {self.install_hint} for links."
            )

        context = kwargs.pop("context", {})
        context["missing"] = missing.value
        context["install_hint"] = self.install_hint

        super().__init__(message, context=context, **kwargs)


class UnsupportedPlatformError(ClusterException):
    """Host operating system is not supported."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# COMMAND ERRORS
# ============================================================

class CommandError(ClusterException):
    """Base class for errors running external commands."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        stage: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        self.command = command
        self.stage = stage
        if command:
            context["command"] = command
        if stage:
            context["stage"] = stage

        super().__init__(message, context=context, **kwargs)


class DispatchError(CommandError):
    """The command could not be invoked at all."""

    default_classification = ErrorClassification.TRANSIENT


class NonZeroExitError(CommandError):
    """The command ran but exited with a nonzero code."""

    def __init__(
        self,
        message: str,
        exit_code: int,
        stderr: str = "",
        **kwargs,
    ):
        self.exit_code = exit_code
        self.stderr = stderr

        context = kwargs.pop("context", {})
        context["exit_code"] = exit_code
        if stderr:
            context["stderr"] = stderr.strip()[:500]

        super().__init__(message, context=context, **kwargs)


# ============================================================
# POLLING ERRORS
# ============================================================

class StatusQueryError(ClusterException):
    """Job status could not be queried repeatedly."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        failures: int = 0,
        **kwargs,
    ):
        self.stage = stage
        self.failures = failures

        context = kwargs.pop("context", {})
        if stage:
            context["stage"] = stage
        context["consecutive_failures"] = failures

        super().__init__(message, context=context, **kwargs)


class PollTimeoutError(ClusterException):
    """A readiness poll ran out of time or attempts."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        probe: Optional[str] = None,
        attempts: int = 0,
        elapsed_seconds: float = 0.0,
        **kwargs,
    ):
        self.probe = probe
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds

        context = kwargs.pop("context", {})
        if probe:
            context["probe"] = probe
        context["attempts"] = attempts
        context["elapsed_seconds"] = round(elapsed_seconds, 3)

        super().__init__(message, context=context, **kwargs)


class HealthCheckExhaustedError(PollTimeoutError):
    """A job never reported healthy within its poll budget."""

    def __init__(self, message: str, job: Optional[str] = None, **kwargs):
        self.job = job
        context = kwargs.pop("context", {})
        if job:
            context["job"] = job
        super().__init__(message, context=context, **kwargs)


class PipelineCancelledError(ClusterException):
    """A cancellation was requested while waiting."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# PROCESS ERRORS
# ============================================================

class TerminationError(ClusterException):
    """A child process could not be confirmed dead."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, role: Optional[str] = None, **kwargs):
        self.role = role
        context = kwargs.pop("context", {})
        if role:
            context["role"] = role
        super().__init__(message, context=context, **kwargs)


# ============================================================
# ORCHESTRATION ERRORS
# ============================================================

class OrchestrationError(ClusterException):
    """Base class for orchestration-related errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class InstanceAlreadyActiveError(OrchestrationError):
    """A cluster instance is already running."""

    default_severity = Severity.LOW

    def __init__(self, message: str = "Already running", **kwargs):
        super().__init__(message, **kwargs)


class BootstrapInProgressError(OrchestrationError):
    """Another bootstrap attempt holds the instance slot."""

    default_severity = Severity.LOW

    def __init__(self, message: str = "A bootstrap is already in progress", **kwargs):
        super().__init__(message, **kwargs)


class StartupError(OrchestrationError):
    """Cluster startup failed."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if stage:
            context["stage"] = stage
        super().__init__(message, context=context, **kwargs)


class StateTransitionError(OrchestrationError):
    """Invalid lifecycle or pipeline state transition."""

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state
        super().__init__(message, context=context, **kwargs)


class PipelineError(OrchestrationError):
    """Deployment pipeline error."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if stage:
            context["stage"] = stage
        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def classify_exception(exc: Exception) -> ErrorClassification:
    """Classify an exception for error handling."""
    if isinstance(exc, ClusterException):
        return exc.classification

    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return ErrorClassification.TRANSIENT

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorClassification.RECOVERABLE

    if isinstance(exc, (SystemExit, KeyboardInterrupt, MemoryError)):
        return ErrorClassification.NON_RECOVERABLE

    return ErrorClassification.RECOVERABLE


__all__ = [
    "Severity",
    "ErrorClassification",
    "ClusterException",
    "ConfigurationError",
    "MissingDependency",
    "INSTALL_HINTS",
    "MissingDependencyError",
    "UnsupportedPlatformError",
    "CommandError",
    "DispatchError",
    "NonZeroExitError",
    "StatusQueryError",
    "PollTimeoutError",
    "HealthCheckExhaustedError",
    "PipelineCancelledError",
    "TerminationError",
    "OrchestrationError",
    "InstanceAlreadyActiveError",
    "BootstrapInProgressError",
    "StartupError",
    "StateTransitionError",
    "PipelineError",
    "classify_exception",
]
