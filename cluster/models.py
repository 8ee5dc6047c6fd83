"""
Cluster - Models.

============================================================
RESPONSIBILITY
============================================================
Data models for the locally bootstrapped cluster.

- Process roles (discovery agent, scheduler agent)
- Termination outcomes and signal ladder
- Cluster launch configuration

============================================================
"""

import signal
from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from core.constants import (
    DISCOVERY_ADDRESS,
    DISCOVERY_BINARY,
    MEMBERSHIP_READY_TOKEN,
    SCHEDULER_BINARY,
)
from polling.models import RetryPolicy


# ============================================================
# PROCESS ROLE
# ============================================================

class ProcessRole(Enum):
    """Role of an owned child process."""

    DISCOVERY = "discovery"
    """Service-discovery agent (consul)."""

    SCHEDULER = "scheduler"
    """Workload scheduler agent (nomad)."""


# ============================================================
# STOP RESULT
# ============================================================

class StopResult(Enum):
    """Outcome of terminating one process."""

    NO_INSTANCE_RUNNING = "no_instance_running"
    """Nothing to stop (never live, or already terminated)."""

    STOPPED = "stopped"
    """A signal was accepted and the process exited."""

    STOP_FAILED = "stop_failed"
    """No signal accepted, or the process outlived every wait."""

    @property
    def is_failure(self) -> bool:
        return self == StopResult.STOP_FAILED


def default_signal_ladder() -> List[int]:
    """Interrupt, quit, kill; whichever exist on this platform."""
    ladder = [signal.SIGINT]
    if hasattr(signal, "SIGQUIT"):
        ladder.append(signal.SIGQUIT)
    ladder.append(getattr(signal, "SIGKILL", signal.SIGTERM))
    return ladder


# ============================================================
# TERMINATION CONFIGURATION
# ============================================================

@dataclass
class TerminationConfig:
    """How owned processes are stopped."""

    signals: List[int] = field(default_factory=default_signal_ladder)
    """Signals tried in order; the first accepted one starts the wait."""

    wait: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.exponential(
            initial_seconds=0.05,
            max_interval_seconds=1.0,
            max_duration_seconds=10.0,
        )
    )
    """Liveness re-check schedule after a signal is accepted."""

    escalate_on_timeout: bool = False
    """Try the next signal when the process outlives the wait (off: stop at the first accepted one)."""


# ============================================================
# CLUSTER CONFIGURATION
# ============================================================

@dataclass
class ClusterConfig:
    """Where the agents live and how they are launched."""

    installer_dir: Path = field(default_factory=lambda: Path.cwd() / "local")
    """Installer checkout with etc/ and job/ subdirectories."""

    data_dir: Optional[Path] = None
    """Agent data directory (default: <installer_dir>/data)."""

    discovery_binary: str = DISCOVERY_BINARY
    scheduler_binary: str = SCHEDULER_BINARY

    discovery_address: str = DISCOVERY_ADDRESS
    """host:port the scheduler uses to reach the discovery agent."""

    bootstrap_expect: int = 1

    membership_ready_token: str = MEMBERSHIP_READY_TOKEN

    readiness: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.fixed(interval_seconds=1.0, max_duration_seconds=120.0)
    )
    """Bound on waiting for scheduler membership."""

    termination: TerminationConfig = field(default_factory=TerminationConfig)

    check_os_release: bool = False
    """Require Ubuntu 20+ before launching."""

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or (self.installer_dir / "data")

    @property
    def discovery_config_file(self) -> Path:
        return self.installer_dir / "etc" / "consul.hcl"

    @property
    def scheduler_config_file(self) -> Path:
        return self.installer_dir / "etc" / "nomad.hcl"

    @property
    def job_dir(self) -> Path:
        return self.installer_dir / "job"

    def discovery_args(self) -> List[str]:
        """Arguments for the discovery agent (development mode)."""
        return [
            "agent",
            "-dev",
            "-config-file", str(self.discovery_config_file),
            "-bootstrap-expect", str(self.bootstrap_expect),
            "-data-dir", str(self.resolved_data_dir / "consul"),
        ]

    def scheduler_args(self) -> List[str]:
        """Arguments for the scheduler agent."""
        return [
            "agent",
            "-dev",
            "-config", str(self.scheduler_config_file),
            "-data-dir", str(self.resolved_data_dir / "nomad"),
            "-consul-address", self.discovery_address,
        ]

    def membership_command(self) -> str:
        return f"{self.scheduler_binary} server members"

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.bootstrap_expect < 1:
            errors.append("bootstrap_expect must be at least 1")
        if ":" not in self.discovery_address:
            errors.append("discovery_address must be host:port")
        errors.extend(self.readiness.validate("readiness"))
        errors.extend(self.termination.wait.validate("termination.wait"))
        if not self.termination.signals:
            errors.append("termination.signals must not be empty")

        return errors


__all__ = [
    "ProcessRole",
    "StopResult",
    "default_signal_ladder",
    "TerminationConfig",
    "ClusterConfig",
]
