"""
Cluster Package.

Local discovery + scheduler agents: launch, readiness, ownership
and teardown.
"""

from .models import (
    ClusterConfig,
    ProcessRole,
    StopResult,
    TerminationConfig,
    default_signal_ladder,
)
from .process_handle import ProcessExitProbe, ProcessHandle
from .prerequisites import check_os_release, check_prerequisites, detect_arch, detect_os
from .instance import InstanceManager, LocalInstance
from .bootstrapper import ClusterBootstrapper, MembershipProbe


__all__ = [
    "ClusterConfig",
    "ProcessRole",
    "StopResult",
    "TerminationConfig",
    "default_signal_ladder",
    "ProcessExitProbe",
    "ProcessHandle",
    "check_os_release",
    "check_prerequisites",
    "detect_arch",
    "detect_os",
    "InstanceManager",
    "LocalInstance",
    "ClusterBootstrapper",
    "MembershipProbe",
]
