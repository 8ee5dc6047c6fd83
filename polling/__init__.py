"""
Polling Package.

Bounded readiness polling shared by the bootstrapper, the job
deployer and the pipeline's external health check.
"""

from .models import PollOutcome, PollResult, PollStatus, RetryPolicy
from .probes import CommandProbe, HttpProbe, Probe
from .poller import ReadinessPoller


__all__ = [
    "PollOutcome",
    "PollResult",
    "PollStatus",
    "RetryPolicy",
    "Probe",
    "CommandProbe",
    "HttpProbe",
    "ReadinessPoller",
]
