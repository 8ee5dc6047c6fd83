"""
Polling - Models.

============================================================
RESPONSIBILITY
============================================================
Data models for readiness polling.

- Outcome of a single readiness check
- Terminal status of a whole polling loop
- Bounded retry policy shared by every poll site

CRITICAL CONSTRAINTS:
- No unbounded loops: every policy has a maximum duration
- Deterministic delays

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ============================================================
# POLL OUTCOME
# ============================================================

class PollOutcome(Enum):
    """Result of one readiness check."""

    READY = "ready"
    """Ready condition satisfied."""

    NOT_READY = "not_ready"
    """Probe succeeded, condition not (yet) satisfied."""

    PROBE_ERROR = "probe_error"
    """Probe failed in a tolerated way (transport error, nonzero exit)."""


class PollStatus(Enum):
    """How a polling loop ended."""

    READY = "ready"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self == PollStatus.READY


# ============================================================
# POLL RESULT
# ============================================================

@dataclass
class PollResult:
    """Result of a complete polling loop."""

    probe: str
    status: PollStatus
    attempts: int
    elapsed_seconds: float
    last_outcome: Optional[PollOutcome] = None
    error: Optional[Exception] = None
    outcomes: List[PollOutcome] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        """Check if the loop ended ready."""
        return self.status.is_success

    @property
    def probe_errors(self) -> int:
        """Number of tolerated probe errors seen."""
        return sum(1 for o in self.outcomes if o == PollOutcome.PROBE_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "probe": self.probe,
            "status": self.status.value,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "probe_errors": self.probe_errors,
            "error": str(self.error) if self.error else None,
        }


# ============================================================
# RETRY POLICY
# ============================================================

@dataclass
class RetryPolicy:
    """
    Bounded retry policy for a polling loop.

    SAFETY: max_duration_seconds is mandatory; max_attempts is an
    additional, optional bound.
    """

    interval_seconds: float = 1.0
    """Delay before the second attempt."""

    max_duration_seconds: float = 120.0
    """Wall-clock ceiling for the whole loop."""

    max_attempts: Optional[int] = None
    """Maximum number of checks (None = bounded by duration only)."""

    backoff_multiplier: float = 1.0
    """Delay growth per attempt (1.0 = fixed interval)."""

    max_interval_seconds: float = 30.0
    """Upper bound for a single delay."""

    def delay_for(self, attempt: int) -> float:
        """
        Delay to wait after `attempt` checks have been made.

        Args:
            attempt: Number of checks made so far (1-based)
        """
        delay = self.interval_seconds * (self.backoff_multiplier ** max(0, attempt - 1))
        return min(delay, self.max_interval_seconds)

    def validate(self, name: str = "retry") -> List[str]:
        """Validate policy, return list of errors."""
        errors = []

        if self.interval_seconds <= 0:
            errors.append(f"{name}.interval_seconds must be positive")
        if self.max_duration_seconds <= 0:
            errors.append(f"{name}.max_duration_seconds must be positive")
        if self.max_attempts is not None and self.max_attempts < 1:
            errors.append(f"{name}.max_attempts must be at least 1")
        if self.backoff_multiplier < 1.0:
            errors.append(f"{name}.backoff_multiplier must be at least 1.0")
        if self.max_interval_seconds < self.interval_seconds:
            errors.append(f"{name}.max_interval_seconds must not be below interval_seconds")

        return errors

    @classmethod
    def fixed(
        cls,
        interval_seconds: float,
        max_duration_seconds: float,
        max_attempts: Optional[int] = None,
    ) -> "RetryPolicy":
        """Fixed-interval policy."""
        return cls(
            interval_seconds=interval_seconds,
            max_duration_seconds=max_duration_seconds,
            max_attempts=max_attempts,
            backoff_multiplier=1.0,
            max_interval_seconds=interval_seconds,
        )

    @classmethod
    def exponential(
        cls,
        initial_seconds: float,
        max_interval_seconds: float,
        max_duration_seconds: float,
        multiplier: float = 2.0,
    ) -> "RetryPolicy":
        """Exponential backoff policy."""
        return cls(
            interval_seconds=initial_seconds,
            max_duration_seconds=max_duration_seconds,
            backoff_multiplier=multiplier,
            max_interval_seconds=max_interval_seconds,
        )


__all__ = [
    "PollOutcome",
    "PollStatus",
    "PollResult",
    "RetryPolicy",
]
