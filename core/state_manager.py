"""
Core Module - State Manager.

============================================================
RESPONSIBILITY
============================================================
Validated state machines for the cluster instance and the
deployment pipeline.

- Tracks current state
- Enforces a transition table
- Records transition history
- Notifies listeners on change

============================================================
INSTANCE LIFECYCLE
============================================================
NOT_STARTED -> STARTING -> RUNNING -> STOPPING -> STOPPED
                  |                      ^
                  +----------------------+   (bootstrap aborted)

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Set, TypeVar
import asyncio
import logging

from .exceptions import StateTransitionError


# ============================================================
# INSTANCE STATE
# ============================================================

class InstanceState(Enum):
    """Lifecycle of one bootstrapped cluster instance."""

    NOT_STARTED = "not_started"
    """Instance object exists, nothing spawned."""

    STARTING = "starting"
    """Agents are being spawned or awaited."""

    RUNNING = "running"
    """Both agents are live and the scheduler sees the discovery agent."""

    STOPPING = "stopping"
    """Termination in progress."""

    STOPPED = "stopped"
    """All owned processes have been signalled."""


INSTANCE_TRANSITIONS: Dict[InstanceState, Set[InstanceState]] = {
    InstanceState.NOT_STARTED: {
        InstanceState.STARTING,
        InstanceState.STOPPED,
    },
    InstanceState.STARTING: {
        InstanceState.RUNNING,
        InstanceState.STOPPING,
    },
    InstanceState.RUNNING: {
        InstanceState.STOPPING,
    },
    InstanceState.STOPPING: {
        InstanceState.STOPPED,
    },
    InstanceState.STOPPED: set(),  # Terminal
}


# ============================================================
# TRANSITION RECORD
# ============================================================

S = TypeVar("S", bound=Enum)


@dataclass
class StateTransition(Generic[S]):
    """Record of a state transition."""

    transition_id: str
    from_state: S
    to_state: S
    reason: str
    triggered_by: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "transition_id": self.transition_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "triggered_by": self.triggered_by,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }


StateListener = Callable[[StateTransition], Awaitable[None]]


# ============================================================
# STATE MANAGER
# ============================================================

class StateManager(Generic[S]):
    """
    State machine with transition validation and notifications.

    The transition table is supplied by the owner, so the same
    manager drives both instance lifecycle and pipeline progress.
    """

    def __init__(
        self,
        transitions: Dict[S, Set[S]],
        initial_state: S,
        name: str = "state",
        max_history: int = 100,
    ):
        """
        Initialize state manager.

        Args:
            transitions: Valid targets for each state
            initial_state: Initial state
            name: Label used in logs and errors
            max_history: Transitions to keep
        """
        self._transitions = transitions
        self._state = initial_state
        self._name = name
        self._reason = "initialized"
        self._transition_count = 0
        self._history: List[StateTransition] = []
        self._max_history = max_history
        self._listeners: List[StateListener] = []

        self._lock = asyncio.Lock()
        self._logger = logging.getLogger(__name__)

    @property
    def state(self) -> S:
        """Get current state."""
        return self._state

    @property
    def reason(self) -> str:
        """Get reason for current state."""
        return self._reason

    @property
    def last_transition(self) -> Optional[StateTransition]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: int = 10) -> List[StateTransition]:
        """Get transition history."""
        return self._history[-limit:]

    def can_transition_to(self, target_state: S) -> bool:
        """Check if transition to target state is valid."""
        return target_state in self._transitions.get(self._state, set())

    async def transition_to(
        self,
        target_state: S,
        reason: str,
        triggered_by: str = "system",
        context: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Transition to a new state.

        Args:
            target_state: Target state
            reason: Reason for transition
            triggered_by: Who/what triggered the transition
            context: Additional context

        Returns:
            StateTransition record

        Raises:
            StateTransitionError: If transition is invalid
        """
        async with self._lock:
            if not self.can_transition_to(target_state):
                raise StateTransitionError(
                    message=(
                        f"Invalid {self._name} transition: "
                        f"{self._state.value} -> {target_state.value}"
                    ),
                    from_state=self._state.value,
                    to_state=target_state.value,
                    context={"reason": reason},
                )

            self._transition_count += 1
            transition = StateTransition(
                transition_id=f"{self._name}_transition_{self._transition_count}",
                from_state=self._state,
                to_state=target_state,
                reason=reason,
                triggered_by=triggered_by,
                context=context or {},
            )

            old_state = self._state
            self._state = target_state
            self._reason = reason

            self._history.append(transition)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

            self._logger.info(
                f"{self._name} transition: {old_state.value} -> {target_state.value} "
                f"| reason={reason} | triggered_by={triggered_by}"
            )

        await self._notify_listeners(transition)
        return transition

    def register_listener(self, listener: StateListener) -> None:
        """Register a state change listener."""
        self._listeners.append(listener)

    def unregister_listener(self, listener: StateListener) -> None:
        """Unregister a state change listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify_listeners(self, transition: StateTransition) -> None:
        # Listener failures never block a transition
        for listener in self._listeners:
            try:
                await listener(transition)
            except Exception as e:
                self._logger.error(
                    f"State listener error: {e}",
                    exc_info=True,
                )


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "InstanceState",
    "INSTANCE_TRANSITIONS",
    "StateTransition",
    "StateListener",
    "StateManager",
]
