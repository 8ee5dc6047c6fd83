"""
Cluster - Instance Lifecycle.

============================================================
RESPONSIBILITY
============================================================
Owns the processes of one bootstrapped cluster and the single
"active instance" slot.

- LocalInstance: the two agent handles + lifecycle state
- InstanceManager: reserve / publish / release / stop_active,
  all behind one asyncio.Lock

============================================================
INVARIANTS
============================================================
- At most one instance is reserved or active at a time
- A second bootstrap is rejected, never queued
- An instance is visible to stop_active() only after publish()

============================================================
"""

import asyncio
import logging
from typing import Dict, List, Optional

from core.exceptions import (
    BootstrapInProgressError,
    InstanceAlreadyActiveError,
    StateTransitionError,
    TerminationError,
)
from core.state_manager import INSTANCE_TRANSITIONS, InstanceState, StateManager
from .models import ProcessRole, StopResult, TerminationConfig
from .process_handle import ProcessHandle


# ============================================================
# LOCAL INSTANCE
# ============================================================

class LocalInstance:
    """Handles to the discovery and scheduler agents of one cluster."""

    def __init__(self, instance_id: str = "local"):
        self.instance_id = instance_id
        self.discovery: Optional[ProcessHandle] = None
        self.scheduler: Optional[ProcessHandle] = None
        self.stop_errors: List[TerminationError] = []
        self._state = StateManager(
            INSTANCE_TRANSITIONS,
            InstanceState.NOT_STARTED,
            name="instance",
        )
        self._logger = logging.getLogger(__name__)

    @property
    def state(self) -> InstanceState:
        return self._state.state

    @property
    def state_manager(self) -> StateManager:
        return self._state

    def set_discovery(self, handle: ProcessHandle) -> None:
        self.discovery = handle

    def set_scheduler(self, handle: ProcessHandle) -> None:
        self.scheduler = handle

    def handles(self) -> List[ProcessHandle]:
        """Owned handles, scheduler first (stop order)."""
        return [h for h in (self.scheduler, self.discovery) if h is not None]

    def all_alive(self) -> bool:
        handles = self.handles()
        return len(handles) == 2 and all(h.is_alive for h in handles)

    async def mark_starting(self) -> None:
        await self._state.transition_to(InstanceState.STARTING, "bootstrap started")

    async def mark_running(self) -> None:
        await self._state.transition_to(InstanceState.RUNNING, "scheduler sees discovery agent")

    async def stop(
        self,
        config: Optional[TerminationConfig] = None,
        reason: str = "stop requested",
    ) -> Dict[ProcessRole, StopResult]:
        """
        Terminate scheduler then discovery agent, best effort.

        Both handles are always attempted; a failure on one does
        not skip the other.
        """
        if self.state == InstanceState.STOPPED:
            return {}

        if self.state == InstanceState.NOT_STARTED:
            await self._state.transition_to(InstanceState.STOPPED, reason)
            return {}

        if self.state != InstanceState.STOPPING:
            await self._state.transition_to(InstanceState.STOPPING, reason)

        results: Dict[ProcessRole, StopResult] = {}
        self.stop_errors = []
        for handle in self.handles():
            cause: Optional[Exception] = None
            try:
                results[handle.role] = await handle.terminate(config)
            except Exception as e:
                cause = e
                results[handle.role] = StopResult.STOP_FAILED

            if results[handle.role].is_failure:
                error = TerminationError(
                    message=f"{handle.role.value} agent (PID: {handle.pid}) could not be stopped",
                    role=handle.role.value,
                    cause=cause,
                )
                self.stop_errors.append(error)
                self._logger.error(error.to_log_format(), exc_info=cause is not None)

        await self._state.transition_to(InstanceState.STOPPED, reason)

        if self.stop_errors:
            failed = ", ".join(e.role for e in self.stop_errors)
            self._logger.error(f"Instance {self.instance_id} stop incomplete: {failed}")
        else:
            self._logger.info(f"Instance {self.instance_id} stopped")
        return results

    def to_dict(self) -> Dict[str, object]:
        return {
            "instance_id": self.instance_id,
            "state": self.state.value,
            "discovery_pid": self.discovery.pid if self.discovery else None,
            "scheduler_pid": self.scheduler.pid if self.scheduler else None,
        }


# ============================================================
# INSTANCE MANAGER
# ============================================================

class InstanceManager:
    """
    The single active-instance slot, with single-writer discipline.

    Bootstrap reserves the slot, publishes only once the whole
    pipeline is ready, and releases it on failure. stop_active()
    only ever sees published instances.
    """

    def __init__(self, termination: Optional[TerminationConfig] = None):
        self._termination = termination
        self._lock = asyncio.Lock()
        self._active: Optional[LocalInstance] = None
        self._pending: Optional[LocalInstance] = None
        self._counter = 0
        self._logger = logging.getLogger(__name__)

    @property
    def active(self) -> Optional[LocalInstance]:
        """The published instance, if any."""
        return self._active

    @property
    def is_busy(self) -> bool:
        """A bootstrap is in flight or an instance is active."""
        return self._active is not None or self._pending is not None

    async def reserve(self) -> LocalInstance:
        """
        Claim the slot for a new bootstrap.

        Raises:
            InstanceAlreadyActiveError: An instance is running
            BootstrapInProgressError: Another bootstrap holds the slot
        """
        async with self._lock:
            if self._active is not None:
                raise InstanceAlreadyActiveError(
                    context={"instance_id": self._active.instance_id},
                )
            if self._pending is not None:
                raise BootstrapInProgressError(
                    context={"instance_id": self._pending.instance_id},
                )
            self._counter += 1
            self._pending = LocalInstance(instance_id=f"local-{self._counter}")
            return self._pending

    async def publish(self, instance: LocalInstance) -> None:
        """Make a fully started instance the active one."""
        async with self._lock:
            if instance is not self._pending:
                raise StateTransitionError(
                    message=f"Instance {instance.instance_id} was not reserved",
                )
            self._pending = None
            self._active = instance
            self._logger.info(f"Instance {instance.instance_id} is now active")

    async def release(self, instance: LocalInstance) -> None:
        """Give up a reservation after a failed bootstrap."""
        async with self._lock:
            if self._pending is instance:
                self._pending = None

    async def stop_active(self) -> Dict[ProcessRole, StopResult]:
        """
        Stop the active instance and clear the slot.

        No-op (empty result) when nothing is active.
        """
        async with self._lock:
            instance = self._active
            if instance is None:
                return {}
            try:
                return await instance.stop(self._termination, reason="stop_active")
            finally:
                self._active = None


__all__ = [
    "LocalInstance",
    "InstanceManager",
]
