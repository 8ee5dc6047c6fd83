"""
Shared fixtures for all test suites.

Fake agent handles and a recording spawner, used wherever a test
needs "processes" without starting any.
"""

from typing import List, Optional

import pytest

from cluster.models import ProcessRole, StopResult
from core.exceptions import DispatchError


# ============================================================
# FAKES
# ============================================================

class FakeHandle:
    """
    Stands in for a ProcessHandle.

    Every terminate() call is appended to `stop_log`; `stop_error`
    is raised instead of stopping, `stop_result` is returned for a
    live handle.
    """

    _next_pid = 1000

    def __init__(self, role: ProcessRole, stop_log: Optional[List[ProcessRole]] = None):
        FakeHandle._next_pid += 1
        self.role = role
        self.pid = FakeHandle._next_pid
        self.alive = True
        self.exit_code: Optional[int] = None
        self.stop_log = stop_log if stop_log is not None else []
        self.stop_result = StopResult.STOPPED
        self.stop_error: Optional[Exception] = None

    @property
    def is_alive(self) -> bool:
        return self.alive

    async def terminate(self, config=None) -> StopResult:
        self.stop_log.append(self.role)
        if self.stop_error:
            raise self.stop_error
        if not self.alive:
            return StopResult.NO_INSTANCE_RUNNING
        self.alive = False
        return self.stop_result


class FakeSpawner:
    """
    Records spawn calls and returns FakeHandles.

    `calls` holds the spawned roles in order, `invocations` the full
    (role, command, args) of each call. Spawning `fail_on` raises
    DispatchError.
    """

    def __init__(self):
        self.calls: List[ProcessRole] = []
        self.invocations = []
        self.handles = {}
        self.fail_on: Optional[ProcessRole] = None

    async def __call__(self, role, command, args, clock=None):
        self.calls.append(role)
        self.invocations.append((role, command, list(args)))
        if role == self.fail_on:
            raise DispatchError(message=f"cannot start {command}", command=command, stage=role.value)
        handle = FakeHandle(role)
        self.handles[role] = handle
        return handle

    def live_roles(self) -> List[ProcessRole]:
        return [role for role, handle in self.handles.items() if handle.alive]


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def make_handle():
    """Build a FakeHandle for `role`, optionally sharing a stop log."""

    def make(role: ProcessRole, stop_log: Optional[List[ProcessRole]] = None) -> FakeHandle:
        return FakeHandle(role, stop_log)

    return make
