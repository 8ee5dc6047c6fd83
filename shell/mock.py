"""
Shell - Scripted Command Runner.

============================================================
PURPOSE
============================================================
Deterministic command runner for testing probes, job
submission and the full deployment pipeline without agents.

FEATURES:
- Responses scripted per command prefix
- Sequences of responses, the last one repeats
- Error injection (DispatchError or any exception)
- Full call history

============================================================
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Union

from core.exceptions import DispatchError
from .runner import CommandResult, CommandRunner


logger = logging.getLogger(__name__)


Response = Union[CommandResult, Exception, Callable[[str], CommandResult]]


# ============================================================
# SCRIPT RULE
# ============================================================

@dataclass
class ScriptRule:
    """Responses for every command starting with `prefix`."""

    prefix: str
    responses: Deque[Response] = field(default_factory=deque)
    calls: int = 0

    def next_response(self) -> Response:
        self.calls += 1
        if len(self.responses) > 1:
            return self.responses.popleft()
        return self.responses[0]


# ============================================================
# SCRIPTED RUNNER
# ============================================================

class ScriptedCommandRunner(CommandRunner):
    """
    Command runner driven by a script.

    The longest matching prefix wins. Unscripted commands raise
    DispatchError, like a binary that does not exist.
    """

    def __init__(self, latency_seconds: float = 0.0):
        self._rules: Dict[str, ScriptRule] = {}
        self._latency = latency_seconds
        self.history: List[str] = []

    def on(self, prefix: str, *responses: Response) -> "ScriptedCommandRunner":
        """
        Script responses for commands starting with `prefix`.

        Args:
            prefix: Command prefix to match
            *responses: Results, exceptions, or callables, consumed in order
        """
        if not responses:
            raise ValueError("at least one response is required")
        self._rules[prefix] = ScriptRule(prefix=prefix, responses=deque(responses))
        return self

    def ok(self, prefix: str, stdout: str = "", stderr: str = "") -> "ScriptedCommandRunner":
        """Shortcut: exit 0 with the given output."""
        return self.on(prefix, CommandResult(prefix, 0, stdout, stderr))

    def fail(self, prefix: str, exit_code: int = 1, stderr: str = "") -> "ScriptedCommandRunner":
        """Shortcut: nonzero exit with the given stderr."""
        return self.on(prefix, CommandResult(prefix, exit_code, "", stderr))

    def calls_to(self, prefix: str) -> List[str]:
        """All executed commands starting with `prefix`."""
        return [c for c in self.history if c.startswith(prefix)]

    def _match(self, command: str) -> Optional[ScriptRule]:
        matches = [r for p, r in self._rules.items() if command.startswith(p)]
        if not matches:
            return None
        return max(matches, key=lambda r: len(r.prefix))

    async def run(self, command: str) -> CommandResult:
        self.history.append(command)
        if self._latency:
            await asyncio.sleep(self._latency)

        rule = self._match(command)
        if rule is None:
            raise DispatchError(
                message=f"No such command: {command}",
                command=command,
            )

        response = rule.next_response()
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(command)
        return CommandResult(
            command=command,
            exit_code=response.exit_code,
            stdout=response.stdout,
            stderr=response.stderr,
        )


__all__ = [
    "ScriptRule",
    "ScriptedCommandRunner",
]
