"""
Shell Package.

============================================================
PURPOSE
============================================================
Command execution boundary consumed by probes, the
bootstrapper and the job deployer.

AVAILABLE RUNNERS:
- ShellCommandRunner: asyncio subprocess shell
- ScriptedCommandRunner: For testing

============================================================
"""

from .runner import (
    CommandResult,
    CommandRunner,
    ShellCommandRunner,
    join_command,
)
from .mock import ScriptedCommandRunner, ScriptRule


__all__ = [
    "CommandResult",
    "CommandRunner",
    "ShellCommandRunner",
    "ScriptedCommandRunner",
    "ScriptRule",
    "join_command",
]
