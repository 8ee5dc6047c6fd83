"""
Cluster - Prerequisites.

============================================================
PURPOSE
============================================================
Checks that must pass before anything is spawned.

- Both agent binaries are present (answer `--version`)
- Optionally, the host runs a supported Ubuntu release
- Target architecture for job templates

============================================================
"""

import logging
import platform
from typing import Optional

from core.constants import ARCH_ALIASES, MIN_UBUNTU_MAJOR
from core.exceptions import (
    DispatchError,
    MissingDependency,
    MissingDependencyError,
    UnsupportedPlatformError,
)
from shell.runner import CommandRunner


logger = logging.getLogger(__name__)


async def check_prerequisites(
    runner: CommandRunner,
    discovery_binary: str,
    scheduler_binary: str,
) -> None:
    """
    Verify both agent binaries are installed.

    Raises:
        MissingDependencyError: Naming the discovery agent, the
            scheduler agent, or both
    """
    discovery_present = await runner.is_program_present(discovery_binary)
    scheduler_present = await runner.is_program_present(scheduler_binary)

    logger.info(
        f"Prerequisites | {discovery_binary}={'OK' if discovery_present else 'MISSING'} "
        f"| {scheduler_binary}={'OK' if scheduler_present else 'MISSING'}"
    )

    if discovery_present and scheduler_present:
        return
    if scheduler_present:
        raise MissingDependencyError(MissingDependency.DISCOVERY)
    if discovery_present:
        raise MissingDependencyError(MissingDependency.SCHEDULER)
    raise MissingDependencyError(MissingDependency.BOTH)


async def check_os_release(
    runner: CommandRunner,
    min_major: int = MIN_UBUNTU_MAJOR,
) -> str:
    """
    Require an Ubuntu release of at least `min_major`.

    Returns:
        The release string reported by lsb_release

    Raises:
        UnsupportedPlatformError
    """
    try:
        result = await runner.run("lsb_release -r -s")
    except DispatchError as e:
        raise UnsupportedPlatformError(
            "Unable to confirm compatible OS version",
            cause=e,
        )

    if not result.succeeded:
        raise UnsupportedPlatformError(
            "Unable to confirm compatible OS version",
            context={"exit_code": result.exit_code},
        )

    release = result.stdout.strip()
    major = release.split(".", 1)[0]
    try:
        major_num = int(major)
    except ValueError:
        raise UnsupportedPlatformError(
            f"Unrecognised OS release '{release}'",
            context={"release": release},
        )

    if major_num < min_major:
        raise UnsupportedPlatformError(
            f"Fermyon requires Ubuntu {min_major} or above",
            context={"release": release},
        )
    return release


def detect_arch(machine: Optional[str] = None) -> str:
    """
    Map the host machine type to the architecture name used in
    job templates (amd64, arm64). Unknown types pass through
    lower-cased.
    """
    machine = (machine or platform.machine() or "").lower()
    return ARCH_ALIASES.get(machine, machine)


def detect_os() -> str:
    """Operating system name used in job templates."""
    return platform.system().lower() or "linux"


__all__ = [
    "check_prerequisites",
    "check_os_release",
    "detect_arch",
    "detect_os",
]
