"""
Tests for Prerequisite Checks.

============================================================
PURPOSE
============================================================
Verify that missing agents are reported precisely and that
platform checks fail closed.

============================================================
"""

import pytest

from cluster.prerequisites import (
    check_os_release,
    check_prerequisites,
    detect_arch,
)
from core.exceptions import (
    MissingDependency,
    MissingDependencyError,
    UnsupportedPlatformError,
)
from shell.mock import ScriptedCommandRunner


class TestCheckPrerequisites:
    """Tests for check_prerequisites."""

    @pytest.mark.asyncio
    async def test_both_present(self):
        runner = ScriptedCommandRunner().ok("consul --version").ok("nomad --version")

        await check_prerequisites(runner, "consul", "nomad")

        assert runner.history == ["consul --version", "nomad --version"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("present,missing", [
        (["nomad"], MissingDependency.DISCOVERY),
        (["consul"], MissingDependency.SCHEDULER),
        ([], MissingDependency.BOTH),
    ])
    async def test_missing_reported_exactly(self, present, missing):
        runner = ScriptedCommandRunner()
        for program in present:
            runner.ok(f"{program} --version")

        with pytest.raises(MissingDependencyError) as exc_info:
            await check_prerequisites(runner, "consul", "nomad")

        assert exc_info.value.missing == missing

    @pytest.mark.asyncio
    async def test_nonzero_version_counts_as_missing(self):
        runner = ScriptedCommandRunner().ok("consul --version").fail("nomad --version", exit_code=127)

        with pytest.raises(MissingDependencyError) as exc_info:
            await check_prerequisites(runner, "consul", "nomad")

        assert exc_info.value.missing == MissingDependency.SCHEDULER


class TestCheckOsRelease:
    """Tests for check_os_release."""

    @pytest.mark.asyncio
    async def test_supported_release(self):
        runner = ScriptedCommandRunner().ok("lsb_release -r -s", stdout="22.04\n")

        assert await check_os_release(runner) == "22.04"

    @pytest.mark.asyncio
    async def test_old_release_rejected(self):
        runner = ScriptedCommandRunner().ok("lsb_release -r -s", stdout="18.04\n")

        with pytest.raises(UnsupportedPlatformError) as exc_info:
            await check_os_release(runner)

        assert "Ubuntu 20 or above" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unparseable_release_rejected(self):
        runner = ScriptedCommandRunner().ok("lsb_release -r -s", stdout="n/a\n")

        with pytest.raises(UnsupportedPlatformError):
            await check_os_release(runner)

    @pytest.mark.asyncio
    async def test_missing_lsb_release_rejected(self):
        with pytest.raises(UnsupportedPlatformError) as exc_info:
            await check_os_release(ScriptedCommandRunner())

        assert exc_info.value.message == "Unable to confirm compatible OS version"


class TestDetectArch:
    """Tests for detect_arch."""

    @pytest.mark.parametrize("machine,arch", [
        ("x86_64", "amd64"),
        ("AMD64", "amd64"),
        ("aarch64", "arm64"),
        ("arm64", "arm64"),
        ("riscv64", "riscv64"),
    ])
    def test_aliases(self, machine, arch):
        assert detect_arch(machine) == arch
