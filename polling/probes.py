"""
Polling - Probes.

============================================================
PURPOSE
============================================================
Readiness probes consumed by the ReadinessPoller.

AVAILABLE PROBES:
- CommandProbe: run a command, look for a token in stdout
- HttpProbe: GET a URL, look for a token in the body

A probe answers READY / NOT_READY / PROBE_ERROR. Transport
failures are answered, not raised: an HTTP 404 while a service
warms up is simply "not ready yet".

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from core.exceptions import DispatchError
from shell.runner import CommandRunner
from .models import PollOutcome


logger = logging.getLogger(__name__)


# ============================================================
# PROBE INTERFACE
# ============================================================

class Probe(ABC):
    """Abstract readiness probe."""

    name: str = "probe"

    @abstractmethod
    async def check(self) -> PollOutcome:
        """
        Perform one readiness check.

        May raise for conditions the poller should classify
        (a non-recoverable error ends the loop).
        """
        pass

    def describe(self) -> str:
        return self.name


# ============================================================
# COMMAND PROBE
# ============================================================

class CommandProbe(Probe):
    """Ready iff the command exits 0 and stdout contains `ready_token`."""

    def __init__(
        self,
        runner: CommandRunner,
        command: str,
        ready_token: str,
        name: Optional[str] = None,
    ):
        self._runner = runner
        self.command = command
        self.ready_token = ready_token
        self.name = name or command

    async def check(self) -> PollOutcome:
        try:
            result = await self._runner.run(self.command)
        except DispatchError as e:
            logger.debug(f"[{self.name}] dispatch failed: {e.message}")
            return PollOutcome.PROBE_ERROR

        if not result.succeeded:
            logger.debug(f"[{self.name}] exit {result.exit_code}: {result.stderr.strip()}")
            return PollOutcome.PROBE_ERROR

        if self.ready_token in result.stdout:
            return PollOutcome.READY
        return PollOutcome.NOT_READY


# ============================================================
# HTTP PROBE
# ============================================================

class HttpProbe(Probe):
    """
    Ready iff a GET returns 2xx with `ready_token` in the body.

    Non-2xx responses, connection errors and request timeouts are
    PROBE_ERROR. A session may be injected; otherwise one is
    opened per check.
    """

    def __init__(
        self,
        url: str,
        ready_token: str,
        request_timeout_seconds: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
        name: Optional[str] = None,
    ):
        self.url = url
        self.ready_token = ready_token
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._session = session
        self.name = name or f"GET {url}"

    async def check(self) -> PollOutcome:
        try:
            if self._session is not None:
                return await self._get(self._session)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._get(session)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"[{self.name}] transport error: {type(e).__name__}: {e}")
            return PollOutcome.PROBE_ERROR

    async def _get(self, session: aiohttp.ClientSession) -> PollOutcome:
        async with session.get(self.url, timeout=self._timeout) as response:
            if not 200 <= response.status < 300:
                logger.debug(f"[{self.name}] HTTP {response.status}")
                return PollOutcome.PROBE_ERROR
            body = await response.text()

        if self.ready_token in body:
            return PollOutcome.READY
        return PollOutcome.NOT_READY


__all__ = [
    "Probe",
    "CommandProbe",
    "HttpProbe",
]
