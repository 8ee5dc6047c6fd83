"""
Deployment - Job Status Sources.

============================================================
RESPONSIBILITY
============================================================
Answers "is this job healthy yet?" for the job deployer.

AVAILABLE SOURCES:
- CliStatusSource: `nomad job status <name>` + text contract
- ApiStatusSource: scheduler HTTP API deployment JSON
- FallbackStatusSource: API first, CLI text when the API
  cannot be reached

A query that cannot be answered raises a CommandError:
- DispatchError: status could not be fetched at all
- NonZeroExitError: the scheduler answered with a failure

============================================================
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from core.constants import SCHEDULER_API_URL, SCHEDULER_BINARY
from core.exceptions import DispatchError, NonZeroExitError
from shell.runner import CommandRunner, join_command
from .health import parse_health, parse_health_row
from .models import JobHealth


logger = logging.getLogger(__name__)


# ============================================================
# STATUS SNAPSHOT
# ============================================================

@dataclass
class StatusSnapshot:
    """One successful status query."""

    job: str
    healthy: bool
    groups: List[JobHealth] = field(default_factory=list)
    source: str = ""

    def summary(self) -> str:
        if not self.groups:
            return f"{self.job}: no deployment summary"
        return ", ".join(
            f"{g.name} placed={g.placed} healthy={g.healthy} unhealthy={g.unhealthy}"
            for g in self.groups
        )


# ============================================================
# SOURCE INTERFACE
# ============================================================

class JobStatusSource(ABC):
    """Abstract job status source."""

    name: str = "status"

    @abstractmethod
    async def query(self, job: str) -> StatusSnapshot:
        """
        Query the job's deployment health once.

        Raises:
            DispatchError: Status could not be fetched
            NonZeroExitError: The scheduler reported a failure
        """
        pass


# ============================================================
# CLI SOURCE
# ============================================================

class CliStatusSource(JobStatusSource):
    """Text status from the scheduler CLI."""

    name = "cli"

    def __init__(self, runner: CommandRunner, scheduler_binary: str = SCHEDULER_BINARY):
        self._runner = runner
        self._binary = scheduler_binary

    def command_for(self, job: str) -> str:
        return join_command([self._binary, "job", "status", job])

    async def query(self, job: str) -> StatusSnapshot:
        command = self.command_for(job)
        result = await self._runner.run(command)

        if not result.succeeded:
            raise NonZeroExitError(
                message=f"Status query for {job} exited {result.exit_code}",
                exit_code=result.exit_code,
                stderr=result.stderr,
                command=command,
                stage=job,
            )

        row = parse_health_row(result.stdout, job)
        return StatusSnapshot(
            job=job,
            healthy=parse_health(result.stdout, job),
            groups=[row] if row else [],
            source=self.name,
        )


# ============================================================
# API SOURCE
# ============================================================

def health_from_deployment(job: str, payload: Optional[Dict[str, Any]]) -> StatusSnapshot:
    """
    Build a snapshot from a `/v1/job/<name>/deployment` response.

    Healthy iff there is at least one task group and every group
    has all desired allocations placed and healthy with none
    unhealthy. A null payload (no deployment yet) is not healthy.
    """
    if not payload:
        return StatusSnapshot(job=job, healthy=False, source="api")

    groups = []
    for name, group in sorted((payload.get("TaskGroups") or {}).items()):
        groups.append(JobHealth(
            name=name,
            desired=int(group.get("DesiredTotal", 0)),
            placed=int(group.get("PlacedAllocs", 0)),
            healthy=int(group.get("HealthyAllocs", 0)),
            unhealthy=int(group.get("UnhealthyAllocs", 0)),
            progress=str(payload.get("Status", "")),
        ))

    healthy = bool(groups) and all(
        g.desired >= 1
        and g.placed == g.desired
        and g.healthy == g.desired
        and g.unhealthy == 0
        for g in groups
    )
    return StatusSnapshot(job=job, healthy=healthy, groups=groups, source="api")


class ApiStatusSource(JobStatusSource):
    """Structured status from the scheduler HTTP API."""

    name = "api"

    def __init__(
        self,
        base_url: str = SCHEDULER_API_URL,
        request_timeout_seconds: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._session = session

    def url_for(self, job: str) -> str:
        return f"{self.base_url}/v1/job/{quote(job, safe='')}/deployment"

    async def query(self, job: str) -> StatusSnapshot:
        url = self.url_for(job)
        try:
            if self._session is not None:
                return await self._get(self._session, job, url)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._get(session, job, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DispatchError(
                message=f"Scheduler API unreachable: {type(e).__name__}: {e}",
                command=f"GET {url}",
                stage=job,
                cause=e,
            )

    async def _get(self, session: aiohttp.ClientSession, job: str, url: str) -> StatusSnapshot:
        async with session.get(url, timeout=self._timeout) as response:
            body = await response.text(errors="replace")
            status = response.status

        if not 200 <= status < 300:
            raise NonZeroExitError(
                message=f"Scheduler API returned HTTP {status} for {job}",
                exit_code=status,
                stderr=body,
                command=f"GET {url}",
                stage=job,
            )

        # Any 2xx body that is not a deployment document counts as a failed query
        try:
            return health_from_deployment(job, json.loads(body))
        except (ValueError, TypeError, AttributeError) as e:
            raise NonZeroExitError(
                message=f"Scheduler API returned an unreadable deployment for {job}",
                exit_code=status,
                stderr=body,
                command=f"GET {url}",
                stage=job,
                cause=e,
            )


# ============================================================
# FALLBACK SOURCE
# ============================================================

class FallbackStatusSource(JobStatusSource):
    """Primary source, falling back only when it cannot be reached."""

    name = "auto"

    def __init__(self, primary: JobStatusSource, fallback: JobStatusSource):
        self.primary = primary
        self.fallback = fallback

    async def query(self, job: str) -> StatusSnapshot:
        try:
            return await self.primary.query(job)
        except DispatchError as e:
            logger.debug(f"{self.primary.name} status unavailable for {job}, using {self.fallback.name}: {e.message}")
            return await self.fallback.query(job)


def create_status_source(
    kind: str,
    runner: CommandRunner,
    scheduler_binary: str = SCHEDULER_BINARY,
    api_url: str = SCHEDULER_API_URL,
) -> JobStatusSource:
    """
    Build the status source named by configuration.

    Args:
        kind: "cli", "api" or "auto"
    """
    if kind == "cli":
        return CliStatusSource(runner, scheduler_binary)
    if kind == "api":
        return ApiStatusSource(api_url)
    if kind == "auto":
        return FallbackStatusSource(
            ApiStatusSource(api_url),
            CliStatusSource(runner, scheduler_binary),
        )
    raise ValueError(f"Unknown status source: {kind}")


__all__ = [
    "StatusSnapshot",
    "JobStatusSource",
    "CliStatusSource",
    "health_from_deployment",
    "ApiStatusSource",
    "FallbackStatusSource",
    "create_status_source",
]
