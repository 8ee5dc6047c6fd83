"""
Deployment - Health Parsing.

============================================================
PURPOSE
============================================================
The text contract for `nomad job status <name>` output.

RULE:
- Work on trimmed, non-blank lines
- Find the line equal to "Deployed"
- After it, take the first line starting with the job name
- Fields: name, desired, placed, healthy, unhealthy, progress
- Healthy iff placed == "1", healthy == "1", unhealthy == "0"

Anything else (marker absent, row absent, short row) is
"not healthy yet", never an error.

============================================================
"""

from typing import Iterable, List, Optional, Union

from core.constants import DEPLOYED_MARKER
from .models import JobHealth


StatusText = Union[str, Iterable[str]]


def _clean_lines(status: StatusText) -> List[str]:
    if isinstance(status, str):
        status = status.splitlines()
    return [line.strip() for line in status if line and line.strip()]


def find_health_fields(status: StatusText, job_name: str) -> Optional[List[str]]:
    """
    Locate the job's summary row after the "Deployed" marker.

    Returns:
        Whitespace-split fields of the row, or None
    """
    lines = _clean_lines(status)
    try:
        marker = lines.index(DEPLOYED_MARKER)
    except ValueError:
        return None

    for line in lines[marker + 1:]:
        if line.startswith(job_name):
            return line.split()
    return None


def parse_health(status: StatusText, job_name: str) -> bool:
    """
    Decide whether a job is healthy from its status text.

    Args:
        status: Status output, as one string or as lines
        job_name: Job (task group) name to look for

    Returns:
        True iff the job's row shows one placed, one healthy
        and zero unhealthy allocations
    """
    fields = find_health_fields(status, job_name)
    if fields is None or len(fields) < 5:
        return False

    _, _desired, placed, healthy, unhealthy = fields[:5]
    return placed == "1" and healthy == "1" and unhealthy == "0"


def parse_health_row(status: StatusText, job_name: str) -> Optional[JobHealth]:
    """Parse the job's row into counts, for reporting. None if absent or malformed."""
    fields = find_health_fields(status, job_name)
    if fields is None or len(fields) < 5:
        return None
    try:
        desired, placed, healthy, unhealthy = (int(f) for f in fields[1:5])
    except ValueError:
        return None
    return JobHealth(
        name=fields[0],
        desired=desired,
        placed=placed,
        healthy=healthy,
        unhealthy=unhealthy,
        progress=" ".join(fields[5:]),
    )


__all__ = [
    "find_health_fields",
    "parse_health",
    "parse_health_row",
]
