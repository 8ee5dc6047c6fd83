"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Single source of truth for the fixed values that the agents'
command-line surfaces and status output are matched against.

============================================================
"""

# ============================================================
# AGENT BINARIES
# ============================================================

DISCOVERY_BINARY = "consul"
SCHEDULER_BINARY = "nomad"

# Address the scheduler uses to reach the discovery agent
DISCOVERY_ADDRESS = "127.0.0.1:8500"

# Scheduler HTTP API (used for structured job status)
SCHEDULER_API_URL = "http://127.0.0.1:4646"

# ============================================================
# READINESS TOKENS
# ============================================================

# `nomad server members` lists the discovery-backed server as alive
MEMBERSHIP_READY_TOKEN = "alive"

# Registry health endpoint body
HEALTH_READY_TOKEN = "Healthy"
HEALTH_PATH = "/healthz"

# Section header in `nomad job status <name>` output
DEPLOYED_MARKER = "Deployed"

# ============================================================
# JOB DEFAULTS
# ============================================================

DEFAULT_HIPPO_URL = "http://hippo.local.fermyon.link"
DEFAULT_BINDLE_URL = "http://bindle.local.fermyon.link/v1"

# More than this many consecutive status-query failures fails a job
MAX_CONSECUTIVE_STATUS_FAILURES = 5

# ============================================================
# PLATFORM
# ============================================================

MIN_UBUNTU_MAJOR = 20

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}
