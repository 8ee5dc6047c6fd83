#!/usr/bin/env python3
"""
Fermyon Local Cluster - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the bootstrapper.

- Starts consul and nomad as child processes
- Deploys traefik, bindle and hippo in order
- Holds the cluster until Ctrl-C / SIGTERM
- Tears everything down on the way out

============================================================
USAGE
============================================================
Direct execution:
    python app.py --installer-dir ./local

Environment-based configuration (or a .env file):
    FERMYON_INSTALLER_DIR=./local FERMYON_TEARDOWN_POLICY=always python app.py

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import async_main
from orchestrator.cli import main as cli_main
from orchestrator.core import Orchestrator
from orchestrator.models import PipelineResult


# ============================================================
# RESULT SUMMARY
# ============================================================

def print_summary(orchestrator: Orchestrator, result: PipelineResult) -> None:
    """Print the start-up summary and, on success, the service URLs."""
    print(f"\nStart-up Result: {'SUCCESS' if result.success else 'FAILED'}")
    print(f"Duration: {result.duration_seconds:.2f}s")
    print(f"Stages completed: {result.stages_completed}/{len(result.stage_results)}")

    if result.success:
        print(f"Hippo:  {orchestrator.config.hippo_url}")
        print(f"Bindle: {orchestrator.config.bindle_url}")


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args) -> int:
    """
    Run the bootstrapper with the start-up summary.

    Args:
        args: Parsed CLI arguments

    Returns:
        Exit code
    """
    return await async_main(args, on_result=print_summary)


def main() -> int:
    """Main entry point."""
    return cli_main(on_result=print_summary)


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
