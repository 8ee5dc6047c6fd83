"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the local cluster bootstrapper.

- Provides argparse-based CLI
- Loads configuration from environment, then CLI overrides
- Reports which stage failed and why
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli --installer-dir ~/fermyon/installer/local
python -m orchestrator.cli --check-prereqs
python -m orchestrator.cli --teardown-policy never --log-level DEBUG
python -m orchestrator.cli --status-source auto --no-hold

============================================================
EXIT CODES
============================================================
0   cluster came up (and was stopped cleanly)
1   a stage failed, or configuration is invalid
2   an agent binary is missing
130 interrupted during start-up

============================================================
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

from cluster.models import TerminationConfig
from core.exceptions import (
    ClusterException,
    ConfigurationError,
    MissingDependencyError,
)
from polling.models import RetryPolicy
from .models import (
    OrchestratorConfig,
    PipelineResult,
    PipelineStage,
    StatusSourceKind,
    TeardownPolicy,
)
from .core import Orchestrator


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_MISSING_DEPENDENCY = 2
EXIT_INTERRUPTED = 130


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="fermyon-local",
        description="Bootstrap a local Consul + Nomad cluster and deploy traefik, bindle and hippo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Teardown Policies:
  always          - Stop consul and nomad on any stage failure (default)
  bootstrap_only  - Stop them only if bootstrap fails; keep them after job failures
  never           - Leave them running for debugging

Status Sources:
  cli   - Parse `nomad job status <job>` text (default)
  api   - Read the Nomad HTTP API deployment summary
  auto  - API, falling back to CLI text when the API is unreachable

Examples:
  %(prog)s --installer-dir ./local          # Start and hold until Ctrl-C
  %(prog)s --check-prereqs                  # Only check consul/nomad are installed
  %(prog)s --no-hold --teardown-policy never
        """
    )

    # --------------------------------------------------------
    # Cluster Options
    # --------------------------------------------------------

    cluster_group = parser.add_argument_group("Cluster Options")

    cluster_group.add_argument(
        "--installer-dir",
        type=str,
        metavar="PATH",
        help="Installer directory with etc/ and job/ (default: ./local)",
    )

    cluster_group.add_argument(
        "--data-dir",
        type=str,
        metavar="PATH",
        help="Agent data directory (default: <installer-dir>/data)",
    )

    cluster_group.add_argument(
        "--check-os",
        action="store_true",
        help="Require Ubuntu 20 or above before starting",
    )

    # --------------------------------------------------------
    # Job Options
    # --------------------------------------------------------

    job_group = parser.add_argument_group("Job Options")

    job_group.add_argument(
        "--os",
        type=str,
        dest="os_name",
        help="Target OS for job artifacts (default: detected)",
    )

    job_group.add_argument(
        "--arch",
        type=str,
        help="Target architecture for job artifacts (default: detected)",
    )

    job_group.add_argument(
        "--jobs-file",
        type=str,
        metavar="PATH",
        help="JSON job manifest replacing the built-in job list",
    )

    job_group.add_argument(
        "--status-source",
        type=str,
        choices=[s.value for s in StatusSourceKind],
        help="Where job health is read from (default: cli)",
    )

    job_group.add_argument(
        "--scheduler-api-url",
        type=str,
        metavar="URL",
        help="Nomad HTTP API base URL",
    )

    # --------------------------------------------------------
    # Registry Options
    # --------------------------------------------------------

    registry_group = parser.add_argument_group("Registry Options")

    registry_group.add_argument(
        "--hippo-url",
        type=str,
        metavar="URL",
        help="Hippo base URL, probed at /healthz",
    )

    registry_group.add_argument(
        "--bindle-url",
        type=str,
        metavar="URL",
        help="Bindle URL reported once ready",
    )

    # --------------------------------------------------------
    # Timeout Options
    # --------------------------------------------------------

    timeout_group = parser.add_argument_group("Timeout Options")

    timeout_group.add_argument(
        "--poll-interval",
        type=float,
        metavar="SECONDS",
        help="Interval between readiness checks (default: 1)",
    )

    timeout_group.add_argument(
        "--bootstrap-timeout",
        type=float,
        metavar="SECONDS",
        help="Max wait for nomad to see consul (default: 120)",
    )

    timeout_group.add_argument(
        "--job-timeout",
        type=float,
        metavar="SECONDS",
        help="Max wait for each job to become healthy (default: 300)",
    )

    timeout_group.add_argument(
        "--health-timeout",
        type=float,
        metavar="SECONDS",
        help="Max wait for hippo /healthz (default: 300)",
    )

    timeout_group.add_argument(
        "--stop-timeout",
        type=float,
        metavar="SECONDS",
        help="Max wait for each agent to exit after a signal (default: 10)",
    )

    # --------------------------------------------------------
    # Lifecycle Options
    # --------------------------------------------------------

    lifecycle_group = parser.add_argument_group("Lifecycle Options")

    lifecycle_group.add_argument(
        "--teardown-policy",
        type=str,
        choices=[p.value for p in TeardownPolicy],
        help="What to stop when a stage fails (default: always)",
    )

    lifecycle_group.add_argument(
        "--no-hold",
        action="store_true",
        help="Stop the cluster as soon as it is ready",
    )

    lifecycle_group.add_argument(
        "--escalate",
        action="store_true",
        help="Send the next signal when an agent outlives the stop timeout",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------

    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: text)",
    )

    # --------------------------------------------------------
    # Version/Info
    # --------------------------------------------------------

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "--show-stages",
        action="store_true",
        help="Show pipeline stages and exit",
    )

    parser.add_argument(
        "--check-prereqs",
        action="store_true",
        help="Check that consul and nomad are installed and exit",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Args:
        args: Parsed arguments

    Returns:
        List of validation errors
    """
    errors = []

    for name in ("poll_interval", "bootstrap_timeout", "job_timeout", "health_timeout", "stop_timeout"):
        value = getattr(args, name)
        if value is not None and value <= 0:
            errors.append(f"--{name.replace('_', '-')} must be positive")

    if args.installer_dir and not Path(args.installer_dir).is_dir():
        errors.append(f"--installer-dir does not exist: {args.installer_dir}")

    if args.jobs_file and not Path(args.jobs_file).is_file():
        errors.append(f"--jobs-file does not exist: {args.jobs_file}")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> OrchestratorConfig:
    """
    Build orchestrator configuration: environment first, CLI on top.

    Args:
        args: Parsed arguments

    Returns:
        OrchestratorConfig instance
    """
    config = OrchestratorConfig.from_env()
    cluster = config.cluster

    if args.installer_dir:
        cluster.installer_dir = Path(args.installer_dir)
    if args.data_dir:
        cluster.data_dir = Path(args.data_dir)
    if args.check_os:
        cluster.check_os_release = True

    interval = args.poll_interval or config.job_health.interval_seconds
    cluster.readiness = RetryPolicy.fixed(
        interval_seconds=interval,
        max_duration_seconds=args.bootstrap_timeout or cluster.readiness.max_duration_seconds,
    )
    config.job_health = RetryPolicy.fixed(
        interval_seconds=interval,
        max_duration_seconds=args.job_timeout or config.job_health.max_duration_seconds,
    )
    config.external_health = RetryPolicy.fixed(
        interval_seconds=interval,
        max_duration_seconds=args.health_timeout or config.external_health.max_duration_seconds,
    )
    if args.stop_timeout:
        cluster.termination = TerminationConfig(
            signals=cluster.termination.signals,
            wait=RetryPolicy.exponential(
                initial_seconds=0.05,
                max_interval_seconds=1.0,
                max_duration_seconds=args.stop_timeout,
            ),
            escalate_on_timeout=cluster.termination.escalate_on_timeout,
        )
    if args.escalate:
        cluster.termination.escalate_on_timeout = True

    if args.os_name:
        config.os_name = args.os_name
    if args.arch:
        config.arch = args.arch
    if args.jobs_file:
        config.jobs_file = args.jobs_file
    if args.status_source:
        config.status_source = StatusSourceKind(args.status_source)
    if args.scheduler_api_url:
        config.scheduler_api_url = args.scheduler_api_url
    if args.hippo_url:
        config.hippo_url = args.hippo_url
    if args.bindle_url:
        config.bindle_url = args.bindle_url
    if args.teardown_policy:
        config.teardown_policy = TeardownPolicy(args.teardown_policy)
    if args.no_hold:
        config.hold = False
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    return config


# ============================================================
# SHOW STAGES
# ============================================================

def show_stages() -> None:
    """Print pipeline stages."""
    print("\nPipeline stages")
    print("=" * 60)

    for i, stage in enumerate(PipelineStage.get_ordered_stages(), 1):
        print(f"  {i:2d}. [{stage.order:02d}] {stage.stage_id:24s} - {stage.description}")

    print()


# ============================================================
# RESULT REPORTING
# ============================================================

def exit_code_for(result: PipelineResult, interrupted: bool) -> int:
    """Map a pipeline result to a process exit code."""
    if result.success:
        return EXIT_OK
    if interrupted or result.cancelled:
        return EXIT_INTERRUPTED
    if result.error_type == MissingDependencyError.__name__:
        return EXIT_MISSING_DEPENDENCY
    return EXIT_FAILURE


def report_failure(result: PipelineResult) -> None:
    """Tell the user which stage failed and why."""
    stage = result.failed_stage.stage_id if result.failed_stage else "unknown"
    print(f"Error: stage '{stage}' failed: {result.error}", file=sys.stderr)

    failed = result.stage_results[-1] if result.stage_results else None
    stderr = failed.context.get("stderr") if failed else None
    if stderr:
        print(stderr, file=sys.stderr)

    if result.teardown:
        stops = ", ".join(f"{role}={outcome}" for role, outcome in result.teardown.items())
        print(f"Teardown: {stops}", file=sys.stderr)


# ============================================================
# MAIN ENTRY POINT
# ============================================================

ResultHook = Callable[[Orchestrator, PipelineResult], None]


async def async_main(args: argparse.Namespace, on_result: Optional[ResultHook] = None) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments
        on_result: Called with the orchestrator and its result once the run ends

    Returns:
        Exit code
    """
    try:
        orchestrator = Orchestrator(config=build_config(args))
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE
    except ValueError as e:
        print(f"Error: invalid environment setting: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if args.check_prereqs:
        try:
            await orchestrator.check_prerequisites()
        except MissingDependencyError as e:
            print(e.message, file=sys.stderr)
            return EXIT_MISSING_DEPENDENCY
        except ClusterException as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return EXIT_FAILURE
        print("consul and nomad are installed")
        return EXIT_OK

    try:
        result = await orchestrator.run()
    except ClusterException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE

    if on_result is not None:
        on_result(orchestrator, result)

    if not result.success:
        report_failure(result)
    elif orchestrator.interrupted:
        print("Cluster stopped")

    return exit_code_for(result, orchestrator.interrupted)


def main(argv: Optional[List[str]] = None, on_result: Optional[ResultHook] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        on_result: Passed through to async_main

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.show_stages:
        show_stages()
        return EXIT_OK

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_FAILURE

    print_banner(args)

    try:
        return asyncio.run(async_main(args, on_result))
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


def print_banner(args: argparse.Namespace) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  FERMYON LOCAL CLUSTER")
    print("  consul + nomad + traefik + bindle + hippo")
    print("=" * 60)
    print(f"  Installer:       {args.installer_dir or '(default)'}")
    print(f"  Teardown Policy: {args.teardown_policy or '(default)'}")
    print(f"  Status Source:   {args.status_source or '(default)'}")
    print(f"  Hold:            {'no' if args.no_hold else 'until Ctrl-C'}")
    print("=" * 60)
    print()


if __name__ == "__main__":
    sys.exit(main())
