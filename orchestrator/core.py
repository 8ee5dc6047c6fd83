"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Main orchestrator class - the single entrypoint that owns one
local cluster from start to stop.

- Validates configuration and sets up logging
- Runs the deployment pipeline once
- Holds the cluster until asked to stop
- Handles signals (SIGINT, SIGTERM)
- Guarantees teardown on the way out

============================================================
ARCHITECTURAL POSITION
============================================================
- This orchestrator has NO deployment logic
- It does NOT parse scheduler output
- It ONLY coordinates the pipeline and the instance slot

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from cluster.bootstrapper import ClusterBootstrapper
from cluster.instance import InstanceManager
from core.exceptions import ConfigurationError
from shell.runner import CommandRunner, ShellCommandRunner
from .models import OrchestratorConfig, PipelineResult, PipelineState
from .pipeline import DeploymentPipeline, PipelineBuilder


PipelineFactory = Callable[[OrchestratorConfig, InstanceManager], DeploymentPipeline]


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


def _default_pipeline_factory(config: OrchestratorConfig, manager: InstanceManager) -> DeploymentPipeline:
    return PipelineBuilder(config).with_instance_manager(manager).build()


# ============================================================
# ORCHESTRATOR
# ============================================================

class Orchestrator:
    """
    Local cluster orchestrator.

    Example:
        orchestrator = create_orchestrator()
        result = await orchestrator.run()
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        pipeline_factory: Optional[PipelineFactory] = None,
        instance_manager: Optional[InstanceManager] = None,
        configure_logging: bool = True,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Orchestrator configuration
            pipeline_factory: Builds the pipeline (default: PipelineBuilder)
            instance_manager: Active-instance slot (default: a new one)
            configure_logging: Install the root log handler

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self._config = config

        errors = config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid configuration: {', '.join(errors)}",
                errors=errors,
            )

        self._pipeline_factory = pipeline_factory or _default_pipeline_factory
        self._instance_manager = instance_manager or InstanceManager(config.cluster.termination)
        self._pipeline: Optional[DeploymentPipeline] = None
        self._last_result: Optional[PipelineResult] = None

        # Runtime state
        self._shutdown_event = asyncio.Event()
        self._interrupted = False
        self._signals_installed = False

        self._correlation_id = f"{config.correlation_id_prefix}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
        if configure_logging:
            self._logger = setup_logging(
                level=config.log_level,
                log_format=config.log_format,
                correlation_id=self._correlation_id,
            )
        else:
            self._logger = logging.getLogger("orchestrator")

        self._logger.info(
            f"Orchestrator initialized | installer={config.cluster.installer_dir} | "
            f"teardown={config.teardown_policy.value} | "
            f"correlation_id={self._correlation_id}"
        )

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> OrchestratorConfig:
        """Get configuration."""
        return self._config

    @property
    def instance_manager(self) -> InstanceManager:
        return self._instance_manager

    @property
    def pipeline(self) -> Optional[DeploymentPipeline]:
        return self._pipeline

    @property
    def interrupted(self) -> bool:
        """A shutdown signal was received."""
        return self._interrupted

    @property
    def last_result(self) -> Optional[PipelineResult]:
        return self._last_result

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def check_prerequisites(self, runner: Optional[CommandRunner] = None) -> None:
        """
        Run the pre-spawn checks without starting anything.

        Raises:
            MissingDependencyError
            UnsupportedPlatformError
        """
        bootstrapper = ClusterBootstrapper(self._config.cluster, runner or ShellCommandRunner())
        await bootstrapper.check()
        self._logger.info("Prerequisites satisfied")

    async def start(self) -> PipelineResult:
        """
        Bring the cluster up.

        Returns:
            PipelineResult

        Raises:
            InstanceAlreadyActiveError: A cluster is already running
            ConfigurationError: Job manifest invalid
        """
        self._logger.info("=== ORCHESTRATOR STARTUP SEQUENCE ===")

        self._pipeline = self._pipeline_factory(self._config, self._instance_manager)
        if self._shutdown_event.is_set():
            self._pipeline.cancel()

        result = await self._pipeline.run()
        self._last_result = result

        if result.success:
            self._logger.info(
                f"=== ORCHESTRATOR STARTUP COMPLETE | registry={self._config.hippo_url} "
                f"| storage={self._config.bindle_url} ==="
            )
        else:
            self._logger.error(
                f"=== ORCHESTRATOR STARTUP FAILED | stage="
                f"{result.failed_stage.stage_id if result.failed_stage else 'unknown'} "
                f"| error={result.error} ==="
            )
        return result

    async def hold(self) -> None:
        """Wait until shutdown is requested."""
        self._logger.info("Cluster ready; waiting for shutdown signal")
        await self._shutdown_event.wait()

    async def stop(self) -> Dict[str, str]:
        """
        Stop everything this orchestrator started.

        Returns:
            Per-role stop results
        """
        if self._pipeline is None:
            return {}

        self._logger.info("=== ORCHESTRATOR SHUTDOWN SEQUENCE ===")
        stops = await self._pipeline.stop()
        if stops:
            self._logger.info(f"Stop results: {stops}")
        self._logger.info("=== ORCHESTRATOR SHUTDOWN COMPLETE ===")
        return stops

    def request_shutdown(self) -> None:
        """Cancel a start in progress, or end the hold."""
        self._shutdown_event.set()
        if self._pipeline is not None and not self._pipeline.state.is_terminal:
            self._pipeline.cancel()

    async def run(self, hold: Optional[bool] = None) -> PipelineResult:
        """
        Start, optionally hold until signalled, then stop.

        Args:
            hold: Override config.hold

        Returns:
            PipelineResult of the start
        """
        hold = self._config.hold if hold is None else hold
        self._install_signal_handlers()
        try:
            result = await self.start()
            if result.success and hold:
                await self.hold()
            return result
        finally:
            await self.stop()
            self._restore_signal_handlers()

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._on_signal, sig)
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if not self._signals_installed:
            return
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, signal.default_int_handler)
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._on_signal(signal.Signals(signum))

    def _on_signal(self, sig: signal.Signals) -> None:
        self._logger.info(f"Received signal {sig.name}")
        self._interrupted = True
        self.request_shutdown()

    # --------------------------------------------------------
    # Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get orchestrator status."""
        active = self._instance_manager.active
        return {
            "correlation_id": self._correlation_id,
            "pipeline_state": self._pipeline.state.value if self._pipeline else PipelineState.IDLE.value,
            "active_instance": active.to_dict() if active else None,
            "interrupted": self._interrupted,
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }


# ============================================================
# ORCHESTRATOR FACTORY
# ============================================================

def create_orchestrator(
    config: Optional[OrchestratorConfig] = None,
    pipeline_factory: Optional[PipelineFactory] = None,
) -> Orchestrator:
    """
    Factory function to create an orchestrator.

    Args:
        config: Configuration (or load from environment)
        pipeline_factory: Pipeline factory override

    Returns:
        Configured Orchestrator instance
    """
    if config is None:
        config = OrchestratorConfig.from_env()

    return Orchestrator(config=config, pipeline_factory=pipeline_factory)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Orchestrator",
    "create_orchestrator",
    "setup_logging",
]
