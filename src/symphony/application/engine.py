"""Engine wiring and the supervising polling loop."""

import asyncio
from pathlib import Path

from symphony.application.agent_supervisor import AgentSupervisor
from symphony.application.integration_resolver import IntegrationResolver, VerificationRunner
from symphony.application.task_controller import TaskController
from symphony.domain.ports.worker_session import WorkerSessionProvider
from symphony.domain.ports.workspace_provider import WorkspaceProvider
from symphony.infrastructure.claude_session import ClaudeSessionProvider
from symphony.infrastructure.config import Config, ConfigManager
from symphony.infrastructure.exceptions import SymphonyError
from symphony.infrastructure.git_workspace import GitWorkspaceProvider
from symphony.infrastructure.logger import get_logger
from symphony.infrastructure.state_store import StateStore
from symphony.services.failure_analyzer import FailureAnalyzer
from symphony.services.impact_analyzer import LaneKeywordImpactAnalyzer

logger = get_logger(__name__)


def create_controller(
    config_manager: ConfigManager,
    workspaces: WorkspaceProvider | None = None,
    sessions: WorkerSessionProvider | None = None,
) -> TaskController:
    """Assemble a task controller for the project managed by ``config_manager``.

    Args:
        config_manager: Loaded configuration and project root
        workspaces: Workspace provider (default: git worktrees of the project)
        sessions: Worker session provider (default: Claude CLI)
    """
    config: Config = config_manager.load_config()
    project_root = config_manager.project_root
    store = StateStore(config_manager.get_symphony_dir())

    workspaces = workspaces or GitWorkspaceProvider(project_root)
    sessions = sessions or ClaudeSessionProvider(
        cli_path=config.worker.cli_path, extra_args=config.worker.extra_args
    )

    supervisor = AgentSupervisor(
        store=store,
        workspaces=workspaces,
        sessions=sessions,
        failure_analyzer=FailureAnalyzer(),
        agent_timeout=config.supervisor.agent_timeout_seconds,
        max_attempts=config.supervisor.max_attempts,
    )
    integration = IntegrationResolver(
        store=store,
        workspaces=workspaces,
        protected_branch=config.integration.protected_branch,
        verifier=VerificationRunner(
            config.integration.verify_command, config.integration.verify_timeout_seconds
        ),
    )
    return TaskController(
        store=store,
        supervisor=supervisor,
        integration=integration,
        lanes_provider=config_manager.load_lanes,
        impact_analyzer=LaneKeywordImpactAnalyzer(),
        max_agents=config.supervisor.max_agents,
        max_test_attempts=config.integration.max_test_attempts,
    )


class SymphonyEngine:
    """Runs the controller's polling step on a fixed interval until shut down."""

    def __init__(self, controller: TaskController, poll_interval: float = 5.0):
        """Initialize the engine.

        Args:
            controller: Task lifecycle controller
            poll_interval: Seconds between polling steps
        """
        self.controller = controller
        self.poll_interval = poll_interval
        self._shutdown_event = asyncio.Event()
        self._running = False

    @classmethod
    def for_project(cls, project_root: Path) -> "SymphonyEngine":
        config_manager = ConfigManager(project_root)
        config = config_manager.load_config()
        return cls(
            create_controller(config_manager),
            poll_interval=config.supervisor.poll_interval_seconds,
        )

    async def run(self, max_ticks: int | None = None, exit_when_idle: bool = False) -> int:
        """Poll until shutdown.

        Work left behind by a previous engine process is discarded first
        and its task restarted at PLANNING.

        Args:
            max_ticks: Stop after this many polling steps
            exit_when_idle: Stop once no task is current and the queue is empty

        Returns:
            Number of polling steps run
        """
        self._running = True
        self._shutdown_event.clear()

        if self.controller.needs_recovery():
            logger.warning("engine_recovering_previous_run")
            await self.controller.recover()

        logger.info("engine_started", poll_interval=self.poll_interval, max_ticks=max_ticks)
        ticks = 0
        try:
            while self._running and not self._shutdown_event.is_set():
                if max_ticks is not None and ticks >= max_ticks:
                    break

                task = await self._tick()
                ticks += 1

                if task is None and exit_when_idle:
                    logger.info("engine_idle_exit", ticks=ticks)
                    break

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("engine_stopped", ticks=ticks)
        return ticks

    async def _tick(self):
        try:
            return await self.controller.tick()
        except SymphonyError as e:
            logger.error("engine_tick_failed", error_type=type(e).__name__, error=str(e))
        except Exception as e:
            logger.exception("engine_tick_error", error_type=type(e).__name__, error=str(e))
        # Keep polling; the failing step is retried on the next tick
        return self.controller.current_task()

    async def shutdown(self) -> None:
        """Stop after the current polling step. Agents keep running."""
        logger.info("engine_shutdown_requested")
        self._running = False
        self._shutdown_event.set()
