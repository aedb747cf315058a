"""Agent supervisor: spawn, observe, retry and tear down agent sessions."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from symphony.domain.models import (
    AgentHealth,
    AgentRegistration,
    ErrorEntry,
    ErrorKind,
    ProgressReport,
    Subtask,
    SubtaskStatus,
    Task,
    WorkspaceRef,
    utcnow,
)
from symphony.domain.ports.worker_session import WorkerHandle, WorkerSessionProvider
from symphony.domain.ports.workspace_provider import WorkspaceProvider
from symphony.infrastructure.exceptions import (
    WorkerSessionError,
    WorkspaceConflictError,
    WorkspaceError,
)
from symphony.infrastructure.logger import get_logger
from symphony.infrastructure.progress_parser import read_progress, render_progress
from symphony.infrastructure.state_store import StateStore
from symphony.services.failure_analyzer import FailureAnalyzer

logger = get_logger(__name__)


@dataclass
class AgentObservation:
    """What one poll saw of a live agent."""

    agent_id: str
    subtask_id: str
    health: AgentHealth
    report: ProgressReport | None
    alive: bool
    idle_seconds: float


class AgentSupervisor:
    """Owns the agent registry and the workspaces bound to it.

    There is at most one live registration per subtask. Each retry tears the
    old workspace down before the replacement is spawned, so two agents never
    work on the same subtask at once.
    """

    def __init__(
        self,
        store: StateStore,
        workspaces: WorkspaceProvider,
        sessions: WorkerSessionProvider,
        failure_analyzer: FailureAnalyzer | None = None,
        agent_timeout: float = 1800.0,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the supervisor.

        Args:
            store: State store holding the registry and progress reports
            workspaces: Workspace isolation provider
            sessions: Worker session provider
            failure_analyzer: Root-cause pass run before each retry
            agent_timeout: Seconds without a progress update before STALE
            max_attempts: Spawn attempts per subtask before giving up
            clock: Source of the current time
        """
        self.store = store
        self.workspaces = workspaces
        self.sessions = sessions
        self.failure_analyzer = failure_analyzer or FailureAnalyzer()
        self.agent_timeout = agent_timeout
        self.max_attempts = max_attempts
        self.clock = clock
        self._last_agent_ms = 0

    # ----- spawning -----

    def _new_agent_id(self, role: str) -> str:
        ms = max(int(time.time() * 1000), self._last_agent_ms + 1)
        self._last_agent_ms = ms
        return f"{role}-{ms}"

    def log_path(self, agent_id: str) -> Path:
        return self.store.agent_log_dir / f"{agent_id}.log"

    def _handle(self, registration: AgentRegistration) -> WorkerHandle:
        return WorkerHandle(
            agent_id=registration.agent_id,
            pid=registration.pid,
            log_path=str(self.log_path(registration.agent_id)),
        )

    def free_slot(self, task_id: str) -> int:
        used = {r.slot for r in self.store.load_registry().for_task(task_id)}
        slot = 0
        while slot in used:
            slot += 1
        return slot

    async def spawn(
        self, task: Task, subtask: Subtask, slot: int | None = None, attempt: int = 1
    ) -> AgentRegistration:
        """Spawn an agent for ``subtask`` in a fresh workspace.

        The workspace branches off the task's integration branch. The initial
        progress report (PENDING, 0%) and the registration are written before
        the worker is launched.

        Raises:
            WorkspaceConflictError: If the subtask already has a live agent or
                the workspace path is taken
            WorkerSessionError: If the worker cannot be started; the workspace
                and registration are rolled back first
        """
        registry = self.store.load_registry()
        existing = registry.for_subtask(subtask.id)
        if existing:
            raise WorkspaceConflictError(
                f"Subtask {subtask.id} already has a live agent: {existing[0].agent_id}"
            )

        agent_id = self._new_agent_id(subtask.role)
        path = self.store.worktrees_dir / agent_id
        if await self.workspaces.workspace_exists(path):
            raise WorkspaceConflictError(f"Workspace for {agent_id} already exists: {path}")

        branch = f"symphony/{task.id}/{agent_id}"
        base = task.integration_branch or "HEAD"
        await self.workspaces.create_workspace(path, branch, base)

        now = self.clock()
        progress_path = self.store.progress_path(task.id, subtask.role)
        self.store.write_text(
            progress_path,
            render_progress(
                ProgressReport(
                    status=SubtaskStatus.PENDING,
                    progress=0,
                    current="Waiting to start",
                    last_updated=now,
                )
            ),
        )

        registration = AgentRegistration(
            agent_id=agent_id,
            role=subtask.role,
            task_id=task.id,
            subtask_id=subtask.id,
            workspace=WorkspaceRef(path=str(path), branch=branch),
            slot=self.free_slot(task.id) if slot is None else slot,
            spawned_at=now,
            last_activity=now,
            attempt=attempt,
        )
        registry.root.append(registration)
        self.store.save_registry(registry)

        try:
            handle = await self.sessions.spawn(
                agent_id,
                path,
                self.build_payload(task, subtask, registration, progress_path),
                self.log_path(agent_id),
            )
        except WorkerSessionError:
            await self.teardown(registration, discard_branch=True)
            raise

        registration.pid = handle.pid
        self._save_registration(registration)

        subtask.attempts = attempt
        subtask.status = SubtaskStatus.PENDING
        subtask.progress = 0
        subtask.current_activity = "Waiting to start"
        subtask.last_updated = now
        subtask.branch = branch

        logger.info(
            "agent_spawned",
            task_id=task.id,
            agent_id=agent_id,
            role=subtask.role,
            attempt=attempt,
            slot=registration.slot,
        )
        return registration

    def build_payload(
        self,
        task: Task,
        subtask: Subtask,
        registration: AgentRegistration,
        progress_path: Path,
    ) -> str:
        """Build the instruction payload handed to the worker on stdin."""
        lines = [
            f"You are {subtask.role}, working on task {task.id}: {task.title}",
            "",
            task.description or task.title,
            "",
            "Your scope (modify files only under these paths):",
            *(f"- {p}" for p in subtask.scope),
        ]
        if task.shared_paths:
            lines += [
                "",
                "Shared paths (coordinate: add, never rewrite existing declarations):",
                *(f"- {p}" for p in task.shared_paths),
            ]
        if task.context_notes:
            lines += ["", "Context from earlier attempts and reviews:"]
            lines += [f"- {note}" for note in task.context_notes]
        lines += [
            "",
            f"Working directory: {registration.workspace.path} "
            f"(branch {registration.workspace.branch})",
            "Commit your work to this branch as you go.",
            "",
            f"Keep your progress report up to date at {progress_path} in this format:",
            "Status: PENDING | IN_PROGRESS | COMPLETE | BLOCKED | FAILED",
            "Progress: <0-100>%",
            "Current: <what you are doing>",
            "Last Updated: <ISO-8601 timestamp>",
            "followed by the sections ## Completed, ## In Progress, ## Next Steps, "
            "## Blockers and ## Notes.",
            "Set Status: COMPLETE when your part is finished.",
        ]
        return "\n".join(lines) + "\n"

    # ----- observation -----

    async def poll(self, task: Task) -> dict[str, AgentObservation]:
        """Observe every live agent of ``task``.

        Copies each agent's latest report into its subtask and advances the
        registration's ``last_activity`` when the report timestamp moves.
        """
        registry = self.store.load_registry()
        now = self.clock()
        observations: dict[str, AgentObservation] = {}
        changed = False

        for registration in registry.for_task(task.id):
            report = read_progress(self.store.progress_path(task.id, registration.role))
            alive = await self.sessions.is_alive(self._handle(registration))

            if report is not None and report.last_updated > registration.last_activity:
                registration.last_activity = report.last_updated
                changed = True

            subtask = task.subtask(registration.subtask_id)
            if report is not None and subtask is not None:
                subtask.status = report.status
                subtask.progress = report.progress
                subtask.current_activity = report.current
                subtask.last_updated = report.last_updated

            idle = (now - registration.last_activity).total_seconds()
            if idle > self.agent_timeout:
                health = AgentHealth.STALE
            elif report is None:
                health = AgentHealth.UNKNOWN
            elif not alive and report.status not in (SubtaskStatus.COMPLETE, SubtaskStatus.FAILED):
                health = AgentHealth.EXITED
            else:
                health = AgentHealth.ACTIVE

            if health != AgentHealth.ACTIVE:
                logger.warning(
                    "agent_unhealthy",
                    task_id=task.id,
                    agent_id=registration.agent_id,
                    health=health.value,
                    idle_seconds=round(idle, 1),
                )

            observations[registration.agent_id] = AgentObservation(
                agent_id=registration.agent_id,
                subtask_id=registration.subtask_id,
                health=health,
                report=report,
                alive=alive,
                idle_seconds=idle,
            )

        if changed:
            self.store.save_registry(registry)
        return observations

    # ----- retry / teardown -----

    async def retry(
        self, task: Task, registration: AgentRegistration, kind: ErrorKind, cause: str
    ) -> AgentRegistration | None:
        """Replace a stale or failed agent.

        The old agent is torn down (its branch discarded), an error entry with
        the root-cause analysis is recorded on the task, and a new agent is
        spawned with the same role and scope and ``attempt + 1``.

        Returns:
            The new registration, or None once ``max_attempts`` is exhausted
        """
        report = read_progress(self.store.progress_path(task.id, registration.role))
        analysis = self.failure_analyzer.analyze(
            kind, cause, report=report, log_path=self.log_path(registration.agent_id)
        )
        task.errors.append(
            ErrorEntry(
                subtask_id=registration.subtask_id,
                agent_id=registration.agent_id,
                kind=kind,
                cause=cause,
                last_known_state=(
                    f"{report.status.value} {report.progress}%: {report.current}" if report else None
                ),
                attempt=registration.attempt,
                analysis=analysis,
            )
        )

        await self.teardown(registration, discard_branch=True)

        subtask = task.subtask(registration.subtask_id)
        if subtask is None:
            logger.error("retry_subtask_missing", subtask_id=registration.subtask_id)
            return None

        attempt = registration.attempt
        if attempt < self.max_attempts:
            note = f"{subtask.role} attempt {attempt} {kind.value.lower()}: {analysis.summary}"
            if analysis.hint:
                note += f" ({analysis.hint})"
            task.context_notes.append(note)

        while attempt < self.max_attempts:
            attempt += 1
            try:
                new = await self.spawn(task, subtask, slot=registration.slot, attempt=attempt)
            except (WorkerSessionError, WorkspaceError) as e:
                logger.error(
                    "agent_respawn_failed", task_id=task.id, subtask_id=subtask.id, error=str(e)
                )
                task.errors.append(
                    ErrorEntry(
                        subtask_id=subtask.id,
                        kind=ErrorKind.SPAWN_FAILED,
                        cause=str(e),
                        attempt=attempt,
                    )
                )
                continue
            logger.info(
                "agent_retried",
                task_id=task.id,
                subtask_id=subtask.id,
                old_agent_id=registration.agent_id,
                new_agent_id=new.agent_id,
                attempt=attempt,
            )
            return new

        subtask.attempts = attempt
        logger.warning(
            "agent_retries_exhausted",
            task_id=task.id,
            subtask_id=subtask.id,
            attempts=attempt,
        )
        return None

    async def teardown(self, registration: AgentRegistration, discard_branch: bool = True) -> None:
        """Terminate the worker, remove its workspace and its registration.

        Args:
            registration: Agent to tear down
            discard_branch: Delete the agent's branch as well; False keeps the
                commits of a completed agent for staging
        """
        await self.sessions.terminate(self._handle(registration))
        await self.workspaces.remove_workspace(Path(registration.workspace.path))
        if discard_branch:
            await self.workspaces.delete_branch(registration.workspace.branch)

        registry = self.store.load_registry()
        registry.root = [r for r in registry.root if r.agent_id != registration.agent_id]
        self.store.save_registry(registry)

        logger.info(
            "agent_torn_down",
            task_id=registration.task_id,
            agent_id=registration.agent_id,
            branch_kept=not discard_branch,
        )

    async def teardown_task(self, task_id: str, discard_branch: bool = True) -> int:
        """Tear down every registration of ``task_id``; returns how many."""
        registrations = self.store.load_registry().for_task(task_id)
        for registration in registrations:
            await self.teardown(registration, discard_branch=discard_branch)
        return len(registrations)

    async def commit_workspace(self, task: Task, registration: AgentRegistration) -> str | None:
        """Commit changes the agent left uncommitted in its worktree."""
        sha = await self.workspaces.commit_all(
            Path(registration.workspace.path),
            f"[{task.id}] {registration.role}: {task.title}",
        )
        if sha:
            logger.info("agent_changes_committed", agent_id=registration.agent_id, commit=sha[:12])
        return sha

    def _save_registration(self, registration: AgentRegistration) -> None:
        registry = self.store.load_registry()
        registry.root = [
            registration if r.agent_id == registration.agent_id else r for r in registry.root
        ]
        self.store.save_registry(registry)
