"""Task lifecycle controller: the only component that changes a task's state."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from symphony.application.agent_supervisor import AgentSupervisor
from symphony.application.integration_resolver import IntegrationResolver, StageResult
from symphony.domain.lifecycle import RECOVERY_STATES, UNFORCED_CANCEL_STATES, can_transition
from symphony.domain.models import (
    AgentHealth,
    AgentRegistration,
    CurrentTaskRecord,
    ErrorEntry,
    ErrorKind,
    LaneAssignment,
    QueueEntry,
    QueueRecord,
    RegistryRecord,
    StateTransition,
    Subtask,
    SubtaskStatus,
    Task,
    TaskState,
    utcnow,
)
from symphony.domain.ports.impact_analyzer import ImpactAnalyzer
from symphony.infrastructure.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    SymphonyError,
    TaskChangedError,
    TaskNotFoundError,
    WorkerSessionError,
    WorkspaceError,
)
from symphony.infrastructure.logger import get_logger, task_log_context
from symphony.infrastructure.state_store import StateStore
from symphony.services.lane_resolver import LanePlan, LaneResolver

logger = get_logger(__name__)

TASK_BRIEF_FILE = "TASK.md"


@dataclass
class StatusSnapshot:
    """Point-in-time view of the queue, the current task and live agents."""

    queue: QueueRecord
    current: Task | None
    registry: RegistryRecord
    pending: list[Task] = field(default_factory=list)


class TaskController:
    """Drives tasks through the lifecycle.

    One task is current at a time. Every transition is validated against the
    lifecycle table, appended to the task's history and persisted to the task
    record, the current-task record and the queue before anything else
    happens.
    """

    def __init__(
        self,
        store: StateStore,
        supervisor: AgentSupervisor,
        integration: IntegrationResolver,
        lanes_provider: Callable[[], LaneAssignment],
        impact_analyzer: ImpactAnalyzer,
        lane_resolver: LaneResolver | None = None,
        max_agents: int = 4,
        max_test_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the controller.

        Args:
            store: State store
            supervisor: Agent supervisor
            integration: Integration resolver
            lanes_provider: Returns the current lane assignment
            impact_analyzer: Pre-analysis provider used during planning
            lane_resolver: Lane resolver
            max_agents: Maximum concurrently live agents per task
            max_test_attempts: Verification failures tolerated before escalation
            clock: Source of the current time
        """
        self.store = store
        self.supervisor = supervisor
        self.integration = integration
        self.lanes_provider = lanes_provider
        self.impact_analyzer = impact_analyzer
        self.lane_resolver = lane_resolver or LaneResolver()
        self.max_agents = max_agents
        self.max_test_attempts = max_test_attempts
        self.clock = clock

    # ----- queries -----

    def get_task(self, task_id: str) -> Task:
        task = self.store.load_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def current_task(self) -> Task | None:
        queue = self.store.load_queue()
        if queue.current is None:
            return None
        return self.store.load_task(queue.current)

    def list_tasks(self) -> list[Task]:
        tasks = [self.store.load_task(task_id) for task_id in self.store.list_task_ids()]
        return [t for t in tasks if t is not None]

    def status(self) -> StatusSnapshot:
        queue, _, registry = self.store.load()
        pending = [t for t in (self.store.load_task(e.id) for e in queue.tasks) if t is not None]
        return StatusSnapshot(
            queue=queue, current=self.current_task(), registry=registry, pending=pending
        )

    # ----- submission -----

    def _new_task_id(self) -> str:
        now = int(self.clock().timestamp())
        issued = [int(i) for i in self.store.list_task_ids() if i.isdigit()]
        return str(max([now, *(i + 1 for i in issued)]))

    def submit(
        self,
        title: str,
        description: str = "",
        source: str = "direct",
        impact_hint: list[str] | None = None,
    ) -> Task:
        """Create a task in PENDING and append it to the queue."""
        task = Task(
            id=self._new_task_id(),
            source=source,
            title=title,
            description=description,
            impact_hint=list(impact_hint or []),
        )
        task.history.append(StateTransition(from_state=None, to_state=TaskState.PENDING))
        self.store.save_task(task)
        self._write_brief(task)

        queue = self.store.load_queue()
        queue.tasks.append(QueueEntry(id=task.id, source=task.source, title=task.title))
        self.store.save_queue(queue)

        logger.info("task_submitted", task_id=task.id, source=source, queue_length=len(queue.tasks))
        return task

    async def start_next(self) -> Task | None:
        """Dequeue the head of the queue into PLANNING when nothing is current."""
        queue = self.store.load_queue()
        if queue.current is not None:
            return None

        while queue.tasks:
            entry = queue.tasks.pop(0)
            task = self.store.load_task(entry.id)
            if task is None:
                logger.warning("queued_task_record_missing", task_id=entry.id)
                continue
            queue.current = task.id
            self.store.save_queue(queue)
            self._transition(task, TaskState.PLANNING, "dequeued")
            return task

        self.store.save_queue(queue)
        return None

    # ----- planning -----

    async def plan(self, task_id: str) -> LanePlan:
        """Estimate impact, resolve lanes and move PLANNING -> WAITING_APPROVAL.

        Raises:
            ConfigurationError: Lane configuration problems; the task stays in
                PLANNING with the error recorded
        """
        task = self.get_task(task_id)
        if task.state != TaskState.PLANNING:
            raise InvalidTransitionError(
                task.id, task.state.value, TaskState.WAITING_APPROVAL.value
            )

        with task_log_context(task.id):
            try:
                lanes = self.lanes_provider()
                impact = await self.impact_analyzer.estimate(task, lanes)
                plan = self.lane_resolver.resolve(task, lanes, impact)
                if not plan.subtasks and not plan.unassigned:
                    raise ConfigurationError(
                        f"Task {task.id}: no impacted paths could be determined",
                        remediation="Submit the task again with --path hints naming the "
                        "directories it touches",
                    )
            except ConfigurationError as e:
                task.errors.append(ErrorEntry(kind=ErrorKind.CONFIG, cause=str(e), at=self.clock()))
                self.store.save_task(task)
                logger.error("task_planning_failed", task_id=task.id, error=str(e))
                raise

            task.subtasks = plan.subtasks
            task.impact_paths = impact
            task.unassigned_paths = plan.unassigned
            task.shared_paths = plan.shared
            self._write_brief(task)
            self._transition(task, TaskState.WAITING_APPROVAL, "plan ready")
        return plan

    def assign(self, task_id: str, path: str, role: str) -> Task:
        """Manually assign a path the planner could not place."""
        task = self.get_task(task_id)
        if task.state != TaskState.WAITING_APPROVAL:
            raise InvalidTransitionError(task.id, task.state.value, "assign")

        plan = LanePlan(
            subtasks=task.subtasks,
            unassigned=list(task.unassigned_paths),
            shared=list(task.shared_paths),
        )
        plan = self.lane_resolver.apply_override(plan, path, role, self.lanes_provider(), task)
        task.subtasks = plan.subtasks
        task.unassigned_paths = plan.unassigned
        self._write_brief(task)
        self._persist(task)
        return task

    def _planning_blocked(self, task: Task) -> bool:
        """True when planning already failed since the task entered PLANNING."""
        if not task.errors or task.errors[-1].kind != ErrorKind.CONFIG:
            return False
        entered = task.history[-1].at if task.history else task.created_at
        return task.errors[-1].at >= entered

    # ----- human gates -----

    async def approve(self, task_id: str) -> Task:
        """Approve the pending gate of a task.

        WAITING_APPROVAL -> ACTIVE spawns the agents, REVIEW -> WAITING_FINAL
        records sign-off of the staged result, and WAITING_FINAL -> COMPLETE
        runs the gate, promotes the integration branch and archives the task.
        """
        task = self.get_task(task_id)

        with task_log_context(task.id):
            if task.state == TaskState.WAITING_APPROVAL:
                if not task.subtasks:
                    raise ConfigurationError(
                        f"Task {task.id}: the plan has no subtasks",
                        remediation=f"Assign paths with 'symphony assign {task.id} <path> <role>'",
                    )
                if task.unassigned_paths:
                    logger.warning(
                        "approving_with_unassigned_paths",
                        task_id=task.id,
                        paths=task.unassigned_paths,
                    )
                await self.integration.prepare(task)
                self._transition(task, TaskState.ACTIVE, "plan approved")
                await self._spawn_or_escalate(task)

            elif task.state == TaskState.REVIEW:
                self._transition(task, TaskState.WAITING_FINAL, "review approved")

            elif task.state == TaskState.WAITING_FINAL:
                result = await self.integration.finalize(task, promote=True)
                if not result.passed:
                    self._persist(task)
                    raise SymphonyError(
                        f"Task {task.id}: verification failed (exit {result.returncode})",
                        remediation="Inspect the output with 'symphony status', then reject "
                        "the task to send it back to the agents",
                    )
                await self.supervisor.teardown_task(task.id)
                await self.integration.cleanup(task)
                self._transition(task, TaskState.COMPLETE, "promoted")

            else:
                raise InvalidTransitionError(task.id, task.state.value, "approve")
        return task

    async def reject(
        self, task_id: str, reason: str, target: TaskState = TaskState.ACTIVE
    ) -> Task:
        """Reject a plan or an implementation.

        A rejected plan always returns to PLANNING. A rejected implementation
        passes through REJECTED and goes to ``target``: ACTIVE re-spawns the
        agents with the reason in their context, PLANNING starts over.
        """
        task = self.get_task(task_id)
        if target not in (TaskState.ACTIVE, TaskState.PLANNING):
            raise InvalidTransitionError(task.id, TaskState.REJECTED.value, target.value)

        with task_log_context(task.id):
            if task.state == TaskState.WAITING_APPROVAL:
                task.context_notes.append(f"Plan rejected: {reason}")
                self._transition(task, TaskState.REJECTED, reason)
                task.subtasks = []
                self._transition(task, TaskState.PLANNING, "re-planning after rejection")

            elif task.state in (TaskState.REVIEW, TaskState.WAITING_FINAL):
                task.context_notes.append(f"Implementation rejected: {reason}")
                self._transition(task, TaskState.REJECTED, reason)
                if target == TaskState.ACTIVE:
                    await self._reset_for_next_round(task)
                    self._transition(task, TaskState.ACTIVE, "re-spawning after rejection")
                    await self._spawn_or_escalate(task)
                else:
                    await self._discard_integration(task)
                    self._transition(task, TaskState.PLANNING, "re-planning after rejection")

            else:
                raise InvalidTransitionError(task.id, task.state.value, TaskState.REJECTED.value)
        return task

    async def fail(self, task_id: str, reason: str) -> Task:
        """Fail a task from REVIEW (or give up on an ESCALATED one)."""
        task = self.get_task(task_id)
        self._require(task, TaskState.FAILED)

        await self.supervisor.teardown_task(task.id)
        if task.integration_branch:
            await self.integration.cleanup(task)
        task.escalation_reason = reason
        self._transition(task, TaskState.FAILED, reason)
        return task

    async def cancel(self, task_id: str, force: bool = False) -> Task:
        """Cancel a task; beyond PENDING/PLANNING this requires ``force``."""
        task = self.get_task(task_id)
        self._require(task, TaskState.CANCELLED)
        if task.state not in UNFORCED_CANCEL_STATES and not force:
            raise InvalidTransitionError(
                task.id, task.state.value, f"{TaskState.CANCELLED.value} without force"
            )

        torn_down = await self.supervisor.teardown_task(task.id)
        if task.integration_branch:
            await self.integration.cleanup(task)
        self._transition(task, TaskState.CANCELLED, "cancelled by operator")
        logger.info("task_cancelled", task_id=task.id, agents_torn_down=torn_down)
        return task

    async def resolve(self, task_id: str) -> StageResult:
        """Continue after a human resolved an integration conflict.

        Raises:
            IntegrationConflictError: If the conflict is still present
        """
        task = self.get_task(task_id)
        if task.state != TaskState.NEEDS_HUMAN_INTEGRATION:
            raise InvalidTransitionError(task.id, task.state.value, "resolve")

        with task_log_context(task.id):
            result = await self.integration.resume(task)
            if result.conflict is not None:
                self._persist(task)
                return result
            self._transition(task, TaskState.ACTIVE, "conflict resolved")
            await self._verify_staged(task)
        return result

    # ----- override signals -----

    async def retry(self, task_id: str) -> Task:
        """ESCALATED -> ACTIVE with attempt counters reset."""
        task = self.get_task(task_id)
        self._require_escalated(task)

        task.escalation_reason = None
        if task.all_subtasks_done:
            # Escalated by the verification gate: start a fresh round of agents
            task.test_attempts = 0
            await self._reset_for_next_round(task)
        else:
            for subtask in task.subtasks:
                if not subtask.done:
                    subtask.attempts = 0
        self._transition(task, TaskState.ACTIVE, "retry override")
        await self._spawn_or_escalate(task)
        return task

    async def skip(self, task_id: str, subtask_id: str) -> Task:
        """ESCALATED -> ACTIVE with ``subtask_id`` excluded from integration."""
        task = self.get_task(task_id)
        self._require_escalated(task)
        subtask = task.subtask(subtask_id)
        if subtask is None:
            raise SymphonyError(f"Task {task.id} has no subtask {subtask_id}")

        for registration in self.store.load_registry().for_subtask(subtask.id):
            await self.supervisor.teardown(registration, discard_branch=True)
        subtask.skipped = True
        task.escalation_reason = None
        self._transition(task, TaskState.ACTIVE, f"skip override: {subtask_id}")
        await self._spawn_or_escalate(task)
        return task

    def _require_escalated(self, task: Task) -> None:
        if task.state != TaskState.ESCALATED:
            raise InvalidTransitionError(task.id, task.state.value, TaskState.ACTIVE.value)

    # ----- polling -----

    async def tick(self) -> Task | None:
        """Run one polling step for the current task (or start the next one)."""
        task = self.current_task()
        if task is None:
            task = await self.start_next()
            if task is None:
                return None

        with task_log_context(task.id):
            try:
                if task.state == TaskState.PLANNING:
                    if not self._planning_blocked(task):
                        try:
                            await self.plan(task.id)
                        except ConfigurationError:
                            # Recorded on the task; waits for the operator
                            pass
                elif task.state == TaskState.ACTIVE:
                    await self._tick_active(task)
                elif task.state == TaskState.TEST_FAILED:
                    await self._tick_test_failed(task)
            except TaskChangedError as e:
                logger.warning(
                    "task_changed_externally",
                    task_id=task.id,
                    expected=e.expected,
                    actual=e.actual,
                )
        return self.store.load_task(task.id)

    async def _tick_active(self, task: Task) -> None:
        observations = await self.supervisor.poll(task)
        self._ensure_unchanged(task)
        registry = self.store.load_registry()
        exhausted: list[str] = []

        for observation in observations.values():
            registration = registry.get(observation.agent_id)
            if registration is None:
                continue
            report = observation.report

            if report is not None and report.status == SubtaskStatus.COMPLETE:
                await self._complete_subtask(task, registration)
                self._persist(task)
                continue

            if report is not None and report.status == SubtaskStatus.FAILED:
                kind, cause = ErrorKind.FAILED, report.current or "agent reported FAILED"
            elif observation.health == AgentHealth.STALE:
                kind, cause = ErrorKind.STALE, f"no progress update for {observation.idle_seconds:.0f}s"
            elif observation.health == AgentHealth.EXITED:
                kind, cause = ErrorKind.EXITED, "worker exited before reporting COMPLETE"
            else:
                continue

            if await self.supervisor.retry(task, registration, kind, cause) is None:
                exhausted.append(registration.subtask_id)

        if not exhausted:
            exhausted = await self._spawn_missing(task)
        if exhausted:
            await self._escalate(task, f"retries exhausted for {', '.join(exhausted)}")
            return

        if task.all_subtasks_done:
            result = await self.integration.stage(task)
            if result.conflict is not None:
                self._transition(
                    task,
                    TaskState.NEEDS_HUMAN_INTEGRATION,
                    f"conflict in {', '.join(result.conflict.paths)}",
                )
                return
            await self._verify_staged(task)
            return

        self._persist(task)

    async def _complete_subtask(self, task: Task, registration: AgentRegistration) -> None:
        await self.supervisor.commit_workspace(task, registration)
        await self.supervisor.teardown(registration, discard_branch=False)
        subtask = task.subtask(registration.subtask_id)
        if subtask is not None:
            subtask.status = SubtaskStatus.COMPLETE
            subtask.branch = registration.workspace.branch
        logger.info("subtask_completed", task_id=task.id, subtask_id=registration.subtask_id)

    async def _verify_staged(self, task: Task) -> None:
        result = await self.integration.finalize(task, promote=False)
        if result.passed:
            self._transition(task, TaskState.REVIEW, "integration staged")
            return

        task.test_attempts += 1
        analysis = self.supervisor.failure_analyzer.analyze(
            ErrorKind.TEST_FAILED,
            f"verification exited with {result.returncode}",
            output=result.output,
        )
        task.errors.append(
            ErrorEntry(
                kind=ErrorKind.TEST_FAILED,
                cause=f"verification exited with {result.returncode}",
                attempt=task.test_attempts,
                analysis=analysis,
            )
        )
        task.context_notes.append(f"Verification failed: {analysis.summary}")
        self._transition(task, TaskState.TEST_FAILED, f"verification attempt {task.test_attempts}")

    async def _tick_test_failed(self, task: Task) -> None:
        if task.test_attempts >= self.max_test_attempts:
            await self._escalate(task, f"verification failed {task.test_attempts} times")
            return
        await self._reset_for_next_round(task)
        self._transition(task, TaskState.ACTIVE, "retrying after verification failure")
        await self._spawn_or_escalate(task)

    async def _escalate(self, task: Task, reason: str) -> None:
        await self.supervisor.teardown_task(task.id)
        task.escalation_reason = reason
        self._transition(task, TaskState.ESCALATED, reason)
        logger.warning("task_escalated", task_id=task.id, reason=reason)

    async def _spawn_or_escalate(self, task: Task) -> None:
        exhausted = await self._spawn_missing(task)
        if exhausted:
            await self._escalate(task, f"could not start agents for {', '.join(exhausted)}")
        else:
            self._persist(task)

    async def _spawn_missing(self, task: Task) -> list[str]:
        """Spawn agents for subtasks without one, within ``max_agents``.

        Returns:
            Ids of subtasks whose spawn attempts are exhausted
        """
        live = {r.subtask_id for r in self.store.load_registry().for_task(task.id)}
        capacity = self.max_agents - len(live)
        exhausted: list[str] = []

        for subtask in task.subtasks:
            if subtask.done or subtask.id in live:
                continue
            if capacity <= 0:
                break
            if await self._spawn_with_attempts(task, subtask):
                capacity -= 1
            else:
                exhausted.append(subtask.id)
        return exhausted

    async def _spawn_with_attempts(self, task: Task, subtask: Subtask) -> bool:
        for attempt in range(subtask.attempts + 1, self.supervisor.max_attempts + 1):
            try:
                await self.supervisor.spawn(task, subtask, attempt=attempt)
                return True
            except (WorkerSessionError, WorkspaceError) as e:
                logger.error(
                    "agent_spawn_failed", task_id=task.id, subtask_id=subtask.id, error=str(e)
                )
                subtask.attempts = attempt
                task.errors.append(
                    ErrorEntry(
                        subtask_id=subtask.id,
                        kind=ErrorKind.SPAWN_FAILED,
                        cause=str(e),
                        attempt=attempt,
                    )
                )
        return False

    async def _reset_for_next_round(self, task: Task) -> None:
        """Build the next round of agents on top of the staged result."""
        await self.supervisor.teardown_task(task.id)
        await self.integration.rebase_on_staged(task)
        for subtask in task.subtasks:
            if subtask.branch:
                await self.supervisor.workspaces.delete_branch(subtask.branch)
            subtask.status = SubtaskStatus.PENDING
            subtask.progress = 0
            subtask.current_activity = ""
            subtask.attempts = 0
            subtask.branch = None
            subtask.skipped = False

    async def _discard_integration(self, task: Task) -> None:
        await self.supervisor.teardown_task(task.id)
        if task.integration_branch:
            await self.integration.cleanup(task)
        task.integration_branch = None
        task.base_commit = None
        task.subtasks = []
        task.test_attempts = 0

    # ----- crash recovery -----

    async def recover(self) -> Task | None:
        """Discard in-flight work after a crash and restart the current task at PLANNING.

        Workspaces listed in the registry and any orphan worktrees are
        removed; partially completed agent work is not trusted.
        """
        queue, current, registry = self.store.load()

        for registration in registry.root:
            await self.supervisor.teardown(registration, discard_branch=True)
        workspaces = self.supervisor.workspaces
        orphans = await workspaces.list_workspaces(self.store.worktrees_dir)
        for path in orphans:
            await workspaces.remove_workspace(path)
        await workspaces.prune()
        self.store.clear_registry()
        self.store.clear_current_task()

        task_id = queue.current or (current.id if current else None)
        task = self.store.load_task(task_id) if task_id else None
        if task is None or task.state.is_terminal:
            if queue.current is not None:
                queue.current = None
                self.store.save_queue(queue)
            logger.info(
                "recovery_completed",
                agents=len(registry.root),
                orphan_worktrees=len(orphans),
                task_id=None,
            )
            return None

        await self._discard_integration(task)
        task.conflicts = []
        if queue.current != task.id:
            queue.tasks = [e for e in queue.tasks if e.id != task.id]
            queue.current = task.id
            self.store.save_queue(queue)
        self._transition(task, TaskState.PLANNING, "recovered after crash", force=True)

        logger.info(
            "recovery_completed",
            agents=len(registry.root),
            orphan_worktrees=len(orphans),
            task_id=task.id,
        )
        return task

    async def cleanup_worktrees(self) -> list[Path]:
        """Remove worktrees owned by neither a live agent nor the current task."""
        keep = {Path(r.workspace.path) for r in self.store.load_registry().root}
        current = self.current_task()
        if current is not None and current.integration_branch:
            keep.add(self.integration.worktree_path(current))

        workspaces = self.supervisor.workspaces
        removed = []
        for path in await workspaces.list_workspaces(self.store.worktrees_dir):
            if path not in keep:
                await workspaces.remove_workspace(path)
                removed.append(path)
        await workspaces.prune()
        logger.info("worktrees_cleaned_up", removed=len(removed), kept=len(keep))
        return removed

    def needs_recovery(self) -> bool:
        """True when a previous engine left agent or integration work behind."""
        if self.store.load_registry().root:
            return True
        task = self.current_task()
        return task is not None and task.state in RECOVERY_STATES

    # ----- persistence -----

    def _require(self, task: Task, to_state: TaskState) -> None:
        if not can_transition(task.state, to_state):
            raise InvalidTransitionError(task.id, task.state.value, to_state.value)

    def _transition(
        self, task: Task, to_state: TaskState, reason: str | None = None, force: bool = False
    ) -> None:
        from_state = task.state
        if not force:
            self._require(task, to_state)
            self._ensure_unchanged(task)

        now = self.clock()
        task.history.append(
            StateTransition(from_state=from_state, to_state=to_state, at=now, reason=reason)
        )
        task.state = to_state
        task.updated_at = now
        self.store.save_task(task)

        queue = self.store.load_queue()
        if to_state.is_terminal:
            queue.tasks = [e for e in queue.tasks if e.id != task.id]
            if queue.current == task.id:
                queue.current = None
                self.store.clear_current_task()
            if task.id not in queue.completed:
                queue.completed.append(task.id)
            self.store.save_queue(queue)
        elif queue.current == task.id:
            self._save_current(task)

        logger.info(
            "task_state_changed",
            task_id=task.id,
            from_state=from_state.value,
            to_state=to_state.value,
            reason=reason,
        )

    def _save_current(self, task: Task) -> None:
        existing = self.store.load_current_task()
        self.store.save_current_task(
            CurrentTaskRecord(
                id=task.id,
                state=task.state,
                started=existing.started if existing and existing.id == task.id else self.clock(),
                agents=[r.agent_id for r in self.store.load_registry().for_task(task.id)],
            )
        )

    def _ensure_unchanged(self, task: Task) -> None:
        """Refuse to write over a record another process moved to a different state.

        Raises:
            TaskChangedError: If the stored state differs from ``task.state``
        """
        stored = self.store.load_task(task.id)
        if stored is not None and stored.state != task.state:
            raise TaskChangedError(task.id, task.state.value, stored.state.value)

    def _persist(self, task: Task) -> None:
        self._ensure_unchanged(task)
        task.updated_at = self.clock()
        self.store.save_task(task)
        if self.store.load_queue().current == task.id:
            self._save_current(task)

    def _write_brief(self, task: Task) -> None:
        lines = [
            f"# Task {task.id}: {task.title}",
            "",
            f"Source: {task.source}",
            f"State: {task.state.value}",
            f"Created: {task.created_at.isoformat()}",
            "",
            "## Description",
            task.description or "(none)",
        ]
        if task.subtasks:
            lines += ["", "## Plan"]
            for subtask in task.subtasks:
                lines.append(f"- {subtask.role}: {', '.join(subtask.scope)}")
        if task.unassigned_paths:
            lines += ["", "## Unassigned (manual assignment needed)"]
            lines += [f"- {p}" for p in task.unassigned_paths]
        if task.shared_paths:
            lines += ["", "## Shared (coordinate between agents)"]
            lines += [f"- {p}" for p in task.shared_paths]
        self.store.write_text(self.store.task_dir(task.id) / TASK_BRIEF_FILE, "\n".join(lines) + "\n")
