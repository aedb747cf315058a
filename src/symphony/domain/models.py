"""Core domain models for Symphony."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskState(str, Enum):
    """Task lifecycle states."""

    PENDING = "PENDING"  # Queued, not yet dequeued
    PLANNING = "PLANNING"
    WAITING_APPROVAL = "WAITING_APPROVAL"  # Plan ready, human gate
    ACTIVE = "ACTIVE"  # Agents running
    TEST_FAILED = "TEST_FAILED"
    REVIEW = "REVIEW"  # Integration staged, human gate
    WAITING_FINAL = "WAITING_FINAL"  # Final sign-off gate
    REJECTED = "REJECTED"
    NEEDS_HUMAN_INTEGRATION = "NEEDS_HUMAN_INTEGRATION"
    ESCALATED = "ESCALATED"  # Retries exhausted, waiting for an override
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETE, TaskState.CANCELLED, TaskState.FAILED)


class SubtaskStatus(str, Enum):
    """Status values an agent may report in its progress file."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    BLOCKED = "BLOCKED"
    FAILED = "FAILED"


class AgentHealth(str, Enum):
    """Liveness of an agent as observed by the supervisor."""

    ACTIVE = "ACTIVE"
    STALE = "STALE"  # No progress update within the timeout window
    UNKNOWN = "UNKNOWN"  # Progress report missing or malformed
    EXITED = "EXITED"  # Worker process is gone


class ErrorKind(str, Enum):
    """Cause category recorded in a task's error log."""

    STALE = "STALE"
    FAILED = "FAILED"
    EXITED = "EXITED"
    SPAWN_FAILED = "SPAWN_FAILED"
    TEST_FAILED = "TEST_FAILED"
    CONFIG = "CONFIG"  # Planning rejected by the lane configuration


class ConflictState(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class ProgressReport(BaseModel):
    """Structured progress report written by an agent (PROGRESS.md).

    All four header fields are required; a report missing any of them is
    never constructed and the agent is observed as UNKNOWN instead.
    """

    status: SubtaskStatus
    progress: int = Field(ge=0, le=100)
    current: str
    last_updated: datetime
    completed: list[str] = Field(default_factory=list)
    in_progress: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class LaneAssignment(BaseModel):
    """Role -> directory-prefix globs, plus the shared coordination prefixes."""

    lanes: dict[str, list[str]]
    shared: list[str] = Field(default_factory=list)

    @field_validator("lanes", mode="before")
    @classmethod
    def coerce_lanes(cls, v: object) -> object:
        # Allow a single string per role in hand-written YAML
        if isinstance(v, dict):
            return {role: [globs] if isinstance(globs, str) else globs for role, globs in v.items()}
        return v

    def roles(self) -> list[str]:
        return list(self.lanes.keys())


class StateTransition(BaseModel):
    """One entry of a task's lifecycle history."""

    from_state: TaskState | None
    to_state: TaskState
    at: datetime = Field(default_factory=utcnow)
    reason: str | None = None


class Subtask(BaseModel):
    """A single agent's portion of a task."""

    id: str
    task_id: str
    role: str
    scope: list[str]
    status: SubtaskStatus = SubtaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    current_activity: str = ""
    last_updated: datetime | None = None
    attempts: int = Field(default=0, ge=0)
    branch: str | None = None
    applied_commits: list[str] = Field(default_factory=list)
    skipped: bool = False

    @property
    def done(self) -> bool:
        return self.skipped or self.status == SubtaskStatus.COMPLETE


class WorkspaceRef(BaseModel):
    """An isolated worktree directory bound to a dedicated branch."""

    path: str
    branch: str


class AgentRegistration(BaseModel):
    """A live agent bound to exactly one subtask."""

    agent_id: str
    role: str
    task_id: str
    subtask_id: str
    workspace: WorkspaceRef
    slot: int = 0
    spawned_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
    attempt: int = Field(default=1, ge=1)
    pid: int | None = None


class ConflictEntry(BaseModel):
    path: str
    agent_id: str
    commit: str


class ConflictRecord(BaseModel):
    """Durable description of an overlapping change requiring human action."""

    id: str
    task_id: str
    subtask_id: str
    commit: str
    entries: list[ConflictEntry] = Field(default_factory=list)
    description: str = ""
    suggested_resolution: list[str] = Field(default_factory=list)
    state: ConflictState = ConflictState.OPEN
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None

    @property
    def paths(self) -> list[str]:
        return sorted({entry.path for entry in self.entries})


class FailureAnalysis(BaseModel):
    """Result of the root-cause pass run before any retry."""

    category: str
    transient: bool
    summary: str
    hint: str = ""


class ErrorEntry(BaseModel):
    subtask_id: str | None = None
    agent_id: str | None = None
    kind: ErrorKind
    cause: str
    last_known_state: str | None = None
    attempt: int = 0
    analysis: FailureAnalysis | None = None
    at: datetime = Field(default_factory=utcnow)


class VerificationResult(BaseModel):
    """Outcome of the test/verification gate on the integration branch."""

    passed: bool
    command: str | None = None
    returncode: int | None = None
    output: str = ""
    skipped: bool = False
    ran_at: datetime = Field(default_factory=utcnow)


class Task(BaseModel):
    """A unit of work submitted to the orchestrator.

    Attributes:
        id: Monotonic identifier derived from the creation timestamp
        source: Issue reference or "direct"
        state: Current lifecycle state; changed only by the task controller
        subtasks: Agent subtasks in plan declaration order (= spawn order)
        context_notes: Rejection reasons and failure analyses carried into
            the next agent spawn
    """

    id: str
    source: str = "direct"
    title: str
    description: str = ""
    state: TaskState = TaskState.PENDING
    subtasks: list[Subtask] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    history: list[StateTransition] = Field(default_factory=list)
    context_notes: list[str] = Field(default_factory=list)
    impact_hint: list[str] = Field(default_factory=list)
    impact_paths: list[str] = Field(default_factory=list)
    unassigned_paths: list[str] = Field(default_factory=list)
    shared_paths: list[str] = Field(default_factory=list)
    integration_branch: str | None = None
    base_commit: str | None = None
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    errors: list[ErrorEntry] = Field(default_factory=list)
    test_attempts: int = Field(default=0, ge=0)
    last_verification: VerificationResult | None = None
    escalation_reason: str | None = None

    model_config = ConfigDict(validate_assignment=True)

    def subtask(self, subtask_id: str) -> Subtask | None:
        return next((s for s in self.subtasks if s.id == subtask_id), None)

    def open_conflict(self) -> ConflictRecord | None:
        return next((c for c in self.conflicts if c.state == ConflictState.OPEN), None)

    @property
    def all_subtasks_done(self) -> bool:
        return bool(self.subtasks) and all(s.done for s in self.subtasks)


class QueueEntry(BaseModel):
    id: str
    source: str
    title: str


class QueueRecord(BaseModel):
    """Persisted queue: ordered pending tasks, current id, completed ids."""

    tasks: list[QueueEntry] = Field(default_factory=list)
    current: str | None = None
    completed: list[str] = Field(default_factory=list)


class CurrentTaskRecord(BaseModel):
    """Transient record of the task currently being driven."""

    id: str
    state: TaskState
    started: datetime = Field(default_factory=utcnow)
    agents: list[str] = Field(default_factory=list)


class RegistryRecord(RootModel[list[AgentRegistration]]):
    """Persisted agent registry, stored as a bare JSON list."""

    root: list[AgentRegistration] = Field(default_factory=list)

    def for_subtask(self, subtask_id: str) -> list[AgentRegistration]:
        return [r for r in self.root if r.subtask_id == subtask_id]

    def for_task(self, task_id: str) -> list[AgentRegistration]:
        return [r for r in self.root if r.task_id == task_id]

    def get(self, agent_id: str) -> AgentRegistration | None:
        return next((r for r in self.root if r.agent_id == agent_id), None)
