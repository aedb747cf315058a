"""Domain models for Symphony."""

from symphony.domain.models import (
    AgentHealth,
    AgentRegistration,
    ConflictRecord,
    ConflictState,
    LaneAssignment,
    ProgressReport,
    Subtask,
    SubtaskStatus,
    Task,
    TaskState,
)

__all__ = [
    "AgentHealth",
    "AgentRegistration",
    "ConflictRecord",
    "ConflictState",
    "LaneAssignment",
    "ProgressReport",
    "Subtask",
    "SubtaskStatus",
    "Task",
    "TaskState",
]
