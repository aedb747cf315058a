"""Task lifecycle transition table."""

from symphony.domain.models import TaskState

S = TaskState

ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    S.PENDING: frozenset({S.PLANNING, S.CANCELLED}),
    S.PLANNING: frozenset({S.WAITING_APPROVAL, S.CANCELLED}),
    S.WAITING_APPROVAL: frozenset({S.ACTIVE, S.REJECTED, S.CANCELLED}),
    S.ACTIVE: frozenset(
        {S.REVIEW, S.TEST_FAILED, S.NEEDS_HUMAN_INTEGRATION, S.ESCALATED, S.CANCELLED}
    ),
    S.TEST_FAILED: frozenset({S.ACTIVE, S.ESCALATED, S.CANCELLED}),
    S.REVIEW: frozenset(
        {S.WAITING_FINAL, S.FAILED, S.REJECTED, S.NEEDS_HUMAN_INTEGRATION, S.CANCELLED}
    ),
    S.WAITING_FINAL: frozenset({S.COMPLETE, S.REJECTED, S.CANCELLED}),
    S.REJECTED: frozenset({S.ACTIVE, S.PLANNING}),
    S.NEEDS_HUMAN_INTEGRATION: frozenset({S.ACTIVE, S.CANCELLED}),
    S.ESCALATED: frozenset({S.ACTIVE, S.FAILED, S.CANCELLED}),
    S.COMPLETE: frozenset(),
    S.CANCELLED: frozenset(),
    S.FAILED: frozenset(),
}

# Cancellation from any other non-terminal state requires an explicit force
# that tears down every live agent of the task.
UNFORCED_CANCEL_STATES = frozenset({S.PENDING, S.PLANNING})

# States whose agent or integration work is discarded when a new engine starts
RECOVERY_STATES = frozenset(
    {S.ACTIVE, S.TEST_FAILED, S.REVIEW, S.NEEDS_HUMAN_INTEGRATION, S.WAITING_FINAL}
)


def can_transition(from_state: TaskState, to_state: TaskState) -> bool:
    return to_state in ALLOWED_TRANSITIONS[from_state]
