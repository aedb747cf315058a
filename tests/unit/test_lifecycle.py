"""Unit tests for the lifecycle transition table."""

import pytest
from symphony.domain.lifecycle import (
    ALLOWED_TRANSITIONS,
    RECOVERY_STATES,
    UNFORCED_CANCEL_STATES,
    can_transition,
)
from symphony.domain.models import TaskState

S = TaskState


class TestTransitionTable:
    """Tests for ALLOWED_TRANSITIONS."""

    def test_every_state_listed(self) -> None:
        """Test the table covers every state."""
        assert set(ALLOWED_TRANSITIONS) == set(TaskState)

    @pytest.mark.parametrize("state", [S.COMPLETE, S.CANCELLED, S.FAILED])
    def test_terminal_states_have_no_exits(self, state: TaskState) -> None:
        """Test terminal states cannot be left."""
        assert ALLOWED_TRANSITIONS[state] == frozenset()

    @pytest.mark.parametrize(
        ("from_state", "to_state"),
        [
            (S.PENDING, S.PLANNING),
            (S.PLANNING, S.WAITING_APPROVAL),
            (S.WAITING_APPROVAL, S.ACTIVE),
            (S.WAITING_APPROVAL, S.REJECTED),
            (S.ACTIVE, S.REVIEW),
            (S.ACTIVE, S.TEST_FAILED),
            (S.ACTIVE, S.NEEDS_HUMAN_INTEGRATION),
            (S.ACTIVE, S.ESCALATED),
            (S.TEST_FAILED, S.ACTIVE),
            (S.REVIEW, S.WAITING_FINAL),
            (S.REVIEW, S.FAILED),
            (S.WAITING_FINAL, S.COMPLETE),
            (S.REJECTED, S.ACTIVE),
            (S.REJECTED, S.PLANNING),
            (S.NEEDS_HUMAN_INTEGRATION, S.ACTIVE),
            (S.ESCALATED, S.ACTIVE),
        ],
    )
    def test_allowed(self, from_state: TaskState, to_state: TaskState) -> None:
        assert can_transition(from_state, to_state)

    @pytest.mark.parametrize(
        ("from_state", "to_state"),
        [
            (S.PENDING, S.ACTIVE),
            (S.PLANNING, S.ACTIVE),
            (S.ACTIVE, S.COMPLETE),
            (S.REVIEW, S.COMPLETE),
            (S.WAITING_APPROVAL, S.REVIEW),
            (S.REJECTED, S.CANCELLED),
            (S.COMPLETE, S.PLANNING),
        ],
    )
    def test_forbidden(self, from_state: TaskState, to_state: TaskState) -> None:
        assert not can_transition(from_state, to_state)

    def test_complete_only_through_final_gate(self) -> None:
        """Test WAITING_FINAL is the only way into COMPLETE."""
        sources = [s for s, targets in ALLOWED_TRANSITIONS.items() if S.COMPLETE in targets]

        assert sources == [S.WAITING_FINAL]

    def test_unforced_cancel_states(self) -> None:
        """Test only queued and planning tasks cancel without force."""
        assert UNFORCED_CANCEL_STATES == {S.PENDING, S.PLANNING}


class TestRecoveryStates:
    """Tests for RECOVERY_STATES."""

    def test_gates_holding_staged_work_are_recovered(self) -> None:
        assert {S.REVIEW, S.WAITING_FINAL, S.NEEDS_HUMAN_INTEGRATION} <= RECOVERY_STATES

    def test_no_terminal_or_pre_approval_state(self) -> None:
        """Test states without agent or integration work are left alone."""
        assert not RECOVERY_STATES & {
            S.PENDING,
            S.PLANNING,
            S.WAITING_APPROVAL,
            S.ESCALATED,
            S.COMPLETE,
            S.CANCELLED,
            S.FAILED,
        }
