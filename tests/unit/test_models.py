"""Unit tests for domain models."""

import pytest
from pydantic import ValidationError
from symphony.domain.models import (
    AgentRegistration,
    ConflictEntry,
    ConflictRecord,
    ConflictState,
    LaneAssignment,
    ProgressReport,
    RegistryRecord,
    Subtask,
    SubtaskStatus,
    Task,
    TaskState,
    WorkspaceRef,
)


def _registration(agent_id: str, task_id: str = "1", subtask_id: str = "1-a") -> AgentRegistration:
    return AgentRegistration(
        agent_id=agent_id,
        role="a",
        task_id=task_id,
        subtask_id=subtask_id,
        workspace=WorkspaceRef(path=f"/tmp/{agent_id}", branch=f"symphony/{task_id}/{agent_id}"),
    )


class TestTaskState:
    """Tests for TaskState."""

    @pytest.mark.parametrize(
        "state", [TaskState.COMPLETE, TaskState.CANCELLED, TaskState.FAILED]
    )
    def test_terminal_states(self, state: TaskState) -> None:
        """Test the three terminal states."""
        assert state.is_terminal

    def test_gates_are_not_terminal(self) -> None:
        """Test human gates are not terminal."""
        assert not TaskState.WAITING_APPROVAL.is_terminal
        assert not TaskState.ESCALATED.is_terminal


class TestTask:
    """Tests for Task model."""

    def test_defaults(self) -> None:
        """Test creating a task with defaults."""
        task = Task(id="1", title="Add login")

        assert task.state == TaskState.PENDING
        assert task.source == "direct"
        assert task.subtasks == []
        assert task.test_attempts == 0
        assert task.open_conflict() is None
        assert not task.all_subtasks_done

    def test_list_defaults_not_shared(self) -> None:
        """Test list fields are independent between instances."""
        first = Task(id="1", title="a")
        second = Task(id="2", title="b")

        first.context_notes.append("note")

        assert second.context_notes == []

    def test_all_subtasks_done_counts_skipped(self) -> None:
        """Test skipped subtasks count as done."""
        task = Task(
            id="1",
            title="t",
            subtasks=[
                Subtask(id="1-a", task_id="1", role="a", scope=["a"], status=SubtaskStatus.COMPLETE),
                Subtask(id="1-b", task_id="1", role="b", scope=["b"], skipped=True),
            ],
        )

        assert task.all_subtasks_done
        assert task.subtask("1-b") is not None
        assert task.subtask("missing") is None

    def test_state_validated_on_assignment(self) -> None:
        """Test invalid states are rejected on assignment."""
        task = Task(id="1", title="t")

        with pytest.raises(ValidationError):
            task.state = "NOT_A_STATE"

    def test_open_conflict(self) -> None:
        """Test only OPEN conflicts are returned."""
        resolved = ConflictRecord(
            id="c1", task_id="1", subtask_id="1-a", commit="abc", state=ConflictState.RESOLVED
        )
        open_ = ConflictRecord(
            id="c2",
            task_id="1",
            subtask_id="1-b",
            commit="def",
            entries=[
                ConflictEntry(path="src/shared/b.ts", agent_id="b-1", commit="def"),
                ConflictEntry(path="src/shared/a.ts", agent_id="a-1", commit="abc"),
                ConflictEntry(path="src/shared/a.ts", agent_id="b-1", commit="def"),
            ],
        )
        task = Task(id="1", title="t", conflicts=[resolved, open_])

        assert task.open_conflict() is open_
        assert open_.paths == ["src/shared/a.ts", "src/shared/b.ts"]


class TestProgressReport:
    """Tests for ProgressReport."""

    def test_progress_bounds(self) -> None:
        """Test progress is limited to 0-100."""
        with pytest.raises(ValidationError):
            ProgressReport(
                status=SubtaskStatus.IN_PROGRESS,
                progress=120,
                current="x",
                last_updated="2025-01-01T00:00:00Z",
            )


class TestLaneAssignment:
    """Tests for LaneAssignment."""

    def test_single_glob_coerced_to_list(self) -> None:
        """Test a bare string lane becomes a one-item list."""
        lanes = LaneAssignment(lanes={"docs-agent": "docs", "api-agent": ["src/api"]})

        assert lanes.lanes == {"docs-agent": ["docs"], "api-agent": ["src/api"]}
        assert lanes.roles() == ["docs-agent", "api-agent"]


class TestRegistryRecord:
    """Tests for the agent registry."""

    def test_serializes_as_bare_list(self) -> None:
        """Test the registry is stored as a JSON list."""
        registry = RegistryRecord([_registration("a-1")])

        assert registry.model_dump_json().startswith("[")

    def test_lookups(self) -> None:
        """Test lookup by agent, subtask and task."""
        registry = RegistryRecord(
            [
                _registration("a-1"),
                _registration("b-1", subtask_id="1-b"),
                _registration("c-1", task_id="2", subtask_id="2-c"),
            ]
        )

        assert registry.get("b-1") is not None
        assert registry.get("zzz") is None
        assert [r.agent_id for r in registry.for_subtask("1-a")] == ["a-1"]
        assert [r.agent_id for r in registry.for_task("1")] == ["a-1", "b-1"]
