"""Unit tests for the integration resolver."""

from pathlib import Path

import pytest
from symphony.application.integration_resolver import (
    IntegrationResolver,
    VerificationRunner,
    agent_id_from_branch,
    reconcile,
    render_conflict,
)
from symphony.domain.models import (
    ConflictEntry,
    ConflictRecord,
    ConflictState,
    Subtask,
    SubtaskStatus,
    Task,
)
from symphony.infrastructure.exceptions import IntegrationConflictError
from symphony.infrastructure.state_store import StateStore

from tests.fakes import FakeWorkspaceProvider

TYPES = "src/shared/types.ts"


@pytest.fixture
def task() -> Task:
    return Task(
        id="100",
        title="Add login",
        subtasks=[
            Subtask(id="100-backend-agent", task_id="100", role="backend-agent", scope=["src/api"]),
            Subtask(id="100-frontend-agent", task_id="100", role="frontend-agent", scope=["src/ui"]),
        ],
    )


@pytest.fixture
async def prepared(
    integration: IntegrationResolver, workspaces: FakeWorkspaceProvider, task: Task
) -> Task:
    workspaces.commit_to("main", {TYPES: "export type Id = string;\n"}, "shared types")
    await integration.prepare(task)
    return task


async def finish_subtask(
    workspaces: FakeWorkspaceProvider,
    store: StateStore,
    task: Task,
    subtask: Subtask,
    *changes: dict[str, str | None],
) -> list[str]:
    """Give ``subtask`` an agent branch with one commit per change set and mark it done."""
    agent_id = f"{subtask.role}-1"
    branch = f"symphony/{task.id}/{agent_id}"
    assert task.integration_branch is not None
    await workspaces.create_workspace(store.worktrees_dir / agent_id, branch, task.integration_branch)
    shas = [workspaces.commit_to(branch, change, f"{subtask.role} change") for change in changes]
    subtask.branch = branch
    subtask.status = SubtaskStatus.COMPLETE
    return shas


class TestReconcile:
    """Tests for the trivial-merge rules."""

    def test_identical(self) -> None:
        assert reconcile("a\n", "a\nb\n", "a\nb\n") == "a\nb\n"

    def test_deletion_is_never_reconciled(self) -> None:
        assert reconcile("a\n", None, "a\n") is None
        assert reconcile("a\n", "a\n", None) is None

    def test_more_complete_side_wins(self) -> None:
        """Test a side containing the other's lines in order is chosen."""
        base = "type A = 1;\n"
        ours = "type A = 1;\ntype B = 2;\n"
        theirs = "type A = 1;\ntype B = 2;\ntype C = 3;\n"

        assert reconcile(base, ours, theirs) == theirs
        assert reconcile(base, theirs, ours) == theirs

    def test_file_added_on_both_sides(self) -> None:
        assert reconcile(None, "type A = 1;\n", "type A = 1;\ntype B = 2;\n") == (
            "type A = 1;\ntype B = 2;\n"
        )

    def test_trailing_whitespace_ignored(self) -> None:
        assert reconcile("a\n", "a  \nb\n", "a\nb") == "a  \nb\n"

    def test_divergent_edits(self) -> None:
        """Test both sides adding different lines is a real conflict."""
        assert reconcile("a\n", "a\nb\n", "a\nc\n") is None

    def test_removed_line_is_not_dropped(self) -> None:
        """Test a side that deleted a base line never loses to the side that kept it."""
        base = "a\nb\nc\n"
        kept_and_extended = "a\nb\nX\nc\n"
        removed = "a\nc\n"

        assert reconcile(base, kept_and_extended, removed) is None
        assert reconcile(base, removed, kept_and_extended) is None

    def test_agent_id_from_branch(self) -> None:
        assert agent_id_from_branch("symphony/100/backend-agent-17") == "backend-agent-17"
        assert agent_id_from_branch(None) == "unknown"


class TestPrepare:
    """Tests for IntegrationResolver.prepare."""

    @pytest.mark.asyncio
    async def test_prepare(
        self, integration: IntegrationResolver, workspaces: FakeWorkspaceProvider, prepared: Task
    ) -> None:
        """Test the integration branch starts at the protected branch head."""
        assert prepared.base_commit == workspaces.branches["main"]
        assert prepared.integration_branch == "symphony/100/integration"
        assert workspaces.branches["symphony/100/integration"] == prepared.base_commit
        assert workspaces.worktrees[integration.worktree_path(prepared)] == "symphony/100/integration"


class TestStage:
    """Tests for IntegrationResolver.stage."""

    @pytest.mark.asyncio
    async def test_stage_disjoint_changes(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        """Test completed subtasks are replayed in plan order."""
        backend, frontend = prepared.subtasks
        api = await finish_subtask(workspaces, store, prepared, backend, {"src/api/login.py": "api\n"})
        ui = await finish_subtask(workspaces, store, prepared, frontend, {"src/ui/Login.tsx": "ui\n"})

        result = await integration.stage(prepared)

        assert result.clean
        assert result.applied == api + ui
        assert backend.applied_commits == api
        assert frontend.applied_commits == ui
        tree = workspaces.tree("symphony/100/integration")
        assert tree["src/api/login.py"] == "api\n"
        assert tree["src/ui/Login.tsx"] == "ui\n"
        assert workspaces.tree("main").get("src/api/login.py") is None

    @pytest.mark.asyncio
    async def test_stage_is_repeatable(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        """Test staging twice yields the same integration content."""
        backend, frontend = prepared.subtasks
        await finish_subtask(workspaces, store, prepared, backend, {"src/api/a.py": "1\n"})
        await finish_subtask(workspaces, store, prepared, frontend, {"src/ui/b.tsx": "2\n"})

        await integration.stage(prepared)
        first = workspaces.tree("symphony/100/integration")
        await integration.stage(prepared)

        assert workspaces.tree("symphony/100/integration") == first
        assert len(backend.applied_commits) == 1

    @pytest.mark.asyncio
    async def test_skipped_and_unfinished_subtasks_excluded(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        backend, frontend = prepared.subtasks
        await finish_subtask(workspaces, store, prepared, backend, {"src/api/a.py": "1\n"})
        await finish_subtask(workspaces, store, prepared, frontend, {"src/ui/b.tsx": "2\n"})
        frontend.skipped = True

        result = await integration.stage(prepared)

        assert len(result.applied) == 1
        assert "src/ui/b.tsx" not in workspaces.tree("symphony/100/integration")

    @pytest.mark.asyncio
    async def test_trivial_overlap_reconciled(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        """Test one agent extending the other's shared declaration is merged."""
        backend, frontend = prepared.subtasks
        base = "export type Id = string;\n"
        await finish_subtask(
            workspaces, store, prepared, backend, {TYPES: base + "export type User = {};\n"}
        )
        await finish_subtask(
            workspaces,
            store,
            prepared,
            frontend,
            {TYPES: base + "export type User = {};\nexport type Session = {};\n"},
        )

        result = await integration.stage(prepared)

        assert result.clean
        assert result.reconciled == [TYPES]
        assert workspaces.tree("symphony/100/integration")[TYPES].endswith("Session = {};\n")

    @pytest.mark.asyncio
    async def test_removed_declaration_opens_conflict(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        """Test one agent deleting a line the other kept is escalated, not merged."""
        base = "export type Id = string;\nexport type User = {};\nexport type Session = {};\n"
        assert prepared.integration_branch is not None
        prepared.base_commit = workspaces.commit_to(prepared.integration_branch, {TYPES: base})
        backend, frontend = prepared.subtasks
        await finish_subtask(
            workspaces,
            store,
            prepared,
            backend,
            {TYPES: "export type Id = string;\nexport type Session = {};\n"},
        )
        await finish_subtask(
            workspaces,
            store,
            prepared,
            frontend,
            {
                TYPES: "export type Id = string;\nexport type User = {};\n"
                "export type Token = string;\nexport type Session = {};\n"
            },
        )

        result = await integration.stage(prepared)

        assert result.conflict is not None
        assert result.conflict.paths == [TYPES]
        assert result.reconciled == []
        assert "User" not in workspaces.tree("symphony/100/integration")[TYPES]

    @pytest.mark.asyncio
    async def test_overlap_opens_conflict(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        """Test divergent edits of one shared file stop staging for a human."""
        backend, frontend = prepared.subtasks
        [api] = await finish_subtask(
            workspaces, store, prepared, backend, {TYPES: "export type Id = number;\n"}
        )
        [ui] = await finish_subtask(
            workspaces, store, prepared, frontend, {TYPES: "export type Id = bigint;\n"}
        )

        result = await integration.stage(prepared)

        record = result.conflict
        assert record is not None
        assert record.state == ConflictState.OPEN
        assert record.subtask_id == "100-frontend-agent"
        assert record.commit == ui
        assert record.paths == [TYPES]
        assert [(e.agent_id, e.commit) for e in record.entries] == [
            ("backend-agent-1", api),
            ("frontend-agent-1", ui),
        ]
        assert prepared.open_conflict() is record
        assert not await workspaces.cherry_pick_in_progress(integration.worktree_path(prepared))
        report = (store.task_dir("100") / "CONFLICT.md").read_text()
        assert TYPES in report
        assert "symphony resolve 100" in report

    @pytest.mark.asyncio
    async def test_stage_refused_while_conflict_open(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        backend, frontend = prepared.subtasks
        await finish_subtask(workspaces, store, prepared, backend, {TYPES: "a\n"})
        await finish_subtask(workspaces, store, prepared, frontend, {TYPES: "b\n"})
        await integration.stage(prepared)

        with pytest.raises(IntegrationConflictError):
            await integration.stage(prepared)


class TestResume:
    """Tests for IntegrationResolver.resume."""

    @pytest.fixture
    async def conflicted(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> Task:
        backend, frontend = prepared.subtasks
        await finish_subtask(workspaces, store, prepared, backend, {TYPES: "type Id = number;\n"})
        await finish_subtask(
            workspaces,
            store,
            prepared,
            frontend,
            {TYPES: "type Id = bigint;\n"},
            {"src/ui/Login.tsx": "form\n"},
        )
        result = await integration.stage(prepared)
        assert result.conflict is not None
        return prepared

    @pytest.mark.asyncio
    async def test_resume_after_manual_resolution(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        conflicted: Task,
    ) -> None:
        """Test resolving by hand marks the commit applied and continues the replay."""
        workspaces.commit_to(
            "symphony/100/integration", {TYPES: "type Id = number | bigint;\n"}, "merge types"
        )
        conflicting = conflicted.open_conflict()
        assert conflicting is not None

        result = await integration.resume(conflicted)

        assert result.clean
        assert conflicting.state == ConflictState.RESOLVED
        assert conflicting.resolved_at is not None
        frontend = conflicted.subtasks[1]
        assert frontend.applied_commits[0] == conflicting.commit
        assert len(result.applied) == 1
        tree = workspaces.tree("symphony/100/integration")
        assert tree[TYPES] == "type Id = number | bigint;\n"
        assert tree["src/ui/Login.tsx"] == "form\n"

    @pytest.mark.asyncio
    async def test_markers_left_in_file(
        self, integration: IntegrationResolver, conflicted: Task
    ) -> None:
        """Test leftover conflict markers keep the conflict open."""
        worktree = integration.worktree_path(conflicted)
        (worktree / "src/shared").mkdir(parents=True)
        (worktree / TYPES).write_text(
            "<<<<<<< HEAD\ntype Id = number;\n=======\ntype Id = bigint;\n>>>>>>> abc\n"
        )

        with pytest.raises(IntegrationConflictError) as exc_info:
            await integration.resume(conflicted)

        assert exc_info.value.paths == [TYPES]
        open_conflict = conflicted.open_conflict()
        assert open_conflict is not None

    @pytest.mark.asyncio
    async def test_cherry_pick_still_in_progress(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        conflicted: Task,
    ) -> None:
        record = conflicted.open_conflict()
        assert record is not None
        await workspaces.cherry_pick(integration.worktree_path(conflicted), record.commit)

        with pytest.raises(IntegrationConflictError):
            await integration.resume(conflicted)


class TestFinalize:
    """Tests for the verification gate and promotion."""

    @pytest.mark.asyncio
    async def test_gate_without_command(
        self, integration: IntegrationResolver, workspaces: FakeWorkspaceProvider, prepared: Task
    ) -> None:
        """Test the gate passes when no verification command is configured."""
        main_before = workspaces.branches["main"]

        result = await integration.finalize(prepared)

        assert result.passed and result.skipped
        assert prepared.last_verification == result
        assert workspaces.branches["main"] == main_before

    @pytest.mark.asyncio
    async def test_promote_fast_forwards_protected_branch(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        backend = prepared.subtasks[0]
        await finish_subtask(workspaces, store, prepared, backend, {"src/api/a.py": "1\n"})
        prepared.subtasks[1].skipped = True
        await integration.stage(prepared)

        await integration.finalize(prepared, promote=True)

        assert workspaces.branches["main"] == workspaces.branches["symphony/100/integration"]
        assert workspaces.tree("main")["src/api/a.py"] == "1\n"

    @pytest.mark.asyncio
    async def test_failing_gate_blocks_promotion(
        self,
        store: StateStore,
        workspaces: FakeWorkspaceProvider,
        prepared: Task,
    ) -> None:
        resolver = IntegrationResolver(
            store=store, workspaces=workspaces, verifier=VerificationRunner("echo broken; exit 3")
        )
        resolver.worktree_path(prepared).mkdir(parents=True)

        result = await resolver.finalize(prepared, promote=True)

        assert not result.passed
        assert result.returncode == 3
        assert "broken" in result.output
        assert workspaces.fast_forwards == []


class TestVerificationRunner:
    """Tests for VerificationRunner."""

    @pytest.mark.asyncio
    async def test_passing_command(self, tmp_path: Path) -> None:
        result = await VerificationRunner("echo ok").run(tmp_path)

        assert result.passed
        assert result.returncode == 0
        assert result.output.strip() == "ok"

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path) -> None:
        """Test a hanging command fails the gate."""
        result = await VerificationRunner("sleep 5", timeout=0.2).run(tmp_path)

        assert not result.passed
        assert "timed out" in result.output


class TestCleanup:
    """Tests for cleanup and rebasing."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_task_branches(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        await finish_subtask(workspaces, store, prepared, prepared.subtasks[0], {"src/api/a": "1"})

        await integration.cleanup(prepared)

        assert not [b for b in workspaces.branches if b.startswith("symphony/100/")]
        assert integration.worktree_path(prepared) not in workspaces.worktrees
        assert "main" in workspaces.branches

    @pytest.mark.asyncio
    async def test_rebase_on_staged(
        self,
        integration: IntegrationResolver,
        workspaces: FakeWorkspaceProvider,
        store: StateStore,
        prepared: Task,
    ) -> None:
        """Test the staged head becomes the base for the next round."""
        backend = prepared.subtasks[0]
        await finish_subtask(workspaces, store, prepared, backend, {"src/api/a.py": "1\n"})
        prepared.subtasks[1].skipped = True
        await integration.stage(prepared)

        await integration.rebase_on_staged(prepared)

        assert prepared.base_commit == workspaces.branches["symphony/100/integration"]
        assert backend.applied_commits == []


def test_render_conflict_lists_files_and_steps() -> None:
    """Test the conflict report is readable on its own."""
    record = ConflictRecord(
        id="100-conflict-1",
        task_id="100",
        subtask_id="100-frontend-agent",
        commit="f" * 40,
        entries=[ConflictEntry(path=TYPES, agent_id="frontend-agent-1", commit="f" * 40)],
        description="overlap",
        suggested_resolution=["edit", "symphony resolve 100"],
    )

    text = render_conflict(record)

    assert text.startswith("# Integration conflict 100-conflict-1")
    assert f"| {TYPES} | frontend-agent-1 | ffffffffffff |" in text
    assert "2. symphony resolve 100" in text
