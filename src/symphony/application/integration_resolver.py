"""Integration resolver: replay agent branches onto one integration branch."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from symphony.domain.models import (
    ConflictEntry,
    ConflictRecord,
    ConflictState,
    Subtask,
    Task,
    VerificationResult,
    utcnow,
)
from symphony.domain.ports.workspace_provider import CommitInfo, WorkspaceProvider
from symphony.infrastructure.exceptions import IntegrationConflictError, SymphonyError
from symphony.infrastructure.logger import get_logger
from symphony.infrastructure.state_store import StateStore

logger = get_logger(__name__)

CONFLICT_REPORT_FILE = "CONFLICT.md"
_CONFLICT_MARKERS = ("<<<<<<< ", ">>>>>>> ")
_MAX_OUTPUT_CHARS = 20000


def _is_subsequence(short: list[str], long: list[str]) -> bool:
    remaining = iter(long)
    return all(line in remaining for line in short)


def _lines(text: str) -> list[str]:
    return [line.rstrip() for line in text.splitlines()]


def reconcile(base: str | None, ours: str | None, theirs: str | None) -> str | None:
    """Choose a merged version of one conflicted file, if the choice is safe.

    ``base`` is the file as the picked commit's parent had it (None when both
    sides added the file). Identical sides are taken as-is. Otherwise both
    sides must be pure additions to the base, and every line of one side must
    appear in the other in the same order (the same declaration added twice,
    one side extending the other); the more complete side wins. Anything
    else, including a line or file deleted on either side, returns None.
    """
    if ours is None or theirs is None:
        return None
    if ours == theirs:
        return ours

    our_lines = _lines(ours)
    their_lines = _lines(theirs)
    if our_lines == their_lines:
        return ours

    base_lines = _lines(base) if base is not None else []
    if not (_is_subsequence(base_lines, our_lines) and _is_subsequence(base_lines, their_lines)):
        return None
    if _is_subsequence(their_lines, our_lines):
        return ours
    if _is_subsequence(our_lines, their_lines):
        return theirs
    return None


def agent_id_from_branch(branch: str | None) -> str:
    return branch.rsplit("/", 1)[-1] if branch else "unknown"


@dataclass
class StageResult:
    """Outcome of a staging (or resume) run."""

    applied: list[str] = field(default_factory=list)
    reconciled: list[str] = field(default_factory=list)
    conflict: ConflictRecord | None = None

    @property
    def clean(self) -> bool:
        return self.conflict is None


class VerificationRunner:
    """Runs the configured verification command in a worktree."""

    def __init__(self, command: str | None, timeout: float = 1800.0):
        self.command = command
        self.timeout = timeout

    async def run(self, cwd: Path) -> VerificationResult:
        if not self.command:
            logger.info("verification_skipped", reason="no verify_command configured")
            return VerificationResult(passed=True, skipped=True)

        logger.info("verification_started", command=self.command, cwd=str(cwd))
        process = await asyncio.create_subprocess_shell(
            self.command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("verification_timeout", command=self.command, timeout=self.timeout)
            return VerificationResult(
                passed=False,
                command=self.command,
                returncode=process.returncode,
                output=f"Verification timed out after {self.timeout:.0f}s",
            )

        output = stdout.decode(errors="replace")[-_MAX_OUTPUT_CHARS:]
        result = VerificationResult(
            passed=process.returncode == 0,
            command=self.command,
            returncode=process.returncode,
            output=output,
        )
        logger.info("verification_finished", passed=result.passed, returncode=process.returncode)
        return result


class IntegrationResolver:
    """Builds the integration branch from completed agent branches.

    Staging resets the integration branch to the task's base commit and
    cherry-picks every completed subtask's commits in plan order, so running
    it twice yields the same branch. Overlapping edits are reconciled only
    when the choice is trivially safe; otherwise the cherry-pick is aborted,
    a conflict record is opened and a human takes over. The protected branch
    changes only in ``finalize(promote=True)``.
    """

    def __init__(
        self,
        store: StateStore,
        workspaces: WorkspaceProvider,
        protected_branch: str = "main",
        verifier: VerificationRunner | None = None,
    ):
        self.store = store
        self.workspaces = workspaces
        self.protected_branch = protected_branch
        self.verifier = verifier or VerificationRunner(None)

    def worktree_path(self, task: Task) -> Path:
        return self.store.worktrees_dir / f"{task.id}-integration"

    async def prepare(self, task: Task) -> None:
        """Create the integration branch and worktree from the protected branch."""
        path = self.worktree_path(task)
        if await self.workspaces.workspace_exists(path):
            await self.workspaces.remove_workspace(path)

        base = await self.workspaces.resolve_ref(self.protected_branch)
        branch = f"symphony/{task.id}/integration"
        await self.workspaces.create_workspace(path, branch, base)

        task.base_commit = base
        task.integration_branch = branch
        logger.info(
            "integration_prepared",
            task_id=task.id,
            branch=branch,
            base=base[:12],
        )

    async def rebase_on_staged(self, task: Task) -> None:
        """Make the current integration head the base for the next round of agents."""
        task.base_commit = await self.workspaces.resolve_ref(
            "HEAD", cwd=self.worktree_path(task)
        )
        for subtask in task.subtasks:
            subtask.applied_commits = []

    async def stage(self, task: Task) -> StageResult:
        """Reset the integration branch and replay all completed subtasks.

        Raises:
            IntegrationConflictError: If a conflict record is still open
        """
        open_conflict = task.open_conflict()
        if open_conflict is not None:
            raise IntegrationConflictError(task.id, open_conflict.paths)
        if not task.base_commit:
            raise SymphonyError(f"Task {task.id} has no integration base; approve it first")

        path = self.worktree_path(task)
        if await self.workspaces.cherry_pick_in_progress(path):
            await self.workspaces.abort_cherry_pick(path)
        await self.workspaces.reset_hard(path, task.base_commit)
        for subtask in task.subtasks:
            subtask.applied_commits = []

        logger.info("integration_staging_started", task_id=task.id, base=task.base_commit[:12])
        return await self._replay(task, path)

    async def resume(self, task: Task) -> StageResult:
        """Continue staging after a human resolved the open conflict.

        Raises:
            IntegrationConflictError: If a cherry-pick is still in progress,
                unmerged paths remain, or conflict markers are left in a
                flagged file
        """
        path = self.worktree_path(task)
        record = task.open_conflict()

        if await self.workspaces.cherry_pick_in_progress(path):
            raise IntegrationConflictError(task.id, record.paths if record else [])
        unmerged = await self.workspaces.conflicted_paths(path)
        if unmerged:
            raise IntegrationConflictError(task.id, unmerged)

        if record is not None:
            marked = [p for p in record.paths if self._has_conflict_markers(path / p)]
            if marked:
                raise IntegrationConflictError(task.id, marked)

            record.state = ConflictState.RESOLVED
            record.resolved_at = utcnow()
            subtask = task.subtask(record.subtask_id)
            if subtask is not None and record.commit not in subtask.applied_commits:
                subtask.applied_commits.append(record.commit)
            logger.info("integration_conflict_resolved", task_id=task.id, conflict_id=record.id)

        return await self._replay(task, path)

    async def _replay(self, task: Task, path: Path) -> StageResult:
        result = StageResult()
        touched: dict[str, ConflictEntry] = {}

        for subtask in task.subtasks:
            if subtask.skipped or not subtask.done or not subtask.branch:
                continue
            agent_id = agent_id_from_branch(subtask.branch)
            commits = await self.workspaces.list_commits(subtask.branch, task.base_commit or "")

            for commit in commits:
                if commit.sha not in subtask.applied_commits:
                    conflict = await self._apply(task, subtask, commit, path, touched, result)
                    if conflict is not None:
                        result.conflict = conflict
                        return result
                for file_path in commit.files:
                    touched[file_path] = ConflictEntry(
                        path=file_path, agent_id=agent_id, commit=commit.sha
                    )

        logger.info(
            "integration_staged",
            task_id=task.id,
            applied=len(result.applied),
            reconciled=result.reconciled,
        )
        return result

    async def _apply(
        self,
        task: Task,
        subtask: Subtask,
        commit: CommitInfo,
        path: Path,
        touched: dict[str, ConflictEntry],
        result: StageResult,
    ) -> ConflictRecord | None:
        outcome = await self.workspaces.cherry_pick(path, commit.sha)
        if outcome.applied:
            subtask.applied_commits.append(commit.sha)
            result.applied.append(commit.sha)
            return None

        merged: dict[str, str] = {}
        unresolved: list[str] = []
        for file_path in outcome.conflicted_paths:
            base = await self.workspaces.read_stage(path, file_path, 1)
            ours = await self.workspaces.read_stage(path, file_path, 2)
            theirs = await self.workspaces.read_stage(path, file_path, 3)
            content = reconcile(base, ours, theirs)
            if content is None:
                unresolved.append(file_path)
            else:
                merged[file_path] = content

        if not unresolved:
            for file_path, content in merged.items():
                await self.workspaces.write_and_add(path, file_path, content)
            await self.workspaces.continue_cherry_pick(path)
            subtask.applied_commits.append(commit.sha)
            result.applied.append(commit.sha)
            result.reconciled.extend(merged)
            logger.info(
                "integration_conflict_reconciled",
                task_id=task.id,
                commit=commit.sha[:12],
                paths=list(merged),
            )
            return None

        await self.workspaces.abort_cherry_pick(path)
        record = self._open_conflict(task, subtask, commit, unresolved, touched)
        logger.warning(
            "integration_conflict",
            task_id=task.id,
            conflict_id=record.id,
            commit=commit.sha[:12],
            paths=unresolved,
        )
        return record

    def _open_conflict(
        self,
        task: Task,
        subtask: Subtask,
        commit: CommitInfo,
        paths: list[str],
        touched: dict[str, ConflictEntry],
    ) -> ConflictRecord:
        agent_id = agent_id_from_branch(subtask.branch)
        entries: list[ConflictEntry] = []
        for file_path in paths:
            earlier = touched.get(file_path)
            if earlier is not None:
                entries.append(earlier)
            entries.append(ConflictEntry(path=file_path, agent_id=agent_id, commit=commit.sha))

        worktree = self.worktree_path(task)
        record = ConflictRecord(
            id=f"{task.id}-conflict-{len(task.conflicts) + 1}",
            task_id=task.id,
            subtask_id=subtask.id,
            commit=commit.sha,
            entries=entries,
            description=(
                f"Commit {commit.sha[:12]} ({commit.message}) of {agent_id} overlaps changes "
                f"already on {task.integration_branch} in {', '.join(paths)}"
            ),
            suggested_resolution=[
                f"cd {worktree}",
                f"git cherry-pick {commit.sha}",
                f"Edit {', '.join(paths)} to combine both changes and remove conflict markers",
                "git add <files> && git cherry-pick --continue",
                f"symphony resolve {task.id}",
            ],
        )
        task.conflicts.append(record)
        self.store.write_text(
            self.store.task_dir(task.id) / CONFLICT_REPORT_FILE, render_conflict(record)
        )
        return record

    async def finalize(self, task: Task, promote: bool = False) -> VerificationResult:
        """Run the verification gate; with ``promote`` also fast-forward the protected branch.

        Raises:
            GitCommandError: If the protected branch diverged from the
                integration branch
        """
        result = await self.verifier.run(self.worktree_path(task))
        task.last_verification = result

        if promote and result.passed and task.integration_branch:
            await self.workspaces.fast_forward(self.protected_branch, task.integration_branch)
            logger.info(
                "integration_promoted",
                task_id=task.id,
                branch=self.protected_branch,
            )
        return result

    async def cleanup(self, task: Task) -> None:
        """Remove the integration worktree and every ``symphony/<task_id>/*`` branch."""
        path = self.worktree_path(task)
        if await self.workspaces.workspace_exists(path):
            await self.workspaces.remove_workspace(path)
        deleted = await self.workspaces.delete_branches(f"symphony/{task.id}/")
        logger.info("integration_cleaned_up", task_id=task.id, branches=len(deleted))

    @staticmethod
    def _has_conflict_markers(file_path: Path) -> bool:
        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return False
        return any(
            line.startswith(_CONFLICT_MARKERS) or line == "=======" for line in text.splitlines()
        )


def render_conflict(record: ConflictRecord) -> str:
    """Human-readable conflict report written next to the task record."""
    lines = [
        f"# Integration conflict {record.id}",
        "",
        f"Task: {record.task_id}",
        f"Subtask: {record.subtask_id}",
        f"Commit: {record.commit}",
        f"Opened: {record.created_at.isoformat()}",
        f"State: {record.state.value}",
        "",
        "## Description",
        record.description,
        "",
        "## Files",
        "| Path | Agent | Commit |",
        "|---|---|---|",
        *(f"| {e.path} | {e.agent_id} | {e.commit[:12]} |" for e in record.entries),
        "",
        "## Suggested resolution",
        *(f"{i}. {step}" for i, step in enumerate(record.suggested_resolution, start=1)),
    ]
    return "\n".join(lines) + "\n"
