"""Abstract workspace-isolation provider."""

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field


class CommitInfo(BaseModel):
    """A commit on an agent branch."""

    sha: str
    message: str = ""
    files: list[str] = Field(default_factory=list)


class CherryPickOutcome(BaseModel):
    """Result of replaying a single commit onto the current branch."""

    applied: bool
    conflicted_paths: list[str] = Field(default_factory=list)
    empty: bool = False


class WorkspaceProvider(ABC):
    """Creates and manipulates isolated branch + directory pairs.

    Every agent gets one workspace; the integration branch gets one more.
    Implementations must never touch the protected branch except through
    ``fast_forward``.
    """

    @abstractmethod
    async def create_workspace(self, path: Path, branch: str, base: str) -> None:
        """Create ``branch`` from ``base`` and check it out at ``path``.

        Raises:
            WorkspaceConflictError: If ``path`` already exists
        """

    @abstractmethod
    async def remove_workspace(self, path: Path) -> None:
        """Remove the worktree at ``path``; a missing path is not an error."""

    @abstractmethod
    async def workspace_exists(self, path: Path) -> bool:
        pass

    @abstractmethod
    async def list_workspaces(self, root: Path) -> list[Path]:
        """List workspace directories under ``root``."""

    @abstractmethod
    async def delete_branch(self, branch: str) -> None:
        """Delete ``branch``; a missing branch is not an error."""

    @abstractmethod
    async def delete_branches(self, prefix: str) -> list[str]:
        """Delete every branch whose name starts with ``prefix``."""

    @abstractmethod
    async def resolve_ref(self, ref: str, cwd: Path | None = None) -> str:
        """Return the commit sha ``ref`` points at."""

    @abstractmethod
    async def commit_all(self, path: Path, message: str) -> str | None:
        """Stage and commit everything in the workspace; None when clean."""

    @abstractmethod
    async def list_commits(self, branch: str, since: str) -> list[CommitInfo]:
        """Commits reachable from ``branch`` but not ``since``, oldest first."""

    @abstractmethod
    async def cherry_pick(self, path: Path, commit: str) -> CherryPickOutcome:
        """Replay ``commit`` onto the branch checked out at ``path``.

        On conflict the cherry-pick is left in progress so the caller can
        inspect the conflicted paths, then continue or abort it.
        """

    @abstractmethod
    async def read_stage(self, path: Path, file_path: str, stage: int) -> str | None:
        """Read a conflicted file's content at index stage 1/2/3 (None if absent)."""

    @abstractmethod
    async def write_and_add(self, path: Path, file_path: str, content: str) -> None:
        pass

    @abstractmethod
    async def continue_cherry_pick(self, path: Path) -> None:
        pass

    @abstractmethod
    async def abort_cherry_pick(self, path: Path) -> None:
        pass

    @abstractmethod
    async def cherry_pick_in_progress(self, path: Path) -> bool:
        pass

    @abstractmethod
    async def conflicted_paths(self, path: Path) -> list[str]:
        """Paths with unmerged index entries."""

    @abstractmethod
    async def reset_hard(self, path: Path, commit: str) -> None:
        pass

    @abstractmethod
    async def fast_forward(self, target_branch: str, source_branch: str) -> str:
        """Move ``target_branch`` to ``source_branch`` (fast-forward only)."""

    @abstractmethod
    async def prune(self) -> None:
        """Forget worktrees whose directories have disappeared."""
