"""Git worktree implementation of the workspace-isolation provider."""

import asyncio
import os
import shutil
from pathlib import Path

from symphony.domain.ports.workspace_provider import (
    CherryPickOutcome,
    CommitInfo,
    WorkspaceProvider,
)
from symphony.infrastructure.exceptions import GitCommandError, WorkspaceConflictError
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)

_FIELD_SEP = "\x1f"


class GitWorkspaceProvider(WorkspaceProvider):
    """Workspaces are ``git worktree`` checkouts of dedicated branches."""

    def __init__(self, repo_root: Path, git_path: str = "git"):
        """Initialize the provider.

        Args:
            repo_root: Root of the main repository checkout
            git_path: git executable
        """
        self.repo_root = repo_root
        self.git_path = git_path
        self._env = {
            **os.environ,
            "GIT_EDITOR": "true",
            "GIT_TERMINAL_PROMPT": "0",
        }
        # Commits made by the engine itself need an identity even on bare CI hosts
        self._env.setdefault("GIT_AUTHOR_NAME", "Symphony")
        self._env.setdefault("GIT_AUTHOR_EMAIL", "symphony@localhost")
        self._env.setdefault("GIT_COMMITTER_NAME", self._env["GIT_AUTHOR_NAME"])
        self._env.setdefault("GIT_COMMITTER_EMAIL", self._env["GIT_AUTHOR_EMAIL"])

    async def _git(
        self, *args: str, cwd: Path | None = None, check: bool = True
    ) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            self.git_path,
            *args,
            cwd=str(cwd or self.repo_root),
            env=self._env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        returncode = process.returncode if process.returncode is not None else -1
        out, err = stdout.decode(errors="replace"), stderr.decode(errors="replace")
        if check and returncode != 0:
            logger.debug("git_command_failed", args=list(args), returncode=returncode, stderr=err)
            raise GitCommandError(args, returncode, err)
        return returncode, out, err

    async def create_workspace(self, path: Path, branch: str, base: str) -> None:
        if path.exists():
            raise WorkspaceConflictError(f"Workspace already exists: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._git("worktree", "add", "-B", branch, str(path), base)
        logger.info("workspace_created", path=str(path), branch=branch, base=base)

    async def remove_workspace(self, path: Path) -> None:
        if not path.exists():
            await self.prune()
            return
        returncode, _, err = await self._git("worktree", "remove", "--force", str(path), check=False)
        if returncode != 0:
            logger.warning("worktree_remove_failed_force_deleting", path=str(path), error=err.strip())
            shutil.rmtree(path, ignore_errors=True)
            await self.prune()
        logger.info("workspace_removed", path=str(path))

    async def workspace_exists(self, path: Path) -> bool:
        return path.exists()

    async def list_workspaces(self, root: Path) -> list[Path]:
        if not root.exists():
            return []
        return sorted(p for p in root.iterdir() if p.is_dir())

    async def _branch_exists(self, branch: str) -> bool:
        returncode, _, _ = await self._git(
            "show-ref", "--verify", "--quiet", f"refs/heads/{branch}", check=False
        )
        return returncode == 0

    async def delete_branch(self, branch: str) -> None:
        if await self._branch_exists(branch):
            await self._git("branch", "-D", branch)
            logger.debug("branch_deleted", branch=branch)

    async def delete_branches(self, prefix: str) -> list[str]:
        _, out, _ = await self._git("for-each-ref", "--format=%(refname:short)", "refs/heads/")
        deleted = []
        for branch in out.splitlines():
            if branch.startswith(prefix):
                await self._git("branch", "-D", branch)
                deleted.append(branch)
        if deleted:
            logger.info("branches_deleted", prefix=prefix, count=len(deleted))
        return deleted

    async def resolve_ref(self, ref: str, cwd: Path | None = None) -> str:
        _, out, _ = await self._git("rev-parse", "--verify", f"{ref}^{{commit}}", cwd=cwd)
        return out.strip()

    async def commit_all(self, path: Path, message: str) -> str | None:
        _, status, _ = await self._git("status", "--porcelain", cwd=path)
        if not status.strip():
            return None
        await self._git("add", "-A", cwd=path)
        await self._git("commit", "-m", message, cwd=path)
        return await self.resolve_ref("HEAD", cwd=path)

    async def list_commits(self, branch: str, since: str) -> list[CommitInfo]:
        _, out, _ = await self._git(
            "log", "--reverse", f"--format=%H{_FIELD_SEP}%s", f"{since}..{branch}"
        )
        commits = []
        for line in out.splitlines():
            if not line.strip():
                continue
            sha, _, message = line.partition(_FIELD_SEP)
            _, files, _ = await self._git("diff-tree", "--no-commit-id", "--name-only", "-r", sha)
            commits.append(
                CommitInfo(sha=sha, message=message, files=[f for f in files.splitlines() if f])
            )
        return commits

    async def cherry_pick(self, path: Path, commit: str) -> CherryPickOutcome:
        returncode, _, err = await self._git(
            "cherry-pick", "--keep-redundant-commits", commit, cwd=path, check=False
        )
        if returncode == 0:
            return CherryPickOutcome(applied=True)

        conflicted = await self.conflicted_paths(path)
        if conflicted:
            logger.info("cherry_pick_conflict", commit=commit, paths=conflicted)
            return CherryPickOutcome(applied=False, conflicted_paths=conflicted)

        if await self.cherry_pick_in_progress(path):
            await self.abort_cherry_pick(path)
        raise GitCommandError(["cherry-pick", commit], returncode, err)

    async def read_stage(self, path: Path, file_path: str, stage: int) -> str | None:
        returncode, out, _ = await self._git("show", f":{stage}:{file_path}", cwd=path, check=False)
        return out if returncode == 0 else None

    async def write_and_add(self, path: Path, file_path: str, content: str) -> None:
        target = path / file_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        await self._git("add", "--", file_path, cwd=path)

    async def continue_cherry_pick(self, path: Path) -> None:
        await self._git("-c", "core.editor=true", "cherry-pick", "--continue", cwd=path)

    async def abort_cherry_pick(self, path: Path) -> None:
        await self._git("cherry-pick", "--abort", cwd=path)

    async def cherry_pick_in_progress(self, path: Path) -> bool:
        _, out, _ = await self._git("rev-parse", "--git-path", "CHERRY_PICK_HEAD", cwd=path)
        marker = Path(out.strip())
        if not marker.is_absolute():
            marker = path / marker
        return marker.exists()

    async def conflicted_paths(self, path: Path) -> list[str]:
        _, out, _ = await self._git("diff", "--name-only", "--diff-filter=U", cwd=path)
        return sorted({line for line in out.splitlines() if line})

    async def reset_hard(self, path: Path, commit: str) -> None:
        await self._git("reset", "--hard", commit, cwd=path)
        await self._git("clean", "-fd", cwd=path)

    async def fast_forward(self, target_branch: str, source_branch: str) -> str:
        source_sha = await self.resolve_ref(source_branch)
        target_sha = await self.resolve_ref(target_branch)

        returncode, _, _ = await self._git(
            "merge-base", "--is-ancestor", target_sha, source_sha, check=False
        )
        if returncode != 0:
            raise GitCommandError(
                ["merge-base", "--is-ancestor", target_branch, source_branch],
                returncode,
                f"{target_branch} has diverged from {source_branch}; refusing non-fast-forward update",
            )

        _, head, _ = await self._git("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        if head.strip() == target_branch:
            # Checked out in the main worktree: move the working tree along with the ref
            await self._git("merge", "--ff-only", source_sha)
        else:
            await self._git("update-ref", f"refs/heads/{target_branch}", source_sha, target_sha)

        logger.info(
            "protected_branch_fast_forwarded",
            branch=target_branch,
            old=target_sha[:12],
            new=source_sha[:12],
        )
        return source_sha

    async def prune(self) -> None:
        await self._git("worktree", "prune")
