"""Exception hierarchy for the Symphony orchestration engine."""

from collections.abc import Sequence


class SymphonyError(Exception):
    """Base exception for all Symphony errors.

    Attributes:
        remediation: Optional guidance on how to fix the issue
    """

    def __init__(self, message: str, remediation: str | None = None):
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        """Return formatted error message with remediation if available."""
        if self.remediation:
            return f"{self.args[0]}\n\nRemediation: {self.remediation}"
        return str(self.args[0])


class ConfigurationError(SymphonyError):
    """Invalid or missing configuration. Never retried."""


class LaneConfigError(ConfigurationError):
    """Lane assignment file is missing, empty or malformed."""

    def __init__(self, message: str):
        super().__init__(
            message,
            remediation="Edit symphony.config.yml: every role needs at least one directory "
            "under 'lanes', and 'shared' prefixes must not overlap any lane",
        )


class LaneOverlapError(ConfigurationError):
    """A path is covered by more than one role's lane.

    Attributes:
        path: The contested path
        roles: Roles whose lanes cover the path
    """

    def __init__(self, path: str, roles: Sequence[str]):
        self.path = path
        self.roles = tuple(roles)
        super().__init__(
            f"Path '{path}' is claimed by lanes of {' and '.join(self.roles)}",
            remediation="Narrow one of the lane globs in symphony.config.yml, move the path "
            "under 'shared', or assign it manually before planning",
        )


class TaskNotFoundError(SymphonyError):
    """No task record exists for the given id."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class InvalidTransitionError(SymphonyError):
    """Requested lifecycle transition is not allowed from the current state."""

    def __init__(self, task_id: str, from_state: str, to_state: str):
        self.task_id = task_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Task {task_id}: transition {from_state} -> {to_state} is not allowed")


class TaskChangedError(SymphonyError):
    """The task record on disk moved to another state while this process held a copy."""

    def __init__(self, task_id: str, expected: str, actual: str):
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Task {task_id} is now {actual} (expected {expected}); another command changed it",
            remediation="Run 'symphony status' and retry the command",
        )


class WorkspaceError(SymphonyError):
    """Base error for workspace isolation failures."""


class WorkspaceConflictError(WorkspaceError):
    """A workspace (or live registration) already exists for the agent or subtask."""

    def __init__(self, message: str):
        super().__init__(
            message,
            remediation="Run 'symphony cleanup --worktrees' if the workspace is left over "
            "from a crashed run",
        )


class GitCommandError(WorkspaceError):
    """A git command exited with a non-zero status.

    Attributes:
        command: Argument vector that was executed
        returncode: Exit status
        stderr: Captured standard error
    """

    def __init__(self, command: Sequence[str], returncode: int, stderr: str):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(self.command)} failed with exit code {returncode}: {stderr.strip()}"
        )


class WorkerSessionError(SymphonyError):
    """The worker session (agent process) could not be started."""


class IntegrationConflictError(SymphonyError):
    """An integration conflict is still unresolved."""

    def __init__(self, task_id: str, paths: Sequence[str]):
        self.task_id = task_id
        self.paths = list(paths)
        super().__init__(
            f"Task {task_id}: conflict still present in {', '.join(self.paths) or 'integration branch'}",
            remediation="Resolve the listed files in the integration worktree, commit, "
            "then run 'symphony resolve'",
        )
