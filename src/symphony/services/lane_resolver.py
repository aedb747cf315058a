"""Lane resolution: partition a task's impacted paths into per-role subtasks."""

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from itertools import combinations

from symphony.domain.models import LaneAssignment, Subtask, Task
from symphony.infrastructure.exceptions import LaneConfigError, LaneOverlapError
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)

_GLOB_CHARS = frozenset("*?[")


def normalize_path(path: str) -> str:
    """Normalize a path or lane glob: forward slashes, no leading ``./`` or ``/``."""
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.strip("/")


def path_matches(path: str, pattern: str) -> bool:
    """Return True when ``path`` equals, lies beneath, or glob-matches ``pattern``.

    Glob patterns are matched against every leading sub-path so that
    ``src/*/ui`` covers ``src/app/ui/button.tsx``.
    """
    path = normalize_path(path)
    pattern = normalize_path(pattern)
    if not pattern:
        return True

    if not _GLOB_CHARS.intersection(pattern):
        return path == pattern or path.startswith(pattern + "/")

    parts = path.split("/")
    return any(fnmatchcase("/".join(parts[:i]), pattern) for i in range(1, len(parts) + 1))


def _glob_tokens(pattern: str) -> list[str]:
    """Split a glob into one token per matched character: literals, ``?``, ``*`` and classes."""
    tokens: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern[i] == "[":
            j = i + 1
            if j < len(pattern) and pattern[j] == "!":
                j += 1
            if j < len(pattern) and pattern[j] == "]":
                j += 1
            end = pattern.find("]", j)
            if end != -1:
                tokens.append(pattern[i : end + 1])
                i = end + 1
                continue
        tokens.append(pattern[i])
        i += 1
    return tokens


def _token_accepts(token: str, char: str) -> bool:
    if token in ("*", "?"):
        return True
    if len(token) > 1:
        return fnmatchcase(char, token)
    return token == char


def _tokens_compatible(x: str, y: str) -> bool:
    """True when some single character satisfies both tokens."""
    if x == "?" or y == "?":
        return True
    if len(x) == 1:
        return _token_accepts(y, x)
    if len(y) == 1:
        return _token_accepts(x, y)
    return True


def scopes_overlap(a: str, b: str) -> bool:
    """Return True when some path is covered by both scopes.

    Either scope may be a plain prefix or a glob. Both are walked together
    one character at a time; they overlap when both can match the same
    sub-path, or when one can match a sub-path the other extends past a
    ``/``. So ``src/*/ui`` overlaps ``src/app`` through ``src/app/ui``.
    """
    a = normalize_path(a)
    b = normalize_path(b)
    if not a or not b:
        return True

    left, right = _glob_tokens(a), _glob_tokens(b)
    seen: set[tuple[int, int]] = set()
    pending = [(0, 0)]
    while pending:
        i, j = pending.pop()
        if (i, j) in seen:
            continue
        seen.add((i, j))

        if i == len(left) and (j == len(right) or _token_accepts(right[j], "/")):
            return True
        if j == len(right) and i < len(left) and _token_accepts(left[i], "/"):
            return True

        if i < len(left) and left[i] == "*":
            pending.append((i + 1, j))
            if j < len(right):
                pending.append((i, j + 1))
        if j < len(right) and right[j] == "*":
            pending.append((i, j + 1))
            if i < len(left):
                pending.append((i + 1, j))
        if (
            i < len(left)
            and j < len(right)
            and "*" not in (left[i], right[j])
            and _tokens_compatible(left[i], right[j])
        ):
            pending.append((i + 1, j + 1))
    return False


@dataclass
class LanePlan:
    """Proposed partition of a task into subtasks.

    Attributes:
        subtasks: One subtask per involved role, in lane declaration order
        assignments: Impacted path -> owning role
        unassigned: Impacted paths no lane covers; need manual assignment
        shared: Impacted paths under shared prefixes; need coordination
    """

    subtasks: list[Subtask] = field(default_factory=list)
    assignments: dict[str, str] = field(default_factory=dict)
    unassigned: list[str] = field(default_factory=list)
    shared: list[str] = field(default_factory=list)


class LaneResolver:
    """Maps impacted paths to owning roles per the lane configuration.

    A path covered by two roles is never auto-assigned: planning fails with
    ``LaneOverlapError`` until the configuration is fixed or the path is
    assigned by hand.
    """

    def validate_config(self, lanes: LaneAssignment) -> None:
        """Reject empty lanes and shared prefixes that overlap a lane.

        Raises:
            LaneConfigError: On any violation
        """
        if not lanes.lanes:
            raise LaneConfigError("No lanes configured")

        for role, globs in lanes.lanes.items():
            if not [g for g in globs if normalize_path(g)]:
                raise LaneConfigError(f"Lane '{role}' has no directories")

        for shared in lanes.shared:
            for role, globs in lanes.lanes.items():
                for glob in globs:
                    if scopes_overlap(shared, glob):
                        raise LaneConfigError(
                            f"Shared prefix '{shared}' overlaps lane '{role}' ({glob})"
                        )

    def roles_for(self, path: str, lanes: LaneAssignment) -> list[str]:
        return [
            role
            for role, globs in lanes.lanes.items()
            if any(path_matches(path, glob) for glob in globs)
        ]

    def is_shared(self, path: str, lanes: LaneAssignment) -> bool:
        return any(path_matches(path, prefix) for prefix in lanes.shared)

    def resolve(self, task: Task, lanes: LaneAssignment, impact: list[str]) -> LanePlan:
        """Build a plan for ``task`` from the impact estimate.

        Raises:
            LaneConfigError: If the lane configuration is invalid
            LaneOverlapError: If an impacted path is covered by two roles
        """
        self.validate_config(lanes)

        plan = LanePlan()
        seen: set[str] = set()
        for raw in impact:
            path = normalize_path(raw)
            if not path or path in seen:
                continue
            seen.add(path)

            if self.is_shared(path, lanes):
                plan.shared.append(path)
                continue

            roles = self.roles_for(path, lanes)
            if len(roles) > 1:
                logger.error("lane_overlap", task_id=task.id, path=path, roles=roles)
                raise LaneOverlapError(path, roles)
            if roles:
                plan.assignments[path] = roles[0]
            else:
                plan.unassigned.append(path)

        involved = set(plan.assignments.values())
        for role in lanes.roles():
            if role in involved:
                plan.subtasks.append(self._subtask(task, role, lanes.lanes[role]))

        self.validate_plan(plan.subtasks, lanes.shared)

        logger.info(
            "lane_plan_resolved",
            task_id=task.id,
            roles=[s.role for s in plan.subtasks],
            unassigned=plan.unassigned,
            shared=plan.shared,
        )
        return plan

    def apply_override(
        self, plan: LanePlan, path: str, role: str, lanes: LaneAssignment, task: Task
    ) -> LanePlan:
        """Manually assign an unassigned path to ``role``.

        The path joins the role's scope (creating the role's subtask when the
        plan did not include it) and the plan is re-validated.
        """
        if role not in lanes.lanes:
            raise LaneConfigError(f"Unknown role '{role}'")

        path = normalize_path(path)
        plan.unassigned = [p for p in plan.unassigned if p != path]
        plan.assignments[path] = role

        existing = next((s for s in plan.subtasks if s.role == role), None)
        if existing is None:
            existing = self._subtask(task, role, lanes.lanes[role])
            order = lanes.roles()
            plan.subtasks.append(existing)
            plan.subtasks.sort(key=lambda s: order.index(s.role))
        if not any(path_matches(path, glob) for glob in existing.scope):
            existing.scope.append(path)

        self.validate_plan(plan.subtasks, lanes.shared)
        logger.info("lane_override_applied", task_id=task.id, path=path, role=role)
        return plan

    def validate_plan(self, subtasks: list[Subtask], shared: list[str]) -> None:
        """Check subtask scopes are pairwise disjoint outside shared prefixes.

        Raises:
            LaneOverlapError: Naming the first overlapping path and both roles
        """
        exclusive = {
            s.role: [
                normalize_path(p)
                for p in s.scope
                if not any(path_matches(p, prefix) for prefix in shared)
            ]
            for s in subtasks
        }
        for (role_a, scope_a), (role_b, scope_b) in combinations(exclusive.items(), 2):
            for a in scope_a:
                for b in scope_b:
                    if scopes_overlap(a, b):
                        raise LaneOverlapError(a if path_matches(a, b) else b, [role_a, role_b])

    @staticmethod
    def _subtask(task: Task, role: str, globs: list[str]) -> Subtask:
        return Subtask(
            id=f"{task.id}-{role}",
            task_id=task.id,
            role=role,
            scope=[normalize_path(g) for g in globs if normalize_path(g)],
        )
