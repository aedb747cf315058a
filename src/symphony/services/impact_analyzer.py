"""Default pre-analysis provider based on hints and lane keywords."""

import re

from symphony.domain.models import LaneAssignment, Task
from symphony.domain.ports.impact_analyzer import ImpactAnalyzer
from symphony.infrastructure.logger import get_logger
from symphony.services.lane_resolver import normalize_path

logger = get_logger(__name__)

_GLOB_CHARS = re.compile(r"[*?\[]")


def _keywords(glob: str) -> list[str]:
    """Literal path components of a lane glob worth searching for."""
    parts = [p for p in normalize_path(glob).split("/") if p and not _GLOB_CHARS.search(p)]
    keywords = [normalize_path(glob)] if not _GLOB_CHARS.search(glob) else []
    if parts:
        keywords.append(parts[-1])
    return keywords


def _mentions(text: str, keyword: str) -> bool:
    pattern = r"(?<![\w-])/?" + re.escape(keyword.lower()) + r"/?(?![\w-])"
    return re.search(pattern, text) is not None


class LaneKeywordImpactAnalyzer(ImpactAnalyzer):
    """Estimates impact from explicit hints and lane vocabulary.

    Explicit ``impact_hint`` paths on the task come first. Then every lane
    (and shared) prefix whose path or final directory name appears in the
    title or description is added, followed by the prefixes of any role
    named outright (``backend-agent`` or just ``backend``).
    """

    async def estimate(self, task: Task, lanes: LaneAssignment) -> list[str]:
        impact: list[str] = []

        def add(path: str) -> None:
            normalized = normalize_path(path)
            if normalized and normalized not in impact:
                impact.append(normalized)

        for hint in task.impact_hint:
            add(hint)

        text = f"{task.title}\n{task.description}".lower()

        for globs in [*lanes.lanes.values(), lanes.shared]:
            for glob in globs:
                if any(_mentions(text, kw) for kw in _keywords(glob)):
                    add(glob)

        for role, globs in lanes.lanes.items():
            short = role.removesuffix("-agent")
            if _mentions(text, role) or (short != role and _mentions(text, short)):
                for glob in globs:
                    add(glob)

        logger.debug("impact_estimated", task_id=task.id, paths=impact)
        return impact
