"""Abstract pre-analysis provider."""

from abc import ABC, abstractmethod

from symphony.domain.models import LaneAssignment, Task


class ImpactAnalyzer(ABC):
    """Estimates which directories a task is expected to touch."""

    @abstractmethod
    async def estimate(self, task: Task, lanes: LaneAssignment) -> list[str]:
        """Return the estimated impacted directories, most relevant first."""
