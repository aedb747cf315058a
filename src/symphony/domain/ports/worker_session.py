"""Abstract worker-session provider."""

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel


class WorkerHandle(BaseModel):
    """Addressable handle of a running agent process."""

    agent_id: str
    pid: int | None = None
    log_path: str | None = None


class WorkerSessionProvider(ABC):
    """Launches agent worker processes bound to a directory.

    Output of each worker goes to ``log_path``; any terminal view of the
    agents reads that sink and is never load-bearing for coordination.
    """

    @abstractmethod
    async def spawn(self, agent_id: str, cwd: Path, payload: str, log_path: Path) -> WorkerHandle:
        """Start a worker with the instruction payload.

        Raises:
            WorkerSessionError: If the process cannot be started
        """

    @abstractmethod
    async def is_alive(self, handle: WorkerHandle) -> bool:
        pass

    @abstractmethod
    async def terminate(self, handle: WorkerHandle) -> None:
        """Stop the worker; a worker that already exited is not an error."""
