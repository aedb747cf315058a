"""Claude Code CLI implementation of the worker-session provider."""

import asyncio
import os
import signal
from pathlib import Path

from symphony.domain.ports.worker_session import WorkerHandle, WorkerSessionProvider
from symphony.infrastructure.exceptions import WorkerSessionError
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)


class ClaudeSessionProvider(WorkerSessionProvider):
    """Runs each agent as a non-interactive ``claude --print`` process.

    The instruction payload is written to the process's stdin; stdout and
    stderr are appended to the agent's log file, which is the only output
    sink a terminal view needs to follow.
    """

    def __init__(
        self,
        cli_path: str = "claude",
        extra_args: list[str] | None = None,
        terminate_timeout: float = 10.0,
    ):
        self.cli_path = cli_path
        self.extra_args = list(extra_args or [])
        self.terminate_timeout = terminate_timeout
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    async def spawn(self, agent_id: str, cwd: Path, payload: str, log_path: Path) -> WorkerHandle:
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(
            "spawning_worker_session",
            agent_id=agent_id,
            cwd=str(cwd),
            cli_path=self.cli_path,
            payload_length=len(payload),
        )

        try:
            with open(log_path, "ab") as log_file:
                process = await asyncio.create_subprocess_exec(
                    self.cli_path,
                    "--print",
                    *self.extra_args,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=log_file,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=str(cwd),
                    start_new_session=True,
                )
        except OSError as e:
            logger.error("worker_spawn_failed", agent_id=agent_id, error=str(e))
            raise WorkerSessionError(f"Cannot start {self.cli_path} for {agent_id}: {e}") from e

        if process.stdin is not None:
            process.stdin.write(payload.encode())
            await process.stdin.drain()
            process.stdin.close()

        self._processes[agent_id] = process
        return WorkerHandle(agent_id=agent_id, pid=process.pid, log_path=str(log_path))

    async def is_alive(self, handle: WorkerHandle) -> bool:
        process = self._processes.get(handle.agent_id)
        if process is not None:
            return process.returncode is None
        if handle.pid is None:
            return False
        # Worker started by a previous engine process
        try:
            os.kill(handle.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    async def terminate(self, handle: WorkerHandle) -> None:
        process = self._processes.pop(handle.agent_id, None)
        if process is None:
            if handle.pid is not None and await self.is_alive(handle):
                try:
                    os.kill(handle.pid, signal.SIGTERM)
                except ProcessLookupError:
                    pass
            return

        if process.returncode is not None:
            return

        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning("worker_force_kill", agent_id=handle.agent_id, pid=process.pid)
            process.kill()
            await process.wait()
        logger.info("worker_terminated", agent_id=handle.agent_id, returncode=process.returncode)
