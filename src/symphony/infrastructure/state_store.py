"""Crash-safe JSON persistence for the queue, current task and agent registry.

Every write goes to a temporary file in the target's directory, is fsynced,
and is moved into place with a single ``os.replace``. A reader therefore sees
either the previous or the new content of a record, never a mix. A missing,
empty or unparseable record loads as its empty default.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from symphony.domain.models import CurrentTaskRecord, QueueRecord, RegistryRecord, Task
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

QUEUE_FILE = "QUEUE.json"
CURRENT_TASK_FILE = "CURRENT_TASK.json"
REGISTRY_FILE = "REGISTRY.json"
TASK_RECORD_FILE = "TASK.json"


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via temp file + fsync + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    # Persist the rename itself; not every platform allows opening a directory
    try:
        dir_fd = os.open(str(path.parent), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        logger.debug("directory_fsync_unsupported", path=str(path.parent))
    finally:
        os.close(dir_fd)


class StateStore:
    """Durable store for engine state under ``<project>/.symphony``.

    Layout::

        state/QUEUE.json          queue record
        state/CURRENT_TASK.json   current-task record (absent when idle)
        state/REGISTRY.json       agent registry (bare JSON list)
        tasks/<id>_task/          per-task record, brief, progress reports
    """

    def __init__(self, root: Path):
        """Initialize the store.

        Args:
            root: The ``.symphony`` directory
        """
        self.root = root
        self.state_dir = root / "state"
        self.tasks_dir = root / "tasks"

    # ----- paths -----

    def task_dir(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}_task"

    def progress_path(self, task_id: str, role: str) -> Path:
        return self.task_dir(task_id) / "agents" / role / "PROGRESS.md"

    @property
    def worktrees_dir(self) -> Path:
        return self.root / "worktrees"

    @property
    def agent_log_dir(self) -> Path:
        return self.root / "logs" / "agents"

    # ----- the three shared records -----

    def load(self) -> tuple[QueueRecord, CurrentTaskRecord | None, RegistryRecord]:
        """Load queue, current task and registry.

        Never raises on missing or corrupt files; each record falls back to
        its empty default.
        """
        return self.load_queue(), self.load_current_task(), self.load_registry()

    def load_queue(self) -> QueueRecord:
        return self._read_model(self.state_dir / QUEUE_FILE, QueueRecord) or QueueRecord()

    def load_current_task(self) -> CurrentTaskRecord | None:
        return self._read_model(self.state_dir / CURRENT_TASK_FILE, CurrentTaskRecord)

    def load_registry(self) -> RegistryRecord:
        return self._read_model(self.state_dir / REGISTRY_FILE, RegistryRecord) or RegistryRecord()

    def save_queue(self, queue: QueueRecord) -> None:
        self._write_model(self.state_dir / QUEUE_FILE, queue)

    def save_current_task(self, current: CurrentTaskRecord) -> None:
        self._write_model(self.state_dir / CURRENT_TASK_FILE, current)

    def save_registry(self, registry: RegistryRecord) -> None:
        self._write_model(self.state_dir / REGISTRY_FILE, registry)

    def clear_current_task(self) -> None:
        (self.state_dir / CURRENT_TASK_FILE).unlink(missing_ok=True)

    def clear_registry(self) -> None:
        self.save_registry(RegistryRecord())

    # ----- per-task records -----

    def save_task(self, task: Task) -> None:
        self._write_model(self.task_dir(task.id) / TASK_RECORD_FILE, task)

    def load_task(self, task_id: str) -> Task | None:
        return self._read_model(self.task_dir(task_id) / TASK_RECORD_FILE, Task)

    def list_task_ids(self) -> list[str]:
        if not self.tasks_dir.exists():
            return []
        return sorted(
            p.name.removesuffix("_task")
            for p in self.tasks_dir.iterdir()
            if p.is_dir() and p.name.endswith("_task")
        )

    def write_text(self, path: Path, text: str) -> None:
        """Atomically write an auxiliary file (task brief, conflict report)."""
        atomic_write_text(path, text)

    def reset(self) -> None:
        """Clear current task and registry and empty the queue."""
        self.clear_current_task()
        self.clear_registry()
        self.save_queue(QueueRecord())
        logger.info("state_reset", root=str(self.root))

    # ----- helpers -----

    def _write_model(self, path: Path, model: BaseModel) -> None:
        atomic_write_text(path, model.model_dump_json(indent=2))

    def _read_model(self, path: Path, model_cls: type[M]) -> M | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                "state_record_unreadable",
                path=str(path),
                error_type=type(e).__name__,
                error=str(e),
            )
            return None
        if not raw.strip():
            return None
        try:
            return model_cls.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(
                "state_record_unreadable",
                path=str(path),
                error_type=type(e).__name__,
                error=str(e),
            )
            return None
