"""Authorization and activity collaborators used by the move orchestrator."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from ..constants import ACTIVITY_FILE, ACTIVITY_LOCK_FILE
from ..io_utils import FileLock, _append_jsonl, _read_jsonl
from .model import Task, now_iso
from .store import BoardStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

@dataclass
class Authorization:
    """Outcome of an authorization check.

    ``task`` is the snapshot the decision was made on; the orchestrator
    compares its ``version`` with the one it finds inside the transaction.
    """

    allowed: bool
    task: Optional[Task] = None
    reason: str = ""


class Authorizer(ABC):
    @abstractmethod
    def authorize(self, task_id: str, actor: str) -> Authorization:
        """Decide whether ``actor`` may move ``task_id``."""

    def authorize_project(self, project_id: str, actor: str) -> Authorization:
        """Decide whether ``actor`` may add tasks to ``project_id``."""
        return Authorization(allowed=True)


class StoreAuthorizer(Authorizer):
    """Allow every actor except those on a deny list."""

    def __init__(self, store: BoardStore, denied_actors: Iterable[str] = ()) -> None:
        self._store = store
        self._denied = frozenset(denied_actors)

    def authorize(self, task_id: str, actor: str) -> Authorization:
        task = self._store.get_task(task_id)
        if task is None:
            return Authorization(allowed=False, task=None, reason="not found")
        if actor in self._denied:
            return Authorization(allowed=False, task=task, reason=f"actor {actor!r} may not edit tasks")
        return Authorization(allowed=True, task=task)

    def authorize_project(self, project_id: str, actor: str) -> Authorization:
        if actor in self._denied:
            return Authorization(allowed=False, reason=f"actor {actor!r} may not edit tasks")
        return Authorization(allowed=True)


# ---------------------------------------------------------------------------
# Activity notification
# ---------------------------------------------------------------------------

@dataclass
class Activity:
    project_id: str
    task_id: str
    action: str
    description: str
    actor: str = "system"
    details: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ActivityNotifier(ABC):
    @abstractmethod
    def notify(self, activity: Activity) -> None:
        """Record ``activity``.  Callers treat failures as non-fatal."""


class NullNotifier(ActivityNotifier):
    def notify(self, activity: Activity) -> None:
        return None


class FileActivityLog(ActivityNotifier):
    """Append-only JSON-lines activity log under the state directory."""

    def __init__(self, state_dir: Path) -> None:
        self.path = state_dir / ACTIVITY_FILE
        self._thread_lock = threading.Lock()
        self._file_lock = FileLock(state_dir / ACTIVITY_LOCK_FILE)

    def notify(self, activity: Activity) -> None:
        with self._thread_lock, self._file_lock:
            _append_jsonl(self.path, activity.to_dict())

    def recent(
        self,
        *,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Newest-first entries, optionally filtered by project and task."""
        with self._thread_lock, self._file_lock:
            rows = _read_jsonl(self.path)
        if project_id is not None:
            rows = [r for r in rows if r.get("project_id") == project_id]
        if task_id is not None:
            rows = [r for r in rows if r.get("task_id") == task_id]
        rows.reverse()
        return rows[: max(0, limit)]
