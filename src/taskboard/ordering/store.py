"""File-based board store with thread- and process-safe locking.

Statuses and tasks for every project live in a single YAML file
(``board.yaml``) inside the ``.taskboard/`` directory.  All reads and writes
go through :meth:`BoardStore.transaction`, which holds an exclusive lock for
the whole read-modify-write cycle and replaces the file atomically, so a move
together with any rebalance it triggers is one indivisible write.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from ..constants import BOARD_FILE, BOARD_LOCK_FILE, BOARD_SCHEMA_VERSION
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from .errors import PersistenceError
from .model import Board, GroupKey, Status, Task


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> dict[str, Any]:
    """Load the raw board payload from *path*, returning an empty board if missing."""
    data, err = _load_data_with_error(path, {})
    if err:
        raise PersistenceError(f"Board file is unreadable: {err}")
    return data


def _save_raw(path: Path, revision: int, statuses: list[Status], tasks: list[Task]) -> None:
    payload = {
        "version": BOARD_SCHEMA_VERSION,
        "revision": revision,
        "statuses": [s.to_dict() for s in statuses],
        "tasks": [t.to_dict() for t in tasks],
    }
    try:
        _atomic_write_yaml(path, payload)
    except OSError as exc:
        raise PersistenceError(f"Failed to write {path.name}: {exc}") from exc


# ---------------------------------------------------------------------------
# BoardStore
# ---------------------------------------------------------------------------

class BoardStore:
    """Thread-safe, file-backed store for :class:`Status` and :class:`Task`.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory.

    Transactions must not be nested.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / BOARD_FILE
        self._lock = FileLock(state_dir / BOARD_LOCK_FILE)
        self._thread_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._store_path

    @contextmanager
    def transaction(self) -> Iterator[_BoardTx]:
        """Acquire the lock, load the board, yield a transaction, and save on exit.

        Nothing is written when the body raises.

        Usage::

            with store.transaction() as tx:
                task = tx.get("task-abc123")
                task.order = 1500.0
                tx.mark_modified(task)
        """
        with self._thread_lock:
            with self._lock:
                raw = _load_raw(self._store_path)
                tx = _BoardTx(
                    revision=int(raw.get("revision") or 0),
                    statuses=[Status.from_dict(s) for s in list(raw.get("statuses") or []) if isinstance(s, dict)],
                    tasks=[Task.from_dict(t) for t in list(raw.get("tasks") or []) if isinstance(t, dict)],
                )
                yield tx
                if tx.dirty:
                    tx.revision += 1
                    _save_raw(self._store_path, tx.revision, tx.statuses, tx.tasks)

    def read_board(self, project_id: str) -> Board:
        """Return a detached snapshot of one project's board."""
        with self.transaction() as tx:
            return tx.board(project_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self.transaction() as tx:
            return tx.get(task_id)


class _BoardTx:
    """In-memory transaction over the whole board.

    Mutations are flushed back to disk when the ``transaction``
    context-manager exits and ``dirty`` is set.
    """

    def __init__(self, revision: int, statuses: list[Status], tasks: list[Task]) -> None:
        self.revision = revision
        self.statuses = statuses
        self.tasks = tasks
        self.dirty = False
        self._index: dict[str, Task] = {t.id: t for t in tasks}
        self._touched: set[str] = set()

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: Optional[str]) -> Optional[Task]:
        if task_id is None:
            return None
        return self._index.get(task_id)

    def get_status(self, status_id: Optional[str]) -> Optional[Status]:
        if status_id is None:
            return None
        for status in self.statuses:
            if status.id == status_id:
                return status
        return None

    def project_tasks(self, project_id: str) -> list[Task]:
        return [t for t in self.tasks if t.project_id == project_id]

    def project_statuses(self, project_id: str) -> list[Status]:
        return sorted(
            (s for s in self.statuses if s.project_id == project_id),
            key=lambda s: (s.order, s.name),
        )

    def group(self, key: GroupKey, *, exclude: Optional[str] = None) -> list[Task]:
        """Members of *key* in display order, optionally without one task."""
        members = [t for t in self.tasks if key.contains(t) and t.id != exclude]
        members.sort(key=Task.sort_key)
        return members

    def ancestors(self, task_id: str) -> Iterator[Task]:
        """Walk the parent chain upwards from *task_id* (excluding it).

        Stops on a dangling parent reference or a pre-existing loop.
        """
        seen: set[str] = {task_id}
        current = self.get(task_id)
        while current is not None and current.parent_id:
            if current.parent_id in seen:
                return
            seen.add(current.parent_id)
            parent = self.get(current.parent_id)
            if parent is None:
                return
            yield parent
            current = parent

    def board(self, project_id: str) -> Board:
        return Board(
            project_id=project_id,
            revision=self.revision,
            statuses=[Status.from_dict(s.to_dict()) for s in self.project_statuses(project_id)],
            tasks=[Task.from_dict(t.to_dict()) for t in sorted(self.project_tasks(project_id), key=Task.sort_key)],
        )

    # -- mutations ----------------------------------------------------------

    def mark_modified(self, task: Task) -> None:
        """Flag *task* as changed; its version is bumped once per transaction."""
        if task.id not in self._touched:
            task.touch()
            self._touched.add(task.id)
        self.dirty = True

    def add(self, task: Task) -> Task:
        if task.id in self._index:
            raise ValueError(f"Task {task.id} already exists")
        self._index[task.id] = task
        self.tasks.append(task)
        self._touched.add(task.id)
        self.dirty = True
        return task

    def add_status(self, status: Status) -> Status:
        if self.get_status(status.id) is not None:
            raise ValueError(f"Status {status.id} already exists")
        self.statuses.append(status)
        self.dirty = True
        return status

    def remove(self, task_id: str) -> bool:
        """Physically remove a task.  Children keep their ``parent_id``."""
        task = self._index.pop(task_id, None)
        if task is None:
            return False
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self.dirty = True
        return True
