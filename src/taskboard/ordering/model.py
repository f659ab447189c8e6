"""Board model for the ordering engine.

Tasks live in status columns and parent/child hierarchies.  Their position
inside a *group* (tasks sharing project, status and parent) is an ``order``
key: a float that is compared, never counted.  ``None`` marks a key that was
never initialized (legacy rows stored ``0``) and is resolved by the
orchestrator before any arithmetic.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .errors import InvalidMoveTargetError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def _order_from_raw(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    # Rows created before ordering existed carry 0.
    return value if value != 0 else None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass
class Status:
    """A board column.  Statuses are managed outside the engine."""

    id: str = field(default_factory=lambda: _id("status"))
    project_id: str = ""
    name: str = ""
    order: int = 0
    is_completed_status: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Status":
        return cls(
            id=str(data.get("id") or _id("status")),
            project_id=str(data.get("project_id") or ""),
            name=str(data.get("name") or ""),
            order=int(data.get("order") or 0),
            is_completed_status=bool(data.get("is_completed_status", False)),
        )


@dataclass
class Task:
    """A task positioned on the board."""

    id: str = field(default_factory=lambda: _id("task"))
    project_id: str = ""
    title: str = ""
    parent_id: Optional[str] = None
    status_id: Optional[str] = None
    order: Optional[float] = None
    completed: bool = False
    version: int = 1
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def group(self) -> "GroupKey":
        return GroupKey(self.project_id, self.status_id, self.parent_id)

    def touch(self) -> None:
        """Record a persisted change: bump ``version`` and ``updated_at``."""
        self.version += 1
        self.updated_at = now_iso()

    def sort_key(self) -> tuple[bool, float, str, str]:
        """Display order inside a group; uninitialized keys sort last."""
        return (self.order is None, self.order or 0.0, self.created_at, self.id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        d = dict(data)
        return cls(
            id=str(d.get("id") or _id("task")),
            project_id=str(d.get("project_id") or ""),
            title=str(d.get("title") or ""),
            parent_id=d.get("parent_id") or None,
            status_id=d.get("status_id") or None,
            order=_order_from_raw(d.get("order")),
            completed=bool(d.get("completed", False)),
            version=int(d.get("version") or 1),
            created_at=str(d.get("created_at") or now_iso()),
            updated_at=str(d.get("updated_at") or now_iso()),
            metadata=dict(d.get("metadata") or {}),
        )


@dataclass(frozen=True)
class GroupKey:
    """Identity of an ordering group: same project, status and parent."""

    project_id: str
    status_id: Optional[str]
    parent_id: Optional[str]

    def contains(self, task: Task) -> bool:
        return (
            task.project_id == self.project_id
            and task.status_id == self.status_id
            and task.parent_id == self.parent_id
        )

    def describe(self) -> str:
        return f"project={self.project_id} status={self.status_id or '-'} parent={self.parent_id or '-'}"


# ---------------------------------------------------------------------------
# Move intents
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Reorder:
    """Move within the task's current group, before ``before_task_id`` or to the tail."""

    before_task_id: Optional[str] = None


@dataclass(frozen=True)
class ChangeStatus:
    """Move to another column, keeping the parent."""

    status_id: str
    before_task_id: Optional[str] = None


@dataclass(frozen=True)
class Reparent:
    """Attach to ``parent_id`` (``None`` promotes to top level), optionally changing column."""

    parent_id: Optional[str]
    status_id: Optional[str] = None
    before_task_id: Optional[str] = None


MoveIntent = Union[Reorder, ChangeStatus, Reparent]


def intent_from_request(
    *,
    target_status_id: Optional[str] = None,
    target_parent_id: Optional[str] = None,
    before_task_id: Optional[str] = None,
    is_same_group_reorder: bool = False,
    parent_specified: bool = False,
) -> MoveIntent:
    """Map the flat ``move`` request shape onto a :data:`MoveIntent`.

    ``parent_specified`` distinguishes "no parent given" (keep the current
    one) from an explicit ``None`` (promote to top level).  A same-group
    reorder that also names a destination is rejected.
    """
    if is_same_group_reorder:
        if target_status_id is not None or target_parent_id is not None or parent_specified:
            raise InvalidMoveTargetError("A same-group reorder cannot change status or parent")
        return Reorder(before_task_id=before_task_id)
    if parent_specified or target_parent_id is not None:
        return Reparent(parent_id=target_parent_id, status_id=target_status_id, before_task_id=before_task_id)
    if target_status_id is not None:
        return ChangeStatus(status_id=target_status_id, before_task_id=before_task_id)
    return Reorder(before_task_id=before_task_id)


def intent_to_request(intent: MoveIntent) -> dict[str, Any]:
    """Inverse of :func:`intent_from_request`, used by HTTP clients."""
    if isinstance(intent, Reorder):
        return {"is_same_group_reorder": True, "before_task_id": intent.before_task_id}
    if isinstance(intent, ChangeStatus):
        return {"target_status_id": intent.status_id, "before_task_id": intent.before_task_id}
    if isinstance(intent, Reparent):
        return {
            "target_parent_id": intent.parent_id,
            "target_status_id": intent.status_id,
            "before_task_id": intent.before_task_id,
        }
    raise TypeError(f"Unknown move intent: {intent!r}")


# ---------------------------------------------------------------------------
# Board snapshot
# ---------------------------------------------------------------------------

@dataclass
class Board:
    """A versioned, project-scoped copy of statuses and tasks."""

    project_id: str
    revision: int = 0
    statuses: list[Status] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_status(self, status_id: Optional[str]) -> Optional[Status]:
        if status_id is None:
            return None
        for status in self.statuses:
            if status.id == status_id:
                return status
        return None

    def columns(self) -> dict[str, list[Task]]:
        """Tasks per status column in cross-parent default order."""
        columns: dict[str, list[Task]] = {
            s.id: [] for s in sorted(self.statuses, key=lambda s: (s.order, s.name))
        }
        for task in self.tasks:
            if task.status_id in columns:
                columns[task.status_id].append(task)
        for bucket in columns.values():
            bucket.sort(key=Task.sort_key)
        return columns

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "revision": self.revision,
            "statuses": [s.to_dict() for s in self.statuses],
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Board":
        return cls(
            project_id=str(data.get("project_id") or ""),
            revision=int(data.get("revision") or 0),
            statuses=[Status.from_dict(s) for s in list(data.get("statuses") or []) if isinstance(s, dict)],
            tasks=[Task.from_dict(t) for t in list(data.get("tasks") or []) if isinstance(t, dict)],
        )
