"""In-memory hover projection for drag sessions.

Nothing here performs I/O: given the pre-drag task list and a drop target it
returns the list as it would look after the drop, plus the move intent that
the commit will send.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from ..ordering.keys import KeySpaceExhausted, OrderKeyAllocator
from ..ordering.model import ChangeStatus, GroupKey, MoveIntent, Reorder, Reparent, Status, Task


# ---------------------------------------------------------------------------
# Drop targets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnTarget:
    """Empty area of a status column: append to the tail, keep the parent."""

    status_id: str


@dataclass(frozen=True)
class TaskTarget:
    """Another task card: take its slot in its group."""

    task_id: str


@dataclass(frozen=True)
class NestTarget:
    """Nesting zone of a task card: become its last sub-task."""

    parent_task_id: str


DropTarget = Union[ColumnTarget, TaskTarget, NestTarget]


@dataclass(frozen=True)
class Projection:
    tasks: list[Task]
    intent: MoveIntent


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _copy(task: Task) -> Task:
    return Task.from_dict(task.to_dict())


def _in_subtree(by_id: dict[str, Task], task_id: Optional[str], root_id: str) -> bool:
    """True when ``task_id`` is ``root_id`` or one of its descendants."""
    seen: set[str] = set()
    current = task_id
    while current is not None and current not in seen:
        if current == root_id:
            return True
        seen.add(current)
        node = by_id.get(current)
        current = node.parent_id if node is not None else None
    return False


def _members(tasks: Sequence[Task], key: GroupKey, exclude: str) -> list[Task]:
    return sorted((t for t in tasks if key.contains(t) and t.id != exclude), key=Task.sort_key)


def _resolve(
    target: DropTarget,
    active: Task,
    tasks: Sequence[Task],
    statuses: dict[str, Status],
) -> Optional[tuple[Optional[str], Optional[str], Optional[str]]]:
    """Destination ``(status_id, parent_id, before_task_id)`` or ``None`` if invalid."""
    by_id = {t.id: t for t in tasks}

    if isinstance(target, ColumnTarget):
        if target.status_id not in statuses:
            return None
        return target.status_id, active.parent_id, None

    if isinstance(target, NestTarget):
        parent = by_id.get(target.parent_task_id)
        if parent is None or _in_subtree(by_id, parent.id, active.id):
            return None
        return active.status_id, parent.id, None

    if isinstance(target, TaskTarget):
        over = by_id.get(target.task_id)
        if over is None or over.id == active.id:
            return None
        if over.parent_id is not None and _in_subtree(by_id, over.parent_id, active.id):
            return None
        if over.group == active.group:
            # Dragging downwards lands after the card, upwards before it.
            ordered = sorted((t for t in tasks if active.group.contains(t)), key=Task.sort_key)
            ids = [t.id for t in ordered]
            if ids.index(active.id) < ids.index(over.id):
                rest = [t for t in ordered if t.id != active.id]
                pos = [t.id for t in rest].index(over.id)
                before = rest[pos + 1].id if pos + 1 < len(rest) else None
                return over.status_id, over.parent_id, before
        return over.status_id, over.parent_id, over.id

    return None


def _intent_for(
    active: Task,
    status_id: Optional[str],
    parent_id: Optional[str],
    before_task_id: Optional[str],
) -> MoveIntent:
    if parent_id != active.parent_id:
        new_status = status_id if status_id != active.status_id else None
        return Reparent(parent_id=parent_id, status_id=new_status, before_task_id=before_task_id)
    if status_id != active.status_id and status_id is not None:
        return ChangeStatus(status_id=status_id, before_task_id=before_task_id)
    return Reorder(before_task_id=before_task_id)


def _provisional_key(siblings: list[Task], before_task_id: Optional[str], allocator: OrderKeyAllocator) -> float:
    def slot() -> float:
        if before_task_id is None:
            return allocator.append_key(t.order for t in siblings)
        index = next(i for i, t in enumerate(siblings) if t.id == before_task_id)
        prev = siblings[index - 1].order if index > 0 else None
        return allocator.next_key(prev, siblings[index].order)

    if all(t.order is not None for t in siblings):
        try:
            return slot()
        except (KeySpaceExhausted, ValueError):
            pass
    # The server will renumber this group; mirror that on the local copies.
    for index, sibling in enumerate(siblings):
        sibling.order = allocator.base_key + index * allocator.gap
    return slot()


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def project_hover(
    tasks: Sequence[Task],
    statuses: Sequence[Status],
    active_task_id: str,
    target: DropTarget,
    *,
    allocator: Optional[OrderKeyAllocator] = None,
    reopen_on_leave_completed: bool = True,
) -> Optional[Projection]:
    """Project dropping ``active_task_id`` on ``target``.

    Returns ``None`` when the target is not a legal destination (unknown
    task or status, or a drop into the task's own subtree).  The input
    list is never modified.
    """
    allocator = allocator or OrderKeyAllocator()
    status_by_id = {s.id: s for s in statuses}
    active = next((t for t in tasks if t.id == active_task_id), None)
    if active is None:
        return None
    resolved = _resolve(target, active, tasks, status_by_id)
    if resolved is None:
        return None
    status_id, parent_id, before_task_id = resolved
    intent = _intent_for(active, status_id, parent_id, before_task_id)

    copies = [_copy(t) for t in tasks]
    moved = next(t for t in copies if t.id == active_task_id)
    key = GroupKey(active.project_id, status_id, parent_id)
    siblings = _members(copies, key, exclude=active_task_id)
    moved.order = _provisional_key(siblings, before_task_id, allocator)

    destination = status_by_id.get(status_id) if status_id is not None else None
    if status_id != active.status_id and destination is not None:
        if reopen_on_leave_completed:
            moved.completed = destination.is_completed_status
        elif destination.is_completed_status:
            moved.completed = True
    moved.status_id = status_id
    moved.parent_id = parent_id

    copies.sort(key=Task.sort_key)
    return Projection(tasks=copies, intent=intent)
