"""Move orchestrator: validate, renumber, allocate and persist board moves.

This is the server-side entry point for every change to a task's position.
It wraps :class:`BoardStore` with the ordering rules (key allocation,
rebalancing, hierarchy checks, completion policy) and reports activity to a
best-effort notifier once the write is durable.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from ..config import OrderingSettings, get_ordering_settings, get_server_settings, load_board_config
from ..constants import STATE_DIR_NAME
from .collaborators import (
    Activity,
    ActivityNotifier,
    Authorizer,
    FileActivityLog,
    NullNotifier,
    StoreAuthorizer,
)
from .errors import (
    ConcurrentModificationError,
    CrossProjectParentError,
    CyclicParentError,
    InvalidMoveTargetError,
    ParentNotFoundError,
    PermissionDeniedError,
    SelfParentError,
    StatusNotFoundError,
    TaskNotFoundError,
)
from .keys import KeySpaceExhausted, OrderKeyAllocator
from .model import Board, ChangeStatus, GroupKey, MoveIntent, Reorder, Reparent, Status, Task
from .rebalance import RebalancePolicy
from .store import BoardStore, _BoardTx

logger = logging.getLogger(__name__)

# A conflicting write between authorization and commit is retried this often.
_CONFLICT_RETRIES = 1


def _copy(task: Task) -> Task:
    return Task.from_dict(task.to_dict())


class MoveOrchestrator:
    """Apply move intents to the board atomically.

    Parameters
    ----------
    store:
        Board persistence.
    settings:
        Key allocation and rebalancing tunables.
    authorizer:
        Permission collaborator; defaults to allowing every actor.
    notifier:
        Activity collaborator; failures are logged and never propagate.
    """

    def __init__(
        self,
        store: BoardStore,
        settings: Optional[OrderingSettings] = None,
        authorizer: Optional[Authorizer] = None,
        notifier: Optional[ActivityNotifier] = None,
    ) -> None:
        self.store = store
        self.settings = settings or OrderingSettings()
        self.policy = RebalancePolicy(self.settings)
        self.allocator = OrderKeyAllocator(
            base_key=self.settings.base_key,
            gap=self.settings.gap,
            min_gap=self.settings.min_gap,
        )
        self.authorizer = authorizer or StoreAuthorizer(store)
        self.notifier = notifier or NullNotifier()

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def move(self, task_id: str, intent: MoveIntent, *, actor: str = "system") -> Task:
        """Move a task and return its persisted state.

        Raises a :class:`~taskboard.ordering.errors.MoveError` subclass when
        the move is rejected; nothing is written in that case.
        """
        attempt = 0
        while True:
            try:
                return self._move_once(task_id, intent, actor)
            except ConcurrentModificationError:
                if attempt >= _CONFLICT_RETRIES:
                    logger.warning("Giving up on move of %s after concurrent modification", task_id)
                    raise
                attempt += 1
                logger.info("Task %s changed during move; retrying", task_id)

    def _move_once(self, task_id: str, intent: MoveIntent, actor: str) -> Task:
        auth = self.authorizer.authorize(task_id, actor)
        if auth.task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        if not auth.allowed:
            logger.warning("Rejected move of %s by %s: %s", task_id, actor, auth.reason)
            raise PermissionDeniedError(auth.reason or f"{actor} may not move {task_id}")

        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if task is None:
                raise TaskNotFoundError(f"Task {task_id} was deleted")
            if task.version != auth.task.version:
                raise ConcurrentModificationError(
                    f"Task {task_id} changed from version {auth.task.version} to {task.version}"
                )

            status, parent = self._resolve_destination(tx, task, intent)
            dest_status_id = status.id if status is not None else task.status_id
            dest_parent_id = parent.id if parent is not None else None
            if isinstance(intent, (Reorder, ChangeStatus)):
                dest_parent_id = task.parent_id
            key = GroupKey(task.project_id, dest_status_id, dest_parent_id)

            siblings = tx.group(key, exclude=task.id)
            before = self._resolve_before(tx, task, intent.before_task_id, key)
            new_order = self._allocate(tx, key, siblings, before)

            origin_status_id = task.status_id
            origin_parent_id = task.parent_id
            status_changed = dest_status_id != origin_status_id
            parent_changed = dest_parent_id != origin_parent_id

            task.status_id = dest_status_id
            task.parent_id = dest_parent_id
            task.order = new_order
            if status_changed and status is not None:
                task.completed = self._completed_after(task.completed, status)
            tx.mark_modified(task)
            result = _copy(task)

        logger.debug("Moved %s to %s at %s", task_id, key.describe(), new_order)
        self._notify(
            self._describe_move(result, status, parent, status_changed, parent_changed),
            actor=actor,
            details={
                "from_status_id": origin_status_id,
                "to_status_id": result.status_id,
                "from_parent_id": origin_parent_id,
                "to_parent_id": result.parent_id,
                "order": result.order,
            },
        )
        return result

    def _resolve_destination(
        self, tx: _BoardTx, task: Task, intent: MoveIntent
    ) -> tuple[Optional[Status], Optional[Task]]:
        """Validate the intent's status and parent; return the loaded targets."""
        status: Optional[Status] = None
        parent: Optional[Task] = None
        if isinstance(intent, Reorder):
            status = tx.get_status(task.status_id)
        elif isinstance(intent, ChangeStatus):
            status = self._require_status(tx, task.project_id, intent.status_id)
            parent = tx.get(task.parent_id)
        elif isinstance(intent, Reparent):
            if intent.status_id is not None:
                status = self._require_status(tx, task.project_id, intent.status_id)
            else:
                status = tx.get_status(task.status_id)
            if intent.parent_id is not None:
                parent = self._require_parent(tx, task, intent.parent_id)
        else:
            raise InvalidMoveTargetError(f"Unsupported move intent {type(intent).__name__}")
        return status, parent

    @staticmethod
    def _require_status(tx: _BoardTx, project_id: str, status_id: str) -> Status:
        status = tx.get_status(status_id)
        if status is None or status.project_id != project_id:
            raise StatusNotFoundError(f"Status {status_id} does not exist in project {project_id}")
        return status

    @staticmethod
    def _require_parent(tx: _BoardTx, task: Task, parent_id: str) -> Task:
        if parent_id == task.id:
            raise SelfParentError(f"Task {task.id} cannot be its own parent")
        parent = tx.get(parent_id)
        if parent is None:
            raise ParentNotFoundError(f"Parent task {parent_id} not found")
        if parent.project_id != task.project_id:
            raise CrossProjectParentError(f"Parent task {parent_id} belongs to another project")
        for ancestor in tx.ancestors(parent_id):
            if ancestor.id == task.id:
                raise CyclicParentError(f"Task {parent_id} is a descendant of {task.id}")
        return parent

    @staticmethod
    def _resolve_before(tx: _BoardTx, task: Task, before_task_id: Optional[str], key: GroupKey) -> Optional[Task]:
        if before_task_id is None:
            return None
        if before_task_id == task.id:
            raise InvalidMoveTargetError("A task cannot be placed before itself")
        before = tx.get(before_task_id)
        if before is None:
            raise InvalidMoveTargetError(f"Task {before_task_id} not found")
        if not key.contains(before):
            raise InvalidMoveTargetError(f"Task {before_task_id} is not in the destination group")
        return before

    def _completed_after(self, current: bool, destination: Status) -> bool:
        if self.settings.reopen_on_leave_completed:
            return destination.is_completed_status
        return True if destination.is_completed_status else current

    # ------------------------------------------------------------------
    # Key allocation
    # ------------------------------------------------------------------

    def _allocate(self, tx: _BoardTx, key: GroupKey, siblings: list[Task], before: Optional[Task]) -> float:
        """Key for a slot in ``siblings`` ahead of ``before`` (or at the tail).

        Initializes missing keys and rebalances degraded groups first;
        ``siblings`` is kept sorted in display order.
        """
        for initialized in self.policy.initialize_missing_keys(siblings):
            tx.mark_modified(initialized)
        siblings.sort(key=Task.sort_key)
        if self.policy.needs_rebalancing(siblings):
            self._rebalance(tx, key, siblings)

        try:
            return self._key_for_slot(siblings, before)
        except KeySpaceExhausted:
            self._rebalance(tx, key, siblings)
            return self._key_for_slot(siblings, before)

    def _key_for_slot(self, siblings: list[Task], before: Optional[Task]) -> float:
        if before is None:
            return self.allocator.append_key(t.order for t in siblings)
        index = next(i for i, t in enumerate(siblings) if t.id == before.id)
        prev = siblings[index - 1].order if index > 0 else None
        return self.allocator.next_key(prev, before.order)

    def _rebalance(self, tx: _BoardTx, key: GroupKey, siblings: list[Task]) -> list[Task]:
        changed = self.policy.rebalance(siblings)
        for task in changed:
            tx.mark_modified(task)
        siblings.sort(key=Task.sort_key)
        logger.info("Rebalanced group %s (%d tasks, %d renumbered)", key.describe(), len(siblings), len(changed))
        return changed

    def rebalance_group(
        self,
        project_id: str,
        status_id: Optional[str],
        parent_id: Optional[str] = None,
        *,
        force: bool = True,
    ) -> list[Task]:
        """Renumber one group; without ``force`` only when it is degraded.

        Returns every task whose key was written, including keys that were
        only initialized.
        """
        key = GroupKey(project_id, status_id, parent_id)
        with self.store.transaction() as tx:
            if status_id is not None:
                self._require_status(tx, project_id, status_id)
            members = tx.group(key)
            initialized = self.policy.initialize_missing_keys(members)
            for task in initialized:
                tx.mark_modified(task)
            if not force and not self.policy.needs_rebalancing(members):
                return [_copy(t) for t in initialized]
            changed = self._rebalance(tx, key, members)
            changed_ids = {t.id for t in changed}
            touched = changed + [t for t in initialized if t.id not in changed_ids]
            return [_copy(t) for t in sorted(touched, key=Task.sort_key)]

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(
        self,
        project_id: str,
        title: str,
        *,
        status_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        actor: str = "system",
    ) -> Task:
        """Create a task at the tail of its group and return it."""
        auth = self.authorizer.authorize_project(project_id, actor)
        if not auth.allowed:
            raise PermissionDeniedError(auth.reason or f"{actor} may not create tasks")

        task = Task(project_id=project_id, title=title, status_id=status_id, metadata=metadata or {})
        with self.store.transaction() as tx:
            status = self._require_status(tx, project_id, status_id) if status_id is not None else None
            if parent_id is not None:
                self._require_parent(tx, task, parent_id)
                task.parent_id = parent_id
            key = task.group
            siblings = tx.group(key)
            task.order = self._allocate(tx, key, siblings, None)
            task.completed = bool(status and status.is_completed_status)
            tx.add(task)
            result = _copy(task)

        logger.info("Created task %s: %s", result.id, title)
        self._notify(
            Activity(
                project_id=project_id,
                task_id=result.id,
                action="task.created",
                description=f'created "{title}"',
            ),
            actor=actor,
        )
        return result

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.get_task(task_id)

    def list_tasks(
        self,
        project_id: str,
        *,
        status_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> list[Task]:
        with self.store.transaction() as tx:
            tasks = tx.project_tasks(project_id)
        if status_id is not None:
            tasks = [t for t in tasks if t.status_id == status_id]
        if parent_id is not None:
            tasks = [t for t in tasks if t.parent_id == parent_id]
        return sorted(tasks, key=Task.sort_key)

    def delete_task(self, task_id: str, *, actor: str = "system") -> bool:
        """Remove a task.  Its sub-tasks keep pointing at the removed parent."""
        auth = self.authorizer.authorize(task_id, actor)
        if auth.task is None:
            return False
        if not auth.allowed:
            raise PermissionDeniedError(auth.reason or f"{actor} may not delete {task_id}")
        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if task is None or not tx.remove(task_id):
                return False
        self._notify(
            Activity(
                project_id=task.project_id,
                task_id=task_id,
                action="task.deleted",
                description=f'deleted "{task.title}"',
            ),
            actor=actor,
        )
        return True

    def create_status(
        self,
        project_id: str,
        name: str,
        *,
        is_completed_status: bool = False,
        order: Optional[int] = None,
    ) -> Status:
        with self.store.transaction() as tx:
            if order is None:
                existing = tx.project_statuses(project_id)
                order = (max(s.order for s in existing) + 1) if existing else 0
            status = Status(project_id=project_id, name=name, order=order, is_completed_status=is_completed_status)
            tx.add_status(status)
        logger.info("Created status %s (%s) in %s", status.id, name, project_id)
        return status

    def list_statuses(self, project_id: str) -> list[Status]:
        with self.store.transaction() as tx:
            return tx.project_statuses(project_id)

    def board(self, project_id: str) -> Board:
        return self.store.read_board(project_id)

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def _describe_move(
        self,
        task: Task,
        status: Optional[Status],
        parent: Optional[Task],
        status_changed: bool,
        parent_changed: bool,
    ) -> Activity:
        if parent_changed and parent is not None:
            action, text = "task.reparented", f'moved "{task.title}" to be a subtask of "{parent.title}"'
        elif parent_changed:
            action, text = "task.reparented", f'promoted "{task.title}" to a top-level task'
        elif status_changed and status is not None:
            action, text = "task.status_changed", f'moved "{task.title}" to {status.name}'
        else:
            action, text = "task.reordered", f'reordered "{task.title}"'
        return Activity(project_id=task.project_id, task_id=task.id, action=action, description=text)

    def _notify(self, activity: Activity, *, actor: str, details: Optional[dict[str, Any]] = None) -> None:
        activity.actor = actor
        if details:
            activity.details.update(details)
        try:
            self.notifier.notify(activity)
        except Exception:
            logger.exception("Failed to record activity %s for %s", activity.action, activity.task_id)

    def recent_activity(
        self,
        *,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        if not isinstance(self.notifier, FileActivityLog):
            return []
        return self.notifier.recent(project_id=project_id, task_id=task_id, limit=limit)


def open_orchestrator(project_dir: Path) -> MoveOrchestrator:
    """Build an orchestrator over ``<project_dir>/.taskboard`` using its config file."""
    project_dir = project_dir.resolve()
    state_dir = project_dir / STATE_DIR_NAME
    config, err = load_board_config(project_dir)
    if err:
        logger.warning("Ignoring unreadable board config: %s", err)
    store = BoardStore(state_dir)
    server_settings = get_server_settings(config)
    return MoveOrchestrator(
        store,
        settings=get_ordering_settings(config),
        authorizer=StoreAuthorizer(store, server_settings.denied_actors),
        notifier=FileActivityLog(state_dir),
    )
