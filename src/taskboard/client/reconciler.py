"""Optimistic drag-and-drop state machine.

The reconciler owns the client's copy of the board.  While a drag is in
progress it shows a speculative list computed in memory; dropping sends
exactly one move and then replaces the speculative list with a fresh fetch of
the authoritative board.  A failed move restores the pre-drag view and
refetches, so the client never ends up with duplicated or missing cards.

Phases::

    IDLE -> DRAGGING -> HOVERING -> COMMITTING -> IDLE
                                              \\-> ROLLING_BACK -> IDLE
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from ..config import ClientSettings, OrderingSettings
from ..ordering.keys import OrderKeyAllocator
from ..ordering.model import Board, GroupKey, MoveIntent, Task
from .errors import DragRejected, IllegalTransition, MoveFailed, ReconcileError, RefetchFailed
from .speculative import DropTarget, Projection, project_hover
from .transport import BoardClient


class DragPhase(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    HOVERING = "hovering"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"


_VALID_TRANSITIONS: dict[DragPhase, set[DragPhase]] = {
    # IDLE -> COMMITTING is a programmatic move without a gesture.
    DragPhase.IDLE: {DragPhase.DRAGGING, DragPhase.COMMITTING},
    DragPhase.DRAGGING: {DragPhase.HOVERING, DragPhase.COMMITTING, DragPhase.IDLE},
    DragPhase.HOVERING: {DragPhase.HOVERING, DragPhase.DRAGGING, DragPhase.COMMITTING, DragPhase.IDLE},
    DragPhase.COMMITTING: {DragPhase.IDLE, DragPhase.ROLLING_BACK},
    DragPhase.ROLLING_BACK: {DragPhase.IDLE},
}


@dataclass
class DragSession:
    active_task_id: str
    origin: GroupKey
    snapshot: list[Task]
    speculative: list[Task]
    target: Optional[DropTarget] = None
    projection: Optional[Projection] = None


@dataclass
class DragOutcome:
    """Result of a drop or programmatic move.

    ``kind`` is ``"committed"``, ``"rolled_back"`` or ``"cancelled"``.
    ``hard_failure`` is set when a rollback could not refetch the board and
    the last known board is shown instead.
    """

    kind: str
    task: Optional[Task] = None
    error: Optional[ReconcileError] = None
    hard_failure: bool = False


@dataclass
class _Press:
    task_id: str
    x: float
    y: float


Subscriber = Callable[[list[Task]], None]
ErrorCallback = Callable[[ReconcileError], None]


def _copy_tasks(tasks: list[Task]) -> list[Task]:
    return [Task.from_dict(t.to_dict()) for t in tasks]


class DragReconciler:
    """Client-side owner of one project's board view.

    Parameters
    ----------
    client:
        Transport to the authoritative board.
    project_id:
        Project whose board is shown.
    settings / ordering:
        Gesture tunables and the ordering settings used for provisional keys.
    on_error:
        Called with the error after a rollback.
    """

    def __init__(
        self,
        client: BoardClient,
        project_id: str,
        *,
        settings: Optional[ClientSettings] = None,
        ordering: Optional[OrderingSettings] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.client = client
        self.project_id = project_id
        self.settings = settings or ClientSettings()
        self.ordering = ordering or OrderingSettings()
        self.allocator = OrderKeyAllocator(
            base_key=self.ordering.base_key,
            gap=self.ordering.gap,
            min_gap=self.ordering.min_gap,
        )
        self.on_error = on_error
        self.phase = DragPhase.IDLE
        self.board: Optional[Board] = None
        self.session: Optional[DragSession] = None
        self.visible: list[Task] = []
        self._subscribers: list[Subscriber] = []
        self._in_flight: set[str] = set()
        self._press: Optional[_Press] = None

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for visible-list updates; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, tasks: list[Task]) -> None:
        self.visible = tasks
        for callback in list(self._subscribers):
            try:
                callback(tasks)
            except Exception:
                logger.exception("Board subscriber failed")

    def _publish_canonical(self) -> None:
        self._publish(_copy_tasks(self.board.tasks) if self.board else [])

    def _transition(self, phase: DragPhase) -> None:
        if phase not in _VALID_TRANSITIONS[self.phase]:
            raise IllegalTransition(f"Cannot go from {self.phase.value} to {phase.value}")
        logger.debug("Drag phase {} -> {}", self.phase.value, phase.value)
        self.phase = phase

    async def load(self) -> Board:
        """Fetch the authoritative board and show it."""
        board = await self.client.fetch_board(self.project_id)
        self.board = board
        if self.phase == DragPhase.IDLE:
            self._publish_canonical()
        return board

    # ------------------------------------------------------------------
    # Gesture
    # ------------------------------------------------------------------

    def pointer_down(self, task_id: str, x: float, y: float) -> None:
        if self.phase != DragPhase.IDLE:
            raise DragRejected(f"A drag is already {self.phase.value}")
        self._press = _Press(task_id, x, y)

    def pointer_move(self, x: float, y: float) -> bool:
        """Start the pending drag once the pointer travelled far enough.

        Returns True when this call started a drag.
        """
        press = self._press
        if press is None or self.phase != DragPhase.IDLE:
            return False
        if math.hypot(x - press.x, y - press.y) < self.settings.activation_distance:
            return False
        self._press = None
        self.start_drag(press.task_id)
        return True

    def pointer_up(self) -> None:
        """Release before the activation distance: a click, not a drag."""
        self._press = None

    def start_drag(self, task_id: str) -> DragSession:
        if self.board is None:
            raise DragRejected("Board is not loaded")
        if task_id in self._in_flight:
            raise DragRejected(f"A move for {task_id} is still in flight")
        if self.phase != DragPhase.IDLE:
            raise DragRejected(f"A drag is already {self.phase.value}")
        task = self.board.get_task(task_id)
        if task is None:
            raise DragRejected(f"Task {task_id} is not on the board")

        self._transition(DragPhase.DRAGGING)
        snapshot = _copy_tasks(self.board.tasks)
        self.session = DragSession(
            active_task_id=task_id,
            origin=task.group,
            snapshot=snapshot,
            speculative=_copy_tasks(snapshot),
        )
        logger.debug("Started drag of {}", task_id)
        self._publish(self.session.speculative)
        return self.session

    def hover(self, target: Optional[DropTarget]) -> bool:
        """Recompute the speculative list for ``target`` (``None``: over nothing).

        Returns True when ``target`` is a legal destination.
        """
        session = self._require_session()
        projection = None
        if target is not None:
            projection = self._project(session.snapshot, session.active_task_id, target)
        if projection is None:
            if self.phase == DragPhase.HOVERING:
                self._transition(DragPhase.DRAGGING)
            session.target = None
            session.projection = None
            session.speculative = _copy_tasks(session.snapshot)
        else:
            self._transition(DragPhase.HOVERING)
            session.target = target
            session.projection = projection
            session.speculative = projection.tasks
        self._publish(session.speculative)
        return projection is not None

    def cancel(self) -> None:
        """Abandon the drag; no request is sent."""
        self._require_session()
        self._transition(DragPhase.IDLE)
        self.session = None
        self._publish_canonical()

    async def drop(self) -> DragOutcome:
        session = self._require_session()
        if session.projection is None:
            self.cancel()
            return DragOutcome(kind="cancelled")
        return await self._commit(session.active_task_id, session.projection)

    async def move_task(self, task_id: str, target: DropTarget) -> DragOutcome:
        """Move without a pointer gesture, through the same commit path as a drop."""
        if self.board is None:
            raise DragRejected("Board is not loaded")
        if task_id in self._in_flight:
            raise DragRejected(f"A move for {task_id} is still in flight")
        if self.phase != DragPhase.IDLE:
            raise DragRejected(f"A drag is already {self.phase.value}")
        projection = self._project(self.board.tasks, task_id, target)
        if projection is None:
            raise DragRejected(f"Cannot move {task_id} to {target!r}")
        return await self._commit(task_id, projection)

    def _require_session(self) -> DragSession:
        if self.session is None or self.phase not in (DragPhase.DRAGGING, DragPhase.HOVERING):
            raise IllegalTransition(f"No drag in progress (phase {self.phase.value})")
        return self.session

    def _project(self, tasks: list[Task], task_id: str, target: DropTarget) -> Optional[Projection]:
        if self.board is None:
            raise DragRejected("Board is not loaded")
        return project_hover(
            tasks,
            self.board.statuses,
            task_id,
            target,
            allocator=self.allocator,
            reopen_on_leave_completed=self.ordering.reopen_on_leave_completed,
        )

    # ------------------------------------------------------------------
    # Commit / rollback
    # ------------------------------------------------------------------

    async def _commit(self, task_id: str, projection: Projection) -> DragOutcome:
        self._transition(DragPhase.COMMITTING)
        self._in_flight.add(task_id)
        self._publish(projection.tasks)
        try:
            task = await self.client.move(task_id, projection.intent)
        except ReconcileError as exc:
            return await self._roll_back(task_id, projection.intent, exc)
        except Exception as exc:
            logger.exception("Move of {} raised unexpectedly", task_id)
            failure = MoveFailed(f"Move of {task_id} failed: {exc}", code="client_error")
            return await self._roll_back(task_id, projection.intent, failure)
        except BaseException:
            # Cancelled mid-request: nothing left to await, show the last board.
            self.session = None
            self._transition(DragPhase.ROLLING_BACK)
            self._transition(DragPhase.IDLE)
            self._publish_canonical()
            raise
        finally:
            self._in_flight.discard(task_id)

        self.session = None
        try:
            try:
                self.board = await self._refetch()
            except RefetchFailed as exc:
                logger.warning("Move of {} committed but refetch failed: {}", task_id, exc)
                self._apply_canonical(task)
        finally:
            self._transition(DragPhase.IDLE)
            self._publish_canonical()
        return DragOutcome(kind="committed", task=task)

    async def _roll_back(self, task_id: str, intent: MoveIntent, error: ReconcileError) -> DragOutcome:
        self._transition(DragPhase.ROLLING_BACK)
        logger.warning("Move of {} ({}) failed, rolling back: {}", task_id, type(intent).__name__, error)
        self.session = None
        self._publish_canonical()
        hard_failure = False
        try:
            try:
                self.board = await self._refetch()
            except RefetchFailed as exc:
                hard_failure = True
                logger.error("Rollback refetch failed; keeping last known board: {}", exc)
        finally:
            self._transition(DragPhase.IDLE)
            self._publish_canonical()
        if self.on_error is not None:
            self.on_error(error)
        return DragOutcome(kind="rolled_back", error=error, hard_failure=hard_failure)

    async def _refetch(self) -> Board:
        try:
            return await self._fetch()
        except RefetchFailed as exc:
            logger.warning("Board refetch failed, retrying in {}s: {}", self.settings.refetch_retry_delay, exc)
        await asyncio.sleep(self.settings.refetch_retry_delay)
        return await self._fetch()

    async def _fetch(self) -> Board:
        try:
            return await self.client.fetch_board(self.project_id)
        except RefetchFailed:
            raise
        except Exception as exc:
            logger.exception("Board fetch raised unexpectedly")
            raise RefetchFailed(f"Board fetch failed: {exc}") from exc

    def _apply_canonical(self, task: Task) -> None:
        """Fold a committed task into the last known board."""
        if self.board is None:
            return
        tasks = [task if t.id == task.id else t for t in self.board.tasks]
        tasks.sort(key=Task.sort_key)
        self.board = Board(
            project_id=self.board.project_id,
            revision=self.board.revision,
            statuses=self.board.statuses,
            tasks=tasks,
        )
