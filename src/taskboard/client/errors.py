"""Errors surfaced by board clients and the drag reconciler."""

from __future__ import annotations

from typing import Optional

from ..ordering.errors import MoveError


class ReconcileError(Exception):
    """Base class for client-side reconciliation failures."""


class MoveFailed(ReconcileError):
    """The server rejected a move or could not be reached.

    ``status_code`` is ``None`` for transport failures.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "move_failed",
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def from_error(cls, exc: MoveError) -> "MoveFailed":
        return cls(exc.message, code=exc.code, status_code=exc.status_code, retryable=exc.retryable)


class RefetchFailed(ReconcileError):
    """The authoritative board could not be loaded."""


class DragRejected(ReconcileError):
    """A gesture was refused: another session is active or the task is in flight."""


class IllegalTransition(ReconcileError):
    """The drag state machine was driven out of order."""
