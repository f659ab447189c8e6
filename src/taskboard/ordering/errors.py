"""Errors raised by the move orchestrator.

Every error carries the HTTP-equivalent ``status_code``, a stable ``code``
for clients, and whether re-issuing the request after a refetch can succeed.
"""

from __future__ import annotations


class MoveError(Exception):
    """Base class for failures surfaced to move callers."""

    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "detail": self.message, "retryable": self.retryable}


class TaskNotFoundError(MoveError):
    status_code = 404
    code = "task_not_found"


class PermissionDeniedError(MoveError):
    status_code = 403
    code = "forbidden"


# ---------------------------------------------------------------------------
# Validation (rejected before any write, never retried)
# ---------------------------------------------------------------------------

class MoveValidationError(MoveError):
    status_code = 400
    code = "invalid_move"


class ParentNotFoundError(MoveValidationError):
    code = "parent_not_found"


class CrossProjectParentError(MoveValidationError):
    code = "cross_project_parent"


class SelfParentError(MoveValidationError):
    code = "self_parent"


class CyclicParentError(MoveValidationError):
    code = "cyclic_parent"


class StatusNotFoundError(MoveValidationError):
    code = "status_not_found"


class InvalidMoveTargetError(MoveValidationError):
    code = "invalid_target"


# ---------------------------------------------------------------------------
# Conflicts and persistence
# ---------------------------------------------------------------------------

class ConcurrentModificationError(MoveError):
    status_code = 409
    code = "concurrent_modification"
    retryable = True


class PersistenceError(MoveError):
    status_code = 500
    code = "persistence_failed"
