"""Provide the public `taskboard` package exports."""

from __future__ import annotations

from .ordering.model import Board, ChangeStatus, Reorder, Reparent, Status, Task
from .ordering.orchestrator import MoveOrchestrator, open_orchestrator

__all__ = [
    "Board",
    "ChangeStatus",
    "MoveOrchestrator",
    "Reorder",
    "Reparent",
    "Status",
    "Task",
    "open_orchestrator",
]
