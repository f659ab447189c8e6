"""Group rebalancing policy.

A group degrades as keys get squeezed together by repeated midpoint
insertions, as tail appends push keys towards the precision ceiling, or when
legacy rows arrive without a key.  ``rebalance`` renumbers the whole group as
an even arithmetic progression; callers run it inside the same store
transaction as the move that triggered it.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import OrderingSettings
from .model import Task

logger = logging.getLogger(__name__)


class RebalancePolicy:
    """Decide when a group's keys need renumbering and renumber them."""

    def __init__(self, settings: OrderingSettings | None = None) -> None:
        self.settings = settings or OrderingSettings()

    # -- inspection ---------------------------------------------------------

    def needs_rebalancing(self, tasks: Sequence[Task]) -> bool:
        if any(t.order is None for t in tasks):
            return True
        if len(tasks) < 2:
            return bool(tasks) and abs(tasks[0].order or 0.0) > self.settings.max_key

        keys = sorted(t.order for t in tasks if t.order is not None)
        if keys[-1] > self.settings.max_key or keys[0] <= 0:
            return True

        gaps = [b - a for a, b in zip(keys, keys[1:])]
        smallest = min(gaps)
        if smallest < self.settings.min_gap:
            return True
        # Highly irregular spacing: one more squeeze away from collapsing.
        if len(gaps) > 1 and max(gaps) / smallest > self.settings.irregularity_ratio:
            return True
        return False

    # -- mutation -----------------------------------------------------------

    def rebalance(self, tasks: Sequence[Task]) -> list[Task]:
        """Assign ``base_key + i * gap`` in current display order.

        Ties and uninitialized keys are broken by creation order so the
        result is deterministic.  Returns the tasks whose key changed; the
        caller is responsible for marking them as modified.
        """
        ordered = sorted(tasks, key=Task.sort_key)
        changed: list[Task] = []
        for index, task in enumerate(ordered):
            key = self.settings.base_key + index * self.settings.gap
            if task.order != key:
                task.order = key
                changed.append(task)
        return changed

    def initialize_missing_keys(self, tasks: Sequence[Task]) -> list[Task]:
        """Give uninitialized members keys after the current maximum.

        Members without a key are appended in creation order, so a total
        order exists before any key arithmetic happens.
        """
        missing = sorted((t for t in tasks if t.order is None), key=lambda t: (t.created_at, t.id))
        if not missing:
            return []
        present = [t.order for t in tasks if t.order is not None]
        top = max(present) if present else self.settings.base_key - self.settings.gap
        for task in missing:
            top += self.settings.gap
            task.order = top
        logger.debug("Initialized %d missing order keys", len(missing))
        return missing
