"""Order key allocation.

Keys are floats compared inside a group.  A new key is always derived from
its two would-be neighbours so inserting never touches any other task; when
the interval between neighbours is used up the allocator refuses and the
caller rebalances the group first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..constants import DEFAULT_BASE_KEY, DEFAULT_KEY_GAP


class KeySpaceExhausted(ArithmeticError):
    """No distinct key fits between the requested neighbours."""

    def __init__(self, prev: Optional[float], next_: Optional[float]) -> None:
        super().__init__(f"No room for a key between {prev!r} and {next_!r}; rebalance the group")
        self.prev = prev
        self.next = next_


@dataclass(frozen=True)
class OrderKeyAllocator:
    """Pure key computation over two optional neighbour keys.

    ``min_gap`` is the narrowest interval the allocator will still split; a
    value of ``0`` only guards against float collapse.
    """

    base_key: float = DEFAULT_BASE_KEY
    gap: float = DEFAULT_KEY_GAP
    min_gap: float = 0.0

    def next_key(self, prev: Optional[float], next_: Optional[float]) -> float:
        """Return a key strictly between ``prev`` and ``next_``.

        ``None`` stands for "no neighbour on that side".  Raises
        :class:`KeySpaceExhausted` when the interval is too narrow and
        :class:`ValueError` when the bounds are out of order.
        """
        if prev is None:
            if next_ is None:
                return self.base_key
            candidate = next_ - self.gap
            if candidate > 0:
                return candidate
            # Split the remaining room above zero instead of going negative.
            return self._between(0.0, next_)

        if next_ is None:
            candidate = prev + self.gap
            if candidate <= prev:
                raise KeySpaceExhausted(prev, None)
            return candidate

        if prev >= next_:
            raise ValueError(f"Neighbour keys out of order: {prev!r} >= {next_!r}")
        return self._between(prev, next_)

    def append_key(self, keys: Iterable[Optional[float]]) -> float:
        """Key for the tail of a group holding ``keys``."""
        present = [k for k in keys if k is not None]
        return self.next_key(max(present) if present else None, None)

    def _between(self, low: float, high: float) -> float:
        if high - low < self.min_gap:
            raise KeySpaceExhausted(low, high)
        mid = low + (high - low) / 2
        if not low < mid < high:
            raise KeySpaceExhausted(low, high)
        return mid


_DEFAULT = OrderKeyAllocator()


def next_key(prev: Optional[float], next_: Optional[float]) -> float:
    """Module-level shortcut using the default allocator."""
    return _DEFAULT.next_key(prev, next_)
