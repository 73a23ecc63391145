"""Fixed-capacity, most-recent-first record of past verdicts."""

from collections import deque
from typing import Deque, Tuple

from halo.core.models import AlertEntry

DEFAULT_CAPACITY = 10


class AlertLog:
    """In-memory alert history for one guardian process.

    Entries are frozen, so a snapshot can be handed out without copying them.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._entries: Deque[AlertEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, entry: AlertEntry) -> None:
        # appendleft on a bounded deque drops from the right: the oldest entry
        self._entries.appendleft(entry)

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> Tuple[AlertEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
