"""Bounded in-memory metrics history."""

from collections import deque
from typing import Deque, Optional, Tuple

from app.models.metrics import HistoryEntry


class MetricsHistory:
    """FIFO ring buffer of tick entries.

    Appending at capacity evicts exactly the oldest entry. ``snapshot()``
    returns a tuple, so readers hold an immutable copy that later ticks cannot
    change.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._entries: Deque[HistoryEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: HistoryEntry) -> None:
        if self._entries and entry.timestamp < self._entries[-1].timestamp:
            raise ValueError("History entries must be appended in time order")
        self._entries.append(entry)

    def latest(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def snapshot(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries)
