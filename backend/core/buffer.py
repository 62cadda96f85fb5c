"""
In-Memory Buffers
Bounded storage for raw snapshots and a FIFO channel for closed-bar results.

Purpose:
- Timeframe switches recompute from retained raw snapshots
- Closed-bar results flow to consumers in order, one per bar
- No disk I/O allowed here

This is READ-OPTIMIZED, NOT DURABLE.
"""

from collections import deque
from typing import Deque, Generic, List, Optional, Set, TypeVar

from .models import Snapshot


# =============================================================================
# Raw Bar Buffer (Snapshots)
# =============================================================================

class RawBarBuffer:
    """
    Ring buffer of raw snapshots ordered by time.

    - Deduplicates by snapshot time
    - Evicts oldest first once maxlen is reached
    - Accepts late snapshots by inserting them in order

    Usage:
        buffer = RawBarBuffer(maxlen=2000)
        status = buffer.add(snapshot)   # "appended" | "inserted" | "duplicate" | "stale"
        snapshots = buffer.get()
    """

    APPENDED = "appended"
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    STALE = "stale"

    def __init__(self, maxlen: int = 2000):
        self.maxlen = maxlen
        self._data: Deque[Snapshot] = deque()
        self._times: Set[int] = set()
        self._evicted: int = 0

    def add(self, snapshot: Snapshot) -> str:
        if snapshot.time in self._times:
            return self.DUPLICATE

        if self._data and snapshot.time < self._data[-1].time:
            # Older than everything retained in a full buffer: nothing to keep
            if len(self._data) >= self.maxlen and snapshot.time < self._data[0].time:
                return self.STALE
            self._make_room()
            idx = len(self._data)
            while idx > 0 and self._data[idx - 1].time > snapshot.time:
                idx -= 1
            self._data.insert(idx, snapshot)
            self._times.add(snapshot.time)
            return self.INSERTED

        self._make_room()
        self._data.append(snapshot)
        self._times.add(snapshot.time)
        return self.APPENDED

    def _make_room(self) -> None:
        while len(self._data) >= self.maxlen:
            old = self._data.popleft()
            self._times.discard(old.time)
            self._evicted += 1

    def get(self, limit: int = None) -> List[Snapshot]:
        """Snapshots oldest first"""
        data = list(self._data)
        if limit:
            return data[-limit:]
        return data

    def get_latest(self) -> Optional[Snapshot]:
        return self._data[-1] if self._data else None

    def __contains__(self, time: int) -> bool:
        return time in self._times

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()
        self._times.clear()

    def stats(self) -> dict:
        return {
            "size": len(self._data),
            "maxlen": self.maxlen,
            "evicted": self._evicted,
            "first_time": self._data[0].time if self._data else None,
            "last_time": self._data[-1].time if self._data else None,
        }


# =============================================================================
# Bar Channel (closed-bar results, FIFO)
# =============================================================================

T = TypeVar("T")


class BarChannel(Generic[T]):
    """
    Ordered single-consumer queue of closed-bar results.

    Producers push exactly one item per closed bar; consumers drain in
    arrival order. Bounded: when maxlen is reached the oldest unread item
    is dropped and counted.
    """

    def __init__(self, maxlen: int = 1000):
        self.maxlen = maxlen
        self._queue: Deque[T] = deque()
        self._pushed: int = 0
        self._dropped: int = 0

    def push(self, item: T) -> None:
        if len(self._queue) >= self.maxlen:
            self._queue.popleft()
            self._dropped += 1
        self._queue.append(item)
        self._pushed += 1

    def pop(self) -> Optional[T]:
        return self._queue.popleft() if self._queue else None

    def drain(self) -> List[T]:
        items = list(self._queue)
        self._queue.clear()
        return items

    def __len__(self) -> int:
        return len(self._queue)

    def clear(self) -> None:
        self._queue.clear()

    def stats(self) -> dict:
        return {
            "pending": len(self._queue),
            "pushed": self._pushed,
            "dropped": self._dropped,
        }
