"""
Snapshot Aggregator
Merges the snapshot stream into timeframe bars.

Flow:
1. Snapshot arrives
2. Find its time bucket: floor(time / interval) * interval
3. Update the forming bar (OHLCV, last book)
4. If the bucket changed → emit the completed bar
"""

from typing import List, Optional

from .models import Snapshot, AggregatedBar


# =============================================================================
# Timeframe Configuration
# =============================================================================

TIMEFRAME_SECONDS = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "6h": 21600,
    "12h": 43200,
    "1d": 86400,
    "3d": 259200,
    "1w": 604800,
}


def timeframe_seconds(timeframe: str) -> int:
    """Interval for a timeframe label. Raises ValueError when unknown."""
    try:
        return TIMEFRAME_SECONDS[timeframe]
    except KeyError:
        raise ValueError(
            f"Unknown timeframe: {timeframe}. Use: {', '.join(TIMEFRAME_SECONDS)}"
        ) from None


def bucket_time(time: int, interval: int) -> int:
    """
    Bar open time for a snapshot time.

    Example (1m bars):
        600023 → 600000
        600119 → 600060
    """
    return (time // interval) * interval


# =============================================================================
# Aggregator
# =============================================================================

class SnapshotAggregator:
    """
    Real-time bar builder from the snapshot stream.

    Maintains the current "forming" bar.
    Emits completed bars when the bucket boundary is crossed.

    Usage:
        aggregator = SnapshotAggregator("5m")

        for snapshot in stream:
            completed = aggregator.process(snapshot)
            if completed:
                handle(completed)
    """

    def __init__(self, timeframe: str = "1m"):
        self.timeframe = timeframe
        self.interval = timeframe_seconds(timeframe)
        self._forming: Optional[AggregatedBar] = None

    def set_timeframe(self, timeframe: str) -> None:
        """Switch interval. Forming bar is dropped; callers rebuild from raw."""
        self.interval = timeframe_seconds(timeframe)
        self.timeframe = timeframe
        self._forming = None

    @property
    def forming(self) -> Optional[AggregatedBar]:
        return self._forming

    def process(self, snapshot: Snapshot) -> Optional[AggregatedBar]:
        """
        Process a single snapshot (in time order).

        Returns:
            - Completed bar if the bucket boundary was crossed
            - None if the bar is still forming
        """
        bar_time = bucket_time(snapshot.time, self.interval)
        current = self._forming

        # =====================================================================
        # Case 1: No current bar OR new bucket
        # =====================================================================
        if current is None or current.time != bar_time:
            self._forming = AggregatedBar.from_snapshot(snapshot, bar_time)
            return current

        # =====================================================================
        # Case 2: Same bucket: update forming bar
        # =====================================================================
        current.update(snapshot)
        return None

    def rebuild(self, snapshots: List[Snapshot]) -> List[AggregatedBar]:
        """
        Recompute from scratch (timeframe change, late snapshot).

        Returns the completed bars; the last bucket becomes the forming bar.
        """
        bars = aggregate_snapshots(snapshots, self.timeframe)
        if not bars:
            self._forming = None
            return []
        self._forming = bars[-1]
        return bars[:-1]

    def flush(self) -> Optional[AggregatedBar]:
        """
        Force-complete the forming bar.
        Useful at the end of a replay file.
        """
        bar, self._forming = self._forming, None
        return bar

    def clear(self) -> None:
        self._forming = None


# =============================================================================
# Batch Aggregation (replays, recomputes)
# =============================================================================

def aggregate_snapshots(
    snapshots: List[Snapshot],
    timeframe: str = "1m"
) -> List[AggregatedBar]:
    """
    Batch aggregate snapshots to bars, including the final (forming) bucket.

    Stateless utility. Sorts by time and drops duplicate times first.
    """
    if not snapshots:
        return []

    seen = set()
    ordered = []
    for snap in sorted(snapshots, key=lambda s: s.time):
        if snap.time in seen:
            continue
        seen.add(snap.time)
        ordered.append(snap)

    aggregator = SnapshotAggregator(timeframe)
    completed = []
    for snap in ordered:
        bar = aggregator.process(snap)
        if bar:
            completed.append(bar)

    final = aggregator.flush()
    if final:
        completed.append(final)
    return completed
