"""
Shared fixtures and factories for the test suite.
"""

from dataclasses import replace
from typing import List, Optional, Sequence

import pytest

from analytics.certainty import score_entry
from analytics.metrics import compute_metrics
from analytics.models import AnalysisSnapshot
from core.config import AnalysisSettings, EngineConfig
from core.engine import AnalysisEngine
from core.models import Book, Candle, Snapshot
from db import InMemoryStore

# Divisible by 60, 300 and 3600
T0 = 1_699_999_200

EXAMPLE_BIDS = [[100, 2], [99, 5]]
EXAMPLE_ASKS = [[101, 1], [102, 4]]


def make_book(bids: Optional[Sequence] = None, asks: Optional[Sequence] = None) -> Book:
    """Helper to create a book (defaults to the reference example)"""
    return Book(
        bids=EXAMPLE_BIDS if bids is None else bids,
        asks=EXAMPLE_ASKS if asks is None else asks,
    )


def make_snapshot(
    time: int,
    price: float = 100.0,
    bids: Optional[Sequence] = None,
    asks: Optional[Sequence] = None,
    volume: float = 1.0,
    with_book: bool = True,
) -> Snapshot:
    """Helper to create a snapshot with a flat candle at `price`"""
    return Snapshot(
        time=time,
        candle=Candle(open=price, high=price, low=price, close=price, volume=volume),
        book=make_book(bids, asks) if with_book else None,
    )


def make_minute_snapshots(count: int, start: int = T0, price: float = 100.0) -> List[Snapshot]:
    return [make_snapshot(start + i * 60, price=price) for i in range(count)]


def make_analysis(
    price: float = 100.0,
    bar_id: int = T0,
    symbol: str = "BTC",
    bids: Optional[Sequence] = None,
    asks: Optional[Sequence] = None,
    with_book: bool = True,
    **metric_overrides,
) -> AnalysisSnapshot:
    """
    Helper to create an AnalysisSnapshot.

    Metrics come from the example book; any MetricsResult field can be
    overridden by keyword.
    """
    metrics = None
    certainty = None
    if with_book:
        metrics = compute_metrics(bar_id, price, make_book(bids, asks), AnalysisSettings())
        if metric_overrides:
            metrics = replace(metrics, **metric_overrides)
        certainty = score_entry(metrics)
    return AnalysisSnapshot(
        symbol=symbol,
        timeframe="1m",
        bar_id=bar_id,
        closed=True,
        open=price,
        high=price,
        low=price,
        close=price,
        volume=1.0,
        metrics=metrics,
        certainty=certainty,
    )


class FakeClock:
    """Settable clock for throttles"""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def engine(store, clock):
    config = EngineConfig(symbol="BTC", timeframe="1m", analytics_interval_sec=0, db_path=None)
    return AnalysisEngine(config=config, store=store, clock=clock)
