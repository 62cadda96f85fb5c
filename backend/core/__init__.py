"""
Core Module
Snapshot ingestion, bar aggregation and the analysis pipeline.

Exports:
    Models: Snapshot, Candle, Book, AggregatedBar, DataSource, IngestionResult
    Config: AnalysisSettings, EngineConfig
    Buffer: RawBarBuffer, BarChannel
    Resampler: SnapshotAggregator, aggregate_snapshots
    Converters: to_snapshot

The pipeline itself is imported from core.engine (get_engine,
AnalysisEngine); it depends on analytics and alerts, which depend on
core.models.
"""

from .models import (
    AggregatedBar,
    Book,
    Candle,
    DataSource,
    IngestionResult,
    Snapshot,
    to_snapshot,
)

from .config import AlphaMode, AnalysisSettings, EngineConfig, LDMode
from .buffer import BarChannel, RawBarBuffer
from .resampler import SnapshotAggregator, aggregate_snapshots, timeframe_seconds

__all__ = [
    # Models
    "AggregatedBar",
    "Book",
    "Candle",
    "DataSource",
    "IngestionResult",
    "Snapshot",
    "to_snapshot",
    # Config
    "AlphaMode",
    "AnalysisSettings",
    "EngineConfig",
    "LDMode",
    # Buffer
    "BarChannel",
    "RawBarBuffer",
    # Resampler
    "SnapshotAggregator",
    "aggregate_snapshots",
    "timeframe_seconds",
]
