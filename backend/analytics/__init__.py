"""
Analytics Module
Order-book signal analytics, computed once per bar.

Structure:
    analytics/
    ├── models.py     → Output types (dataclasses)
    ├── levels.py     → Book filtering and clustering
    ├── metrics.py    → MetricsResult per bar (with deltas)
    ├── certainty.py  → LONG / SHORT entry certainty
    ├── pulse.py      → Bollinger width pulse indicator
    └── direction.py  → Short / medium / long band bias

Usage:
    from analytics import compute_metrics, score_entry, analyze_direction

    metrics = compute_metrics(bar.time, bar.close, bar.book, settings, previous)
    certainty = score_entry(metrics)

Design Principles:
    ✓ ALL functions are PURE (inputs → computation → outputs)
    ✓ NO database access
    ✓ NO state management
"""

from .levels import cluster_book, process_levels
from .metrics import compute_metrics
from .certainty import score_entry
from .pulse import PulseSettings, compute_pulse
from .direction import analyze_direction

from .models import (
    AnalysisSnapshot,
    CertaintyResult,
    DirectionalResult,
    EntrySignal,
    Level,
    LevelSet,
    MetricsResult,
    PulseEvents,
    PulseResult,
    PulseSignal,
)

__all__ = [
    # Functions
    "cluster_book",
    "process_levels",
    "compute_metrics",
    "score_entry",
    "PulseSettings",
    "compute_pulse",
    "analyze_direction",
    # Types
    "AnalysisSnapshot",
    "CertaintyResult",
    "DirectionalResult",
    "EntrySignal",
    "Level",
    "LevelSet",
    "MetricsResult",
    "PulseEvents",
    "PulseResult",
    "PulseSignal",
]
