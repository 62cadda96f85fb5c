"""
Alert System
User-defined alerts over the analysis read model.

Structure:
    alerts/
    ├── models.py    → Alert, AlertRuntime, AlertLogEntry, AlertFiredEvent
    ├── registry.py  → MetricRegistry (section, key) → descriptor
    └── engine.py    → evaluate_alert (pure) + AlertEngine (persistence, log, delivery)

Usage:
    from alerts import AlertEngine

    engine = AlertEngine(store, symbol="BTC")
    engine.upsert({
        "section": "orderflow",
        "metric_key": "bpr",
        "condition": "crosses_above",
        "threshold": 1.5,
        "frequency": "once_per_bar",
    })

    # Called by the analysis engine for every analysed bar
    fired = engine.evaluate(snapshot, bar_id=snapshot.bar_id)

    # Log, newest first
    log = engine.get_log(limit=20)
"""

from .models import (
    Alert,
    AlertRuntime,
    AlertLogEntry,
    AlertFiredEvent,
    ChartMarker,
    Condition,
    Frequency,
    MetricType,
    Section,
)

from .registry import MetricDescriptor, MetricRegistry, build_registry, get_registry

from .engine import (
    AlertEngine,
    build_message,
    check_condition,
    evaluate_alert,
    format_condition,
    render_template,
)

__all__ = [
    # Models
    "Alert",
    "AlertRuntime",
    "AlertLogEntry",
    "AlertFiredEvent",
    "ChartMarker",
    "Condition",
    "Frequency",
    "MetricType",
    "Section",
    # Registry
    "MetricDescriptor",
    "MetricRegistry",
    "build_registry",
    "get_registry",
    # Engine
    "AlertEngine",
    "build_message",
    "check_condition",
    "evaluate_alert",
    "format_condition",
    "render_template",
]
