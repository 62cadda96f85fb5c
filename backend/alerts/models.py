"""
Alert Models
Data structures for alert definitions, runtime state, log entries and events.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
from enum import Enum
import time
import uuid


class Section(str, Enum):
    """Metric groups alerts can be attached to"""
    CHART = "chart"
    DEPTH = "depth"
    ORDERFLOW = "orderflow"
    FORECAST = "forecast"
    FAIRVALUE = "fairvalue"
    MCS = "mcs"
    ALPHA = "alpha"
    REGIME = "regime"
    LEVELS = "levels"
    ENTRY = "entry"
    PULSE = "pulse"


class MetricType(str, Enum):
    NUMBER = "number"
    ENUM = "enum"
    STRING = "string"


class Condition(str, Enum):
    """Alert conditions"""
    # Numeric vs threshold
    ABOVE = "above"
    BELOW = "below"
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"
    # Numeric vs another metric of the same section
    ABOVE_METRIC = "above_metric"
    BELOW_METRIC = "below_metric"
    CROSSES_ABOVE_METRIC = "crosses_above_metric"
    CROSSES_BELOW_METRIC = "crosses_below_metric"
    # Enum / string
    IS = "is"
    CHANGES = "changes"
    CHANGES_TO = "changes_to"

    @property
    def compares_metric(self) -> bool:
        return self.value.endswith("_metric")

    @property
    def is_numeric(self) -> bool:
        return self not in (Condition.IS, Condition.CHANGES, Condition.CHANGES_TO)

    @property
    def direction(self) -> str:
        """up | down | neutral (chart marker orientation)"""
        if "above" in self.value:
            return "up"
        if "below" in self.value:
            return "down"
        return "neutral"


NUMERIC_CONDITIONS = [c for c in Condition if c.is_numeric]
CATEGORICAL_CONDITIONS = [Condition.IS, Condition.CHANGES, Condition.CHANGES_TO]


class Frequency(str, Enum):
    """How often a triggered alert may fire"""
    ONE_TIME = "one_time"
    ONCE_PER_BAR = "once_per_bar"
    ONCE_PER_MINUTE = "once_per_minute"

    @classmethod
    def _missing_(cls, value):
        if value == "once_per_min":
            return cls.ONCE_PER_MINUTE
        return None


@dataclass
class AlertRuntime:
    """
    Per-alert evaluation memory.

    last_value / last_diff drive crosses_* and changes*;
    last_fired_* drive throttling.
    """
    last_value: Any = None
    last_diff: Optional[float] = None
    last_fired_bar_id: Optional[int] = None
    last_fired_ts: Optional[float] = None
    fire_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AlertRuntime":
        data = data or {}
        return cls(
            last_value=data.get("last_value"),
            last_diff=data.get("last_diff"),
            last_fired_bar_id=data.get("last_fired_bar_id"),
            last_fired_ts=data.get("last_fired_ts"),
            fire_count=int(data.get("fire_count", 0)),
        )


@dataclass
class Alert:
    """
    User-defined alert.

    Example:
        "Tell me once when orderflow.bpr crosses above 1.5 on BTC"
    """
    id: str
    symbol: str
    section: Section
    metric_key: str
    condition: Condition
    threshold: Optional[float] = None
    target: Optional[str] = None
    compare_metric_key: Optional[str] = None
    frequency: Frequency = Frequency.ONE_TIME
    notify: bool = True
    sound: bool = True
    sound_type: str = "alarm"
    enabled: bool = True
    custom_message: str = ""
    plot_on_chart: bool = False
    plot_text: str = ""
    created_at: float = field(default_factory=time.time)
    runtime: AlertRuntime = field(default_factory=AlertRuntime)

    def __post_init__(self):
        if not self.id:
            self.id = f"alert_{uuid.uuid4().hex[:8]}"
        self.symbol = self.symbol.upper()
        self.section = Section(self.section)
        self.condition = Condition(self.condition)
        self.frequency = Frequency(self.frequency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "section": self.section.value,
            "metric_key": self.metric_key,
            "condition": self.condition.value,
            "threshold": self.threshold,
            "target": self.target,
            "compare_metric_key": self.compare_metric_key,
            "frequency": self.frequency.value,
            "notify": self.notify,
            "sound": self.sound,
            "sound_type": self.sound_type,
            "enabled": self.enabled,
            "custom_message": self.custom_message,
            "plot_on_chart": self.plot_on_chart,
            "plot_text": self.plot_text,
            "created_at": self.created_at,
            "runtime": self.runtime.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        threshold = data.get("threshold")
        return cls(
            id=data.get("id", ""),
            symbol=data["symbol"],
            section=Section(data["section"]),
            metric_key=data["metric_key"],
            condition=Condition(data["condition"]),
            threshold=float(threshold) if threshold is not None else None,
            target=data.get("target"),
            compare_metric_key=data.get("compare_metric_key"),
            frequency=Frequency(data.get("frequency", "one_time")),
            notify=data.get("notify", True),
            sound=data.get("sound", True),
            sound_type=data.get("sound_type", "alarm"),
            enabled=data.get("enabled", True),
            custom_message=data.get("custom_message") or "",
            plot_on_chart=data.get("plot_on_chart", False),
            plot_text=data.get("plot_text") or "",
            created_at=float(data.get("created_at", time.time())),
            runtime=AlertRuntime.from_dict(data.get("runtime")),
        )


@dataclass(frozen=True)
class ChartMarker:
    """Marker a chart can draw at the firing bar"""
    time: int
    position: str        # belowBar | aboveBar | inBar
    shape: str           # arrowUp | arrowDown | circle
    color: str
    text: str = ""

    @classmethod
    def for_alert(cls, alert: Alert, bar_id: Optional[int]) -> Optional["ChartMarker"]:
        if not alert.plot_on_chart or not bar_id:
            return None
        direction = alert.condition.direction
        shape = {"up": "arrowUp", "down": "arrowDown"}.get(direction, "circle")
        position = {"arrowUp": "belowBar", "arrowDown": "aboveBar"}.get(shape, "inBar")
        color = {"up": "#10b981", "down": "#ef4444"}.get(direction, "#fbbf24")
        return cls(time=bar_id, position=position, shape=shape, color=color,
                   text=alert.plot_text[:10])


@dataclass(frozen=True)
class AlertLogEntry:
    """
    One firing, as persisted in the per-symbol log (newest first).
    """
    id: str
    ts: float
    alert_id: str
    symbol: str
    section: str
    metric_key: str
    message: str
    value: Any
    context: Dict[str, Any] = field(default_factory=dict)
    marker: Optional[ChartMarker] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["context"] = dict(self.context)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertLogEntry":
        marker = data.get("marker")
        return cls(
            id=data.get("id") or f"evt_{uuid.uuid4().hex[:8]}",
            ts=float(data["ts"]),
            alert_id=data.get("alert_id", ""),
            symbol=data.get("symbol", ""),
            section=data.get("section", ""),
            metric_key=data.get("metric_key", ""),
            message=data["message"],
            value=data.get("value"),
            context=dict(data.get("context") or {}),
            marker=ChartMarker(**marker) if marker else None,
        )


@dataclass
class AlertFiredEvent:
    """
    Handed to delivery sinks (notification, sound, SSE) when an alert fires.
    """
    alert: Alert
    metric_label: str
    value: Any
    compare_value: Any
    message: str
    context_line: str
    log_entry: AlertLogEntry
    snapshot: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "alert",
            "alert": self.alert.to_dict(),
            "metric_label": self.metric_label,
            "value": self.value,
            "compare_value": self.compare_value,
            "message": self.message,
            "context_line": self.context_line,
            "notify": self.alert.notify,
            "sound": self.alert.sound,
            "sound_type": self.alert.sound_type,
            "log_entry": self.log_entry.to_dict(),
        }
