"""
Metric Registry
Typed lookup of every alertable value: (section, metric_key) → MetricDescriptor.

Built once at startup. Each descriptor knows how to read its value from an
AnalysisSnapshot and how to format it for messages.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from analytics.models import AnalysisSnapshot, MetricsResult

from .models import (
    CATEGORICAL_CONDITIONS,
    NUMERIC_CONDITIONS,
    Condition,
    MetricType,
    Section,
)


Getter = Callable[[AnalysisSnapshot], Any]
Formatter = Callable[[Any], str]


SECTION_LABELS = {
    Section.CHART: "Main Chart",
    Section.DEPTH: "Market Depth",
    Section.ORDERFLOW: "Order Flow",
    Section.FORECAST: "Price Forecast",
    Section.FAIRVALUE: "Fair Value",
    Section.MCS: "Market Consensus",
    Section.ALPHA: "Alpha Score",
    Section.REGIME: "Regime Engine",
    Section.LEVELS: "Key Levels",
    Section.ENTRY: "Entry Certainty",
    Section.PULSE: "BB Pulse",
}


@dataclass(frozen=True)
class MetricDescriptor:
    section: Section
    key: str
    label: str
    type: MetricType
    get_value: Getter = field(repr=False)
    format: Formatter = field(repr=False)
    options: Tuple[str, ...] = ()
    unit: str = ""

    @property
    def conditions(self) -> List[Condition]:
        if self.type == MetricType.NUMBER:
            return NUMERIC_CONDITIONS
        return CATEGORICAL_CONDITIONS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section.value,
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
            "options": list(self.options),
            "unit": self.unit,
            "conditions": [c.value for c in self.conditions],
        }


class MetricRegistry:
    """
    Usage:
        registry = build_registry()
        metric = registry.get(Section.ORDERFLOW, "bpr")
        value = metric.get_value(snapshot)
    """

    def __init__(self):
        self._metrics: Dict[Tuple[Section, str], MetricDescriptor] = {}

    def register(self, descriptor: MetricDescriptor) -> None:
        self._metrics[(descriptor.section, descriptor.key)] = descriptor

    def get(self, section, key: str) -> Optional[MetricDescriptor]:
        try:
            section = Section(section)
        except ValueError:
            return None
        return self._metrics.get((section, key))

    def list(self, section=None) -> List[MetricDescriptor]:
        if section is None:
            return list(self._metrics.values())
        section = Section(section)
        return [m for (s, _), m in self._metrics.items() if s == section]

    def to_dict(self) -> Dict[str, Any]:
        return {
            s.value: {
                "label": SECTION_LABELS[s],
                "metrics": [m.to_dict() for m in self.list(s)],
            }
            for s in Section
        }

    def __len__(self) -> int:
        return len(self._metrics)


# =============================================================================
# Formatters
# =============================================================================

def format_price(v) -> str:
    v = float(v)
    if abs(v) >= 1000:
        return f"{v:,.2f}"
    if abs(v) >= 1:
        return f"{v:.2f}"
    return f"{v:.6g}"


def format_signed_pct(decimals: int = 2) -> Formatter:
    def fmt(v) -> str:
        v = float(v)
        return f"{'+' if v >= 0 else ''}{v:.{decimals}f}%"
    return fmt


def format_signed(decimals: int = 0) -> Formatter:
    def fmt(v) -> str:
        v = float(v)
        return f"{'+' if v >= 0 else ''}{v:.{decimals}f}"
    return fmt


def format_fixed(decimals: int) -> Formatter:
    return lambda v: f"{float(v):.{decimals}f}"


def format_volume(v) -> str:
    v = float(v)
    if abs(v) >= 1_000_000:
        return f"{v / 1_000_000:.2f}M"
    if abs(v) >= 1000:
        return f"{v / 1000:.1f}K"
    return f"{v:.2f}"


def format_ld(v) -> str:
    v = float(v)
    if abs(v) >= 1000:
        return f"{v / 1000:.1f}K"
    return f"{'+' if v >= 0 else ''}{v:.0f}"


def format_upper(v) -> str:
    return str(v or "").replace("_", " ").upper()


# =============================================================================
# Getters
# =============================================================================

def _metric(name: str) -> Getter:
    """Read a MetricsResult attribute, None when the bar had no book"""
    def get(s: AnalysisSnapshot):
        m = s.metrics
        if m is None:
            return None
        value = getattr(m, name)
        return value.value if hasattr(value, "value") else value
    return get


def _delta(name: str) -> Getter:
    def get(s: AnalysisSnapshot):
        m: Optional[MetricsResult] = s.metrics
        if m is None or name not in m.deltas:
            return None
        return m.deltas[name]
    return get


def _direction(getter: Callable) -> Getter:
    def get(s: AnalysisSnapshot):
        if s.direction is None:
            return None
        return getter(s.direction).value
    return get


def _certainty(name: str) -> Getter:
    def get(s: AnalysisSnapshot):
        if s.certainty is None:
            return None
        value = getattr(s.certainty, name)
        return value.value if hasattr(value, "value") else value
    return get


def _pulse_signal(s: AnalysisSnapshot) -> Optional[str]:
    """Signal of the bar's pulse event, None when the bar carries none"""
    return s.pulse.signal.value if s.pulse is not None else None


def alpha_regime(alpha: Optional[float]) -> Optional[str]:
    if alpha is None:
        return None
    if alpha <= 30:
        return "bearish"
    if alpha >= 70:
        return "bullish"
    return "neutral"


def mcs_label(mcs: Optional[float]) -> Optional[str]:
    if mcs is None:
        return None
    if mcs >= 50:
        return "strong bullish"
    if mcs >= 15:
        return "bullish"
    if mcs <= -50:
        return "strong bearish"
    if mcs <= -15:
        return "bearish"
    return "neutral"


def mcs_confidence(mcs: Optional[float]) -> Optional[str]:
    if mcs is None:
        return None
    magnitude = abs(mcs)
    if magnitude >= 50:
        return "HIGH"
    if magnitude >= 20:
        return "MEDIUM"
    return "LOW"


# =============================================================================
# Default registry
# =============================================================================

BIAS_OPTIONS = ("bullish", "neutral", "bearish")


def build_registry() -> MetricRegistry:
    registry = MetricRegistry()
    N, E, S = MetricType.NUMBER, MetricType.ENUM, MetricType.STRING

    def add(section, key, label, mtype, getter, fmt, options=(), unit=""):
        registry.register(MetricDescriptor(
            section=section, key=key, label=label, type=mtype,
            get_value=getter, format=fmt, options=tuple(options), unit=unit,
        ))

    # Chart
    add(Section.CHART, "price", "Price", N, lambda s: s.price, format_price)
    add(Section.CHART, "mid", "Mid", N, _metric("mid"), format_price)
    add(Section.CHART, "vwmp", "VWMP", N, _metric("vwmp"), format_price)
    add(Section.CHART, "ifv", "IFV", N, _metric("ifv"), format_price)
    add(Section.CHART, "bb_pulse_signal", "BB Pulse Signal", E,
        _pulse_signal, format_upper,
        options=("NONE", "BUY", "SELL", "BOTH"))

    # Depth (full book)
    add(Section.DEPTH, "imbalance_pct", "Imbalance %", N,
        _metric("depth_imbalance_pct"), format_signed_pct(1), unit="%")
    add(Section.DEPTH, "bid_volume", "Bid Volume", N, _metric("bid_depth"), format_volume, unit="vol")
    add(Section.DEPTH, "ask_volume", "Ask Volume", N, _metric("ask_depth"), format_volume, unit="vol")

    # Order flow
    add(Section.ORDERFLOW, "bpr", "BPR (Bid/Ask Ratio)", N, _metric("bpr"), format_fixed(2))
    add(Section.ORDERFLOW, "ld_delta", "LD (Liquidity Delta)", N, _metric("ld"), format_ld)
    add(Section.ORDERFLOW, "ld_pct", "LD %", N, _metric("ld_pct"), format_signed_pct(1), unit="%")
    add(Section.ORDERFLOW, "near_pressure_pct", "Near Pressure %", N,
        _metric("near_pressure_pct"), format_signed_pct(1), unit="%")

    # Forecast
    add(Section.FORECAST, "overall_bias", "Overall Bias", E,
        _direction(lambda d: d.overall_bias), format_upper, options=BIAS_OPTIONS)
    add(Section.FORECAST, "confidence", "Confidence", E,
        lambda s: s.direction.confidence if s.direction else None, format_upper,
        options=("high", "medium", "low"))
    add(Section.FORECAST, "short_bias", "Short Bias", E,
        _direction(lambda d: d.short.bias), format_upper, options=BIAS_OPTIONS)
    add(Section.FORECAST, "medium_bias", "Medium Bias", E,
        _direction(lambda d: d.medium.bias), format_upper, options=BIAS_OPTIONS)
    add(Section.FORECAST, "long_bias", "Long Bias", E,
        _direction(lambda d: d.long.bias), format_upper, options=BIAS_OPTIONS)

    # Fair value
    add(Section.FAIRVALUE, "mid_pct", "Price vs Mid %", N, _metric("vs_mid_pct"), format_signed_pct(2), unit="%")
    add(Section.FAIRVALUE, "vwmp_pct", "Price vs VWMP %", N, _metric("vs_vwmp_pct"), format_signed_pct(2), unit="%")
    add(Section.FAIRVALUE, "ifv_pct", "Price vs IFV %", N, _metric("vs_ifv_pct"), format_signed_pct(2), unit="%")
    add(Section.FAIRVALUE, "suggested_direction", "Suggested Direction", E,
        _certainty("entry_signal"), format_upper,
        options=("WAIT", "LONG", "SHORT"))

    # Market consensus
    add(Section.MCS, "score", "MCS Score", N, _metric("mcs"), format_fixed(0))
    add(Section.MCS, "signal", "MCS Signal", S, lambda s: mcs_label(_metric("mcs")(s)), format_upper)
    add(Section.MCS, "mm_bias", "MM Bias", N, _metric("mm_bias"), format_signed(0))
    add(Section.MCS, "swing_bias", "Swing Bias", N, _metric("swing_bias"), format_signed(0))
    add(Section.MCS, "htf_bias", "HTF Bias", N, _metric("htf_bias"), format_signed(0))
    add(Section.MCS, "confidence", "Consensus Confidence", E,
        lambda s: mcs_confidence(_metric("mcs")(s)), format_upper, options=("HIGH", "MEDIUM", "LOW"))

    # Alpha
    add(Section.ALPHA, "score", "Alpha Score", N, _metric("alpha"), format_fixed(0))
    add(Section.ALPHA, "regime", "Alpha Regime", E,
        lambda s: alpha_regime(_metric("alpha")(s)), format_upper, options=BIAS_OPTIONS[::-1])
    add(Section.ALPHA, "mm", "Alpha MM", N, _metric("alpha_mm"), format_fixed(0))
    add(Section.ALPHA, "swing", "Alpha Swing", N, _metric("alpha_swing"), format_fixed(0))
    add(Section.ALPHA, "htf", "Alpha HTF", N, _metric("alpha_htf"), format_fixed(0))

    # Regime
    add(Section.REGIME, "type", "Regime Type", E, _metric("regime"), format_upper,
        options=("accumulation", "neutral", "distribution"))
    add(Section.REGIME, "score", "Regime Score", N, _metric("regime_score"), format_signed(1))
    add(Section.REGIME, "next_regime_prob", "Next Regime Probability", N,
        _metric("next_regime_prob"), format_fixed(0), unit="%")
    add(Section.REGIME, "ld_roc", "LD_ROC", N, _delta("ld_pct"), format_signed(2))
    add(Section.REGIME, "bpr_roc", "BPR_ROC", N, _delta("bpr"), format_signed(2))
    add(Section.REGIME, "alpha_roc", "Alpha_ROC", N, _delta("alpha"), format_signed(2))
    add(Section.REGIME, "vwmp_ext", "VWMP Extension %", N, _metric("vs_vwmp_pct"), format_signed_pct(2), unit="%")
    add(Section.REGIME, "ifv_ext", "IFV Extension %", N, _metric("vs_ifv_pct"), format_signed_pct(2), unit="%")

    # Levels
    add(Section.LEVELS, "nearest_support_pct", "Nearest Support %", N,
        lambda s: s.nearest_support_pct, format_fixed(2), unit="%")
    add(Section.LEVELS, "nearest_resist_pct", "Nearest Resistance %", N,
        lambda s: s.nearest_resistance_pct, format_fixed(2), unit="%")
    add(Section.LEVELS, "bid_wall_proximity", "Bid Wall Proximity", N,
        _metric("bid_wall_proximity"), format_fixed(0))
    add(Section.LEVELS, "ask_wall_proximity", "Ask Wall Proximity", N,
        _metric("ask_wall_proximity"), format_fixed(0))

    # Entry certainty
    add(Section.ENTRY, "long_certainty", "Long Certainty", N, _certainty("long_certainty"), format_fixed(0))
    add(Section.ENTRY, "short_certainty", "Short Certainty", N, _certainty("short_certainty"), format_fixed(0))
    add(Section.ENTRY, "signal", "Entry Signal", E, _certainty("entry_signal"), format_upper,
        options=("WAIT", "LONG", "SHORT"))

    # Pulse
    add(Section.PULSE, "signal", "Pulse Signal", E,
        _pulse_signal, format_upper, options=("NONE", "BUY", "SELL", "BOTH"))
    add(Section.PULSE, "pulse", "Pulse", N, lambda s: s.pulse_value, format_fixed(2))
    add(Section.PULSE, "bbr", "BB %B", N, lambda s: s.bbr, format_fixed(2))

    return registry


_registry: Optional[MetricRegistry] = None


def get_registry() -> MetricRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry
