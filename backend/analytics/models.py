"""
Analytics Output Types
Dataclasses for level, metric, certainty, pulse and directional results.
"""

from dataclasses import dataclass, field, fields, replace, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# LEVELS
# =============================================================================

@dataclass
class Level:
    """A (possibly clustered) price level on one side of the book."""
    price: float
    volume: float
    side: str            # "bid" | "ask"
    count: int = 1       # Raw levels merged into this one


@dataclass
class LevelSet:
    """
    The views of one book that metrics read from.

    clustered:  bucketed levels inside price_range_pct (bids desc, asks asc)
    ld:         the clustered subset that feeds BPR / LD (ld_mode)
    fair_value: raw levels inside fair_value_range_pct (VWMP / IFV)
    full:       the whole raw book (depth, walls, top-of-book)
    """
    price: float
    clustered_bids: List[Level] = field(default_factory=list)
    clustered_asks: List[Level] = field(default_factory=list)
    ld_bids: List[Level] = field(default_factory=list)
    ld_asks: List[Level] = field(default_factory=list)
    fair_value_bids: List[Level] = field(default_factory=list)
    fair_value_asks: List[Level] = field(default_factory=list)
    full_bids: List[Level] = field(default_factory=list)
    full_asks: List[Level] = field(default_factory=list)


@dataclass(frozen=True)
class Wall:
    """
    Largest resting order near price relative to the side's average size.
    Defaults mean "no wall".
    """
    price: float = 0.0
    size: float = 0.0
    multiple: float = 0.0
    distance_pct: float = 999.0

    @property
    def exists(self) -> bool:
        return self.multiple > 0


# =============================================================================
# METRICS
# =============================================================================

class Regime(str, Enum):
    ACCUMULATION = "accumulation"
    DISTRIBUTION = "distribution"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class MetricsResult:
    """
    Per-bar order-book metrics.

    `previous` is the prior bar's result with its own `previous` stripped,
    so the chain never grows beyond one hop. `deltas` maps each numeric
    field to (current - previous), empty on the first bar after a gap.
    """
    time: int
    price: float

    # Top of book
    best_bid: float
    best_ask: float
    mid: float
    spread: float
    spread_pct: float
    spread_bps: float

    # Liquidity
    bid_volume: float
    ask_volume: float
    bpr: float
    ld: float
    ld_pct: float
    ld_strength: float
    near_bid_volume: float
    near_ask_volume: float
    far_bid_volume: float
    far_ask_volume: float
    near_delta: float
    far_delta: float
    near_pressure_pct: float
    ask_thin_ratio: float
    bid_thin_ratio: float

    # Fair value
    vwmp: float
    ifv: float
    vs_mid_pct: float
    vs_vwmp_pct: float
    vs_ifv_pct: float

    # Depth (full book)
    bid_depth: float
    ask_depth: float
    depth_imbalance_pct: float

    # Levels / walls (full book)
    price_to_bid_pct: float
    price_to_ask_pct: float
    at_bid_support: bool
    at_ask_resistance: bool
    bid_level_strength: float
    ask_level_strength: float
    level_imbalance_pct: float
    bid_level_gap_bps: float
    ask_level_gap_bps: float
    bid_vacuum: bool
    ask_vacuum: bool
    bid_wall: Wall
    ask_wall: Wall
    bid_wall_proximity: float
    ask_wall_proximity: float
    bid_support_score: float
    ask_resistance_score: float

    # Composite scores
    alpha_mm: float
    alpha_swing: float
    alpha_htf: float
    alpha: float
    mm_bias: float
    swing_bias: float
    htf_bias: float
    mcs: float

    # Regime
    regime: Regime
    regime_score: float
    next_regime_prob: float

    # Bar-over-bar
    ld_momentum: str = "flat"            # rising | falling | flat
    spread_state: str = "normal"         # tight | normal | wide
    spread_direction: str = "stable"     # tightening | stable | widening
    deltas: Dict[str, float] = field(default_factory=dict)
    previous: Optional["MetricsResult"] = field(default=None, repr=False, compare=False)

    @property
    def ifv_div_pct(self) -> float:
        return self.vs_ifv_pct

    @property
    def vwmp_div_pct(self) -> float:
        return self.vs_vwmp_pct

    def delta(self, name: str) -> float:
        return self.deltas.get(name, 0.0)

    def detached(self) -> "MetricsResult":
        """Copy without the previous reference (what `previous` points to)"""
        return replace(self, previous=None)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            if f.name == "previous":
                continue
            value = getattr(self, f.name)
            if isinstance(value, Wall):
                value = asdict(value)
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, dict):
                value = dict(value)
            data[f.name] = value
        data["has_previous"] = self.previous is not None
        return data


def numeric_fields() -> List[str]:
    """MetricsResult fields that get bar-over-bar deltas"""
    return [
        f.name for f in fields(MetricsResult)
        if f.type is float and f.name != "time"
    ]


# =============================================================================
# ENTRY CERTAINTY
# =============================================================================

class EntrySignal(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    WAIT = "WAIT"


@dataclass(frozen=True)
class CertaintyResult:
    """Two independent 0-100 scores and the resulting entry decision."""
    long_certainty: float
    short_certainty: float
    entry_signal: EntrySignal
    long_reasons: List[str] = field(default_factory=list)
    short_reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "long_certainty": self.long_certainty,
            "short_certainty": self.short_certainty,
            "entry_signal": self.entry_signal.value,
            "long_reasons": list(self.long_reasons),
            "short_reasons": list(self.short_reasons),
        }


# =============================================================================
# PULSE
# =============================================================================

class PulseSignal(str, Enum):
    NONE = "NONE"
    BUY = "BUY"
    SELL = "SELL"
    BOTH = "BOTH"


@dataclass(frozen=True)
class PulseEvents:
    """Signal flags for one aligned bar."""
    time: int
    bbb_top: bool = False
    bbb_bottom: bool = False
    pulse_first_up: bool = False
    pulse_first_down: bool = False
    greedy_up: bool = False
    buy_1: bool = False
    buy_2: bool = False
    buy_3: bool = False
    sell_1: bool = False
    sell_2: bool = False

    @property
    def is_buy(self) -> bool:
        return self.buy_1 or self.buy_2 or self.pulse_first_up

    @property
    def is_sell(self) -> bool:
        return self.sell_1 or self.sell_2 or self.pulse_first_down

    @property
    def signal(self) -> PulseSignal:
        if self.is_buy and self.is_sell:
            return PulseSignal.BOTH
        if self.is_buy:
            return PulseSignal.BUY
        if self.is_sell:
            return PulseSignal.SELL
        return PulseSignal.NONE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["signal"] = self.signal.value
        return data


@dataclass
class PulseResult:
    """
    Pulse indicator series.

    All series are aligned to `times`; values before an indicator's warm-up
    are None.
    """
    times: List[int]
    bbw: List[Optional[float]]
    bbw_zema: List[Optional[float]]
    bbw_expansion: List[Optional[float]]
    bbw_contraction: List[Optional[float]]
    pulse: List[Optional[float]]
    bbr: List[Optional[float]]
    bbr_zema: List[Optional[float]]
    bbr_high: List[Optional[float]]
    bbr_low: List[Optional[float]]
    events: List[PulseEvents]
    ready: bool = True

    @property
    def latest(self) -> Optional[PulseEvents]:
        return self.events[-1] if self.events else None

    @property
    def latest_signal(self) -> PulseSignal:
        latest = self.latest
        return latest.signal if latest else PulseSignal.NONE

    def to_dict(self, limit: Optional[int] = None) -> Dict[str, Any]:
        def tail(values):
            return values[-limit:] if limit else values

        return {
            "ready": self.ready,
            "times": tail(self.times),
            "bbw": tail(self.bbw),
            "bbw_zema": tail(self.bbw_zema),
            "bbw_expansion": tail(self.bbw_expansion),
            "bbw_contraction": tail(self.bbw_contraction),
            "pulse": tail(self.pulse),
            "bbr": tail(self.bbr),
            "bbr_zema": tail(self.bbr_zema),
            "bbr_high": tail(self.bbr_high),
            "bbr_low": tail(self.bbr_low),
            "events": [e.to_dict() for e in tail(self.events)],
            "latest_signal": self.latest_signal.value,
        }


# =============================================================================
# DIRECTIONAL ANALYSIS
# =============================================================================

class Bias(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class BandLevel:
    price: float
    volume: float
    distance_pct: float


@dataclass(frozen=True)
class BandImbalance:
    bid_volume: float = 0.0
    ask_volume: float = 0.0
    bid_pct: float = 50.0
    ask_pct: float = 50.0
    ratio: float = 0.0
    direction: Bias = Bias.NEUTRAL


@dataclass(frozen=True)
class BandAnalysis:
    name: str
    inner_pct: float
    outer_pct: float
    support: Optional[BandLevel]
    resistance: Optional[BandLevel]
    imbalance: BandImbalance
    bias: Bias


@dataclass(frozen=True)
class DirectionalResult:
    price: float
    short: BandAnalysis
    medium: BandAnalysis
    long: BandAnalysis
    overall_bias: Bias
    overall_score: float
    confidence: str          # high | medium | low
    upside_target: Optional[BandLevel] = None
    downside_target: Optional[BandLevel] = None

    @property
    def bands(self) -> List[BandAnalysis]:
        return [self.short, self.medium, self.long]

    def to_dict(self) -> Dict[str, Any]:
        def level(lvl):
            return asdict(lvl) if lvl else None

        def band(b: BandAnalysis):
            imb = asdict(b.imbalance)
            imb["direction"] = b.imbalance.direction.value
            return {
                "name": b.name,
                "inner_pct": b.inner_pct,
                "outer_pct": b.outer_pct,
                "support": level(b.support),
                "resistance": level(b.resistance),
                "imbalance": imb,
                "bias": b.bias.value,
            }

        return {
            "price": self.price,
            "short": band(self.short),
            "medium": band(self.medium),
            "long": band(self.long),
            "overall_bias": self.overall_bias.value,
            "overall_score": self.overall_score,
            "confidence": self.confidence,
            "upside_target": level(self.upside_target),
            "downside_target": level(self.downside_target),
        }


# =============================================================================
# READ MODEL
# =============================================================================

@dataclass
class AnalysisSnapshot:
    """
    Everything known about one bar, as one logical snapshot.

    This is what alerts evaluate and what the API serves. It carries no
    aggregator internals.
    """
    symbol: str
    timeframe: str
    bar_id: int
    closed: bool
    open: float
    high: float
    low: float
    close: float
    volume: float
    metrics: Optional[MetricsResult] = None
    certainty: Optional[CertaintyResult] = None
    pulse: Optional[PulseEvents] = None
    pulse_value: Optional[float] = None
    bbr: Optional[float] = None
    direction: Optional[DirectionalResult] = None
    nearest_support_pct: Optional[float] = None
    nearest_resistance_pct: Optional[float] = None

    @property
    def price(self) -> float:
        return self.close

    @property
    def pulse_signal(self) -> PulseSignal:
        return self.pulse.signal if self.pulse else PulseSignal.NONE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "bar_id": self.bar_id,
            "closed": self.closed,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "price": self.price,
            "nearest_support_pct": self.nearest_support_pct,
            "nearest_resistance_pct": self.nearest_resistance_pct,
            "pulse_signal": self.pulse_signal.value,
            "pulse_value": self.pulse_value,
            "bbr": self.bbr,
            "has_book": self.metrics is not None,
        }
        if self.metrics is not None:
            data.update({k: v for k, v in self.metrics.to_dict().items()
                         if k not in ("time", "price")})
        if self.certainty is not None:
            data.update(self.certainty.to_dict())
        data["pulse_events"] = self.pulse.to_dict() if self.pulse else None
        data["direction"] = self.direction.to_dict() if self.direction else None
        return data
