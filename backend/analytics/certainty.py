"""
Entry Certainty
Two independent 0-100 scores (LONG, SHORT) built from point awards.

Each component adds points when its condition holds; the entry decision
needs one side to dominate (≥80) while the other stays low (<30).
The tiers below are tunable policy, not derived quantities.
"""

from typing import List, Sequence, Tuple

from .models import CertaintyResult, EntrySignal, MetricsResult


ENTRY_THRESHOLD = 80
OPPOSITE_CEILING = 30
SPREAD_BONUS = 8
SPREAD_PENALTY = 5

# (threshold, points), checked in order, first match wins
WALL_TIERS = [(80, 40), (60, 30), (40, 20), (20, 10)]
LEVEL_SCORE_TIERS = [(70, 20), (50, 15), (30, 8)]
LEVEL_IMBALANCE_TIERS = [(30, 12), (15, 6)]
VACUUM_POINTS = 10
NEAR_PRESSURE_TIERS = [(40, 15), (25, 10), (10, 5)]
DEPTH_TIERS = [(40, 15), (25, 10), (10, 5)]
BPR_LONG_TIERS = [(2.0, 12), (1.5, 8), (1.2, 4)]
BPR_SHORT_TIERS = [(0.5, 12), (0.67, 8), (0.83, 4)]
LD_TIERS = [(40, 12), (25, 8), (10, 4)]
DIVERGENCE_TIERS = [(0.02, 8), (0.01, 4)]
LD_MOMENTUM_POINTS = 8
LD_DRIFT_POINTS = 4
LD_DRIFT = 1.0


def _at_least(value: float, tiers: Sequence[Tuple[float, int]]) -> int:
    for threshold, points in tiers:
        if value >= threshold:
            return points
    return 0


def _above(value: float, tiers: Sequence[Tuple[float, int]]) -> int:
    for threshold, points in tiers:
        if value > threshold:
            return points
    return 0


def _below(value: float, tiers: Sequence[Tuple[float, int]]) -> int:
    for threshold, points in tiers:
        if value < threshold:
            return points
    return 0


class _Tally:
    def __init__(self):
        self.score = 0
        self.reasons: List[str] = []

    def add(self, points: int, reason: str) -> None:
        if points:
            self.score += points
            self.reasons.append(f"{reason} +{points}")


def score_entry(m: MetricsResult) -> CertaintyResult:
    """
    Score LONG/SHORT certainty for one bar.

    Pure function of the current result (bar-over-bar inputs come through
    its deltas and momentum fields).
    """
    long, short = _Tally(), _Tally()

    # Walls
    long.add(_at_least(m.bid_wall_proximity, WALL_TIERS), "bid wall")
    short.add(_at_least(m.ask_wall_proximity, WALL_TIERS), "ask wall")

    # Levels
    long.add(_at_least(m.bid_support_score, LEVEL_SCORE_TIERS), "bid support")
    short.add(_at_least(m.ask_resistance_score, LEVEL_SCORE_TIERS), "ask resistance")
    long.add(_above(m.level_imbalance_pct, LEVEL_IMBALANCE_TIERS), "level imbalance")
    short.add(_above(-m.level_imbalance_pct, LEVEL_IMBALANCE_TIERS), "level imbalance")
    if m.ask_vacuum and not m.bid_vacuum:
        long.add(VACUUM_POINTS, "ask vacuum")
    if m.bid_vacuum and not m.ask_vacuum:
        short.add(VACUUM_POINTS, "bid vacuum")

    # Flow
    long.add(_above(m.near_pressure_pct, NEAR_PRESSURE_TIERS), "near pressure")
    short.add(_above(-m.near_pressure_pct, NEAR_PRESSURE_TIERS), "near pressure")
    long.add(_above(m.depth_imbalance_pct, DEPTH_TIERS), "depth imbalance")
    short.add(_above(-m.depth_imbalance_pct, DEPTH_TIERS), "depth imbalance")
    long.add(_above(m.bpr, BPR_LONG_TIERS), "bpr")
    short.add(_below(m.bpr, BPR_SHORT_TIERS), "bpr")
    long.add(_above(m.ld_pct, LD_TIERS), "ld%")
    short.add(_above(-m.ld_pct, LD_TIERS), "ld%")

    # Fair value divergence (below fair value favours LONG)
    long.add(_above(-m.ifv_div_pct, DIVERGENCE_TIERS), "below ifv")
    short.add(_above(m.ifv_div_pct, DIVERGENCE_TIERS), "above ifv")
    long.add(_above(-m.vwmp_div_pct, DIVERGENCE_TIERS), "below vwmp")
    short.add(_above(m.vwmp_div_pct, DIVERGENCE_TIERS), "above vwmp")

    # LD momentum
    ld_change = m.delta("ld_pct")
    if m.ld_momentum == "rising":
        long.add(LD_MOMENTUM_POINTS, "ld rising")
    elif ld_change > LD_DRIFT:
        long.add(LD_DRIFT_POINTS, "ld drifting up")
    if m.ld_momentum == "falling":
        short.add(LD_MOMENTUM_POINTS, "ld falling")
    elif ld_change < -LD_DRIFT:
        short.add(LD_DRIFT_POINTS, "ld drifting down")

    # Spread
    if m.spread_state == "tight" or m.spread_direction == "tightening":
        if long.score > short.score:
            long.add(SPREAD_BONUS, "tight spread")
        elif short.score > long.score:
            short.add(SPREAD_BONUS, "tight spread")
    if m.spread_state == "wide" or m.spread_direction == "widening":
        long.score = max(0, long.score - SPREAD_PENALTY)
        short.score = max(0, short.score - SPREAD_PENALTY)

    long_score = min(100, long.score)
    short_score = min(100, short.score)

    return CertaintyResult(
        long_certainty=long_score,
        short_certainty=short_score,
        entry_signal=decide_entry(long_score, short_score),
        long_reasons=long.reasons,
        short_reasons=short.reasons,
    )


def decide_entry(long_score: float, short_score: float) -> EntrySignal:
    if long_score >= ENTRY_THRESHOLD and short_score < OPPOSITE_CEILING:
        return EntrySignal.LONG
    if short_score >= ENTRY_THRESHOLD and long_score < OPPOSITE_CEILING:
        return EntrySignal.SHORT
    return EntrySignal.WAIT
