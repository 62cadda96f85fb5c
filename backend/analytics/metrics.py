"""
Metrics Engine
Per-bar order-book metrics: liquidity, fair value, depth, walls, alpha, regime.

Update: Every closed bar (and the forming bar, throttled)
Use: Certainty scoring, alerts, read model

All functions are PURE. Every ratio guards its denominator and falls back
to a neutral value (0 for imbalances, 1 or 10 for BPR, mid for fair values).
"""

import math
from typing import Dict, List, Optional

import numpy as np

from core.config import AnalysisSettings, AlphaMode
from core.models import Book

from .levels import process_levels
from .models import Level, LevelSet, MetricsResult, Regime, Wall, numeric_fields


NEAR_THRESHOLD = 0.01          # fraction of price
WALL_SEARCH_RANGE = 0.005      # fraction of price
WALL_MIN_MULTIPLE = 1.8
WALL_AVG_DEPTH = 20            # top levels used for the side's average size
LEVEL_STRENGTH_DEPTH = 5
VACUUM_GAP_BPS = 5.0
AT_LEVEL_PCT = 0.02

ALPHA_K_MM = 0.8
ALPHA_K_SWING = 0.6
ALPHA_K_HTF = 0.5


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _volume(levels: List[Level]) -> float:
    if not levels:
        return 0.0
    return float(np.sum([lvl.volume for lvl in levels]))


def _notional(levels: List[Level]) -> float:
    if not levels:
        return 0.0
    prices = np.array([lvl.price for lvl in levels])
    sizes = np.array([lvl.volume for lvl in levels])
    return float(np.sum(prices * sizes))


def _pct_diff(a: float, b: float) -> float:
    """(a - b) / b * 100, 0 when b is 0"""
    return (a - b) / b * 100 if b else 0.0


def _imbalance_pct(a: float, b: float) -> float:
    total = a + b
    return (a - b) / total * 100 if total > 0 else 0.0


# =============================================================================
# Alpha sensitivity
# =============================================================================

def slider_to_multiplier(value: float) -> float:
    """
    Map a 0-100 sensitivity control to a multiplier.

    0..50   → 0.001..1 along a cubic (fine control near zero)
    50..100 → 1..2 linearly
    """
    value = clamp(value, 0, 100)
    if value <= 50:
        return 0.001 + (1 - 0.001) * (value / 50) ** 3
    return 1 + (value - 50) / 50


def alpha_score(signal: float, sensitivity: float, k: float) -> float:
    return clamp(50 + signal * slider_to_multiplier(sensitivity) * k, 0, 100)


# =============================================================================
# Walls
# =============================================================================

def detect_wall(levels: List[Level], price: float, side: str) -> Wall:
    """
    Strongest level within 0.5% of price that is ≥1.8x the side's average
    size over its top 20 levels. Returns an empty Wall when none qualifies.
    """
    top = [lvl.volume for lvl in levels[:WALL_AVG_DEPTH]]
    avg = float(np.mean(top)) if top else 1.0
    if avg <= 0:
        return Wall()

    best = Wall()
    for lvl in levels:
        if side == "bid":
            dist = (price - lvl.price) / price
        else:
            dist = (lvl.price - price) / price
        if 0 < dist < WALL_SEARCH_RANGE:
            multiple = lvl.volume / avg
            if multiple > best.multiple and multiple >= WALL_MIN_MULTIPLE:
                best = Wall(price=lvl.price, size=lvl.volume, multiple=multiple,
                            distance_pct=dist * 100)
    return best


def wall_proximity(wall: Wall) -> float:
    """
    0-100, higher = price closer to a stronger wall.

    < 0.3%:  100 - dist/0.3*50, plus up to 30 for wall strength (cap 100)
    < 0.5%:  50 - (dist-0.3)/0.2*30
    """
    if wall.multiple < WALL_MIN_MULTIPLE:
        return 0
    dist = wall.distance_pct
    if dist < 0.3:
        score = round_half_up(100 - dist / 0.3 * 50)
        score += min(30, round_half_up((wall.multiple - WALL_MIN_MULTIPLE) * 15))
        return min(100, score)
    if dist < 0.5:
        return round_half_up(50 - (dist - 0.3) / 0.2 * 30)
    return 0


def _level_score(proximity: float, price_to_level_pct: float, imbalance: float,
                 spread_pct: float, vacuum: bool) -> float:
    score = round_half_up(proximity * 0.5)

    if price_to_level_pct < 0.05:
        score += 20
    elif price_to_level_pct < 0.1:
        score += 10

    if imbalance > 30:
        score += 15
    elif imbalance > 15:
        score += 8

    if spread_pct < 0.02:
        score += 15
    elif spread_pct < 0.05:
        score += 8

    if vacuum:
        score -= 10
    return clamp(score, 0, 100)


# =============================================================================
# Metrics
# =============================================================================

def _classify_regime(ld_pct: float) -> Regime:
    if ld_pct > 5:
        return Regime.ACCUMULATION
    if ld_pct < -5:
        return Regime.DISTRIBUTION
    return Regime.NEUTRAL


def _next_regime_prob(near_bid, near_ask, far_bid, far_ask, bpr, vs_vwmp_pct, spread_pct) -> float:
    near_total = near_bid + near_ask
    far_total = far_bid + far_ask
    near_far = 0.0
    if near_total > 0 and far_total > 0:
        near_far = (near_bid - near_ask) / near_total - (far_bid - far_ask) / far_total

    momentum = near_far * 25
    bpr_signal = clamp((bpr - 1) * 20, -20, 20)
    fair_value_signal = -vs_vwmp_pct * 5
    spread_signal = 5 if spread_pct < 0.05 else -5 if spread_pct > 0.2 else 0
    return clamp(50 + momentum + bpr_signal + fair_value_signal + spread_signal, 0, 100)


def compute_metrics(
    time: int,
    price: float,
    book: Optional[Book],
    settings: AnalysisSettings,
    previous: Optional[MetricsResult] = None,
) -> Optional[MetricsResult]:
    """
    Compute every metric for one bar.

    Args:
        time: Bar time
        price: Reference price (bar close)
        book: Raw book, None when unavailable
        settings: Analysis settings
        previous: Prior bar's result (for deltas), None after a gap

    Returns:
        MetricsResult, or None when the book is missing/one-sided
    """
    if book is None or not book.is_usable or not math.isfinite(price) or price <= 0:
        return None

    levels = process_levels(book, price, settings)
    values = _compute_values(levels, book, settings)
    values["time"] = time
    values["price"] = price

    deltas: Dict[str, float] = {}
    ld_momentum = "flat"
    spread_direction = "stable"
    if previous is not None:
        for name in numeric_fields():
            deltas[name] = values[name] - getattr(previous, name)
        if deltas["ld_pct"] > 2:
            ld_momentum = "rising"
        elif deltas["ld_pct"] < -2:
            ld_momentum = "falling"
        if deltas["spread_pct"] < -0.001:
            spread_direction = "tightening"
        elif deltas["spread_pct"] > 0.001:
            spread_direction = "widening"

    spread_pct = values["spread_pct"]
    spread_state = "tight" if spread_pct < 0.02 else "wide" if spread_pct > 0.08 else "normal"

    return MetricsResult(
        **values,
        ld_momentum=ld_momentum,
        spread_state=spread_state,
        spread_direction=spread_direction,
        deltas=deltas,
        previous=previous.detached() if previous is not None else None,
    )


def _compute_values(levels: LevelSet, book: Book, settings: AnalysisSettings) -> dict:
    price = levels.price
    best_bid = book.best_bid
    best_ask = book.best_ask
    mid = (best_bid + best_ask) / 2
    spread = best_ask - best_bid
    spread_pct = spread / mid * 100 if mid > 0 else 0.0

    # -------------------------------------------------------------------------
    # Liquidity (ld view)
    # -------------------------------------------------------------------------
    bid_volume = _volume(levels.ld_bids)
    ask_volume = _volume(levels.ld_asks)
    if ask_volume > 0:
        bpr = bid_volume / ask_volume
    else:
        bpr = 10.0 if bid_volume > 0 else 1.0
    ld = bid_volume - ask_volume
    ld_pct = _imbalance_pct(bid_volume, ask_volume)

    near = price * NEAR_THRESHOLD
    near_bid = _volume([lvl for lvl in levels.ld_bids if abs(lvl.price - price) <= near])
    near_ask = _volume([lvl for lvl in levels.ld_asks if abs(lvl.price - price) <= near])
    far_bid = bid_volume - near_bid
    far_ask = ask_volume - near_ask
    near_total = near_bid + near_ask
    near_pressure_pct = _imbalance_pct(near_bid, near_ask)

    # -------------------------------------------------------------------------
    # Fair value (fair-value window of the raw book)
    # -------------------------------------------------------------------------
    fv_bid_vol = _volume(levels.fair_value_bids)
    fv_ask_vol = _volume(levels.fair_value_asks)
    fv_bid_notional = _notional(levels.fair_value_bids)
    fv_ask_notional = _notional(levels.fair_value_asks)
    fv_total = fv_bid_vol + fv_ask_vol
    vwmp = (fv_bid_notional + fv_ask_notional) / fv_total if fv_total > 0 else mid
    bid_avg = fv_bid_notional / fv_bid_vol if fv_bid_vol > 0 else price
    ask_avg = fv_ask_notional / fv_ask_vol if fv_ask_vol > 0 else price
    ifv = (bid_avg * fv_bid_vol + ask_avg * fv_ask_vol) / fv_total if fv_total > 0 else mid

    vs_mid_pct = _pct_diff(price, mid)
    vs_vwmp_pct = _pct_diff(price, vwmp)
    vs_ifv_pct = _pct_diff(price, ifv)

    # -------------------------------------------------------------------------
    # Depth / levels / walls (full book)
    # -------------------------------------------------------------------------
    bid_depth = _volume(levels.full_bids)
    ask_depth = _volume(levels.full_asks)
    depth_imbalance_pct = _imbalance_pct(bid_depth, ask_depth)

    price_to_bid_pct = (price - best_bid) / price * 100
    price_to_ask_pct = (best_ask - price) / price * 100

    bid_strength = _volume(levels.full_bids[:LEVEL_STRENGTH_DEPTH])
    ask_strength = _volume(levels.full_asks[:LEVEL_STRENGTH_DEPTH])
    level_imbalance_pct = _imbalance_pct(bid_strength, ask_strength)

    bids, asks = levels.full_bids, levels.full_asks
    bid_gap = (bids[0].price - bids[1].price) / bids[0].price * 10000 if len(bids) >= 2 else 0.0
    ask_gap = (asks[1].price - asks[0].price) / asks[0].price * 10000 if len(asks) >= 2 else 0.0
    bid_vacuum = bid_gap > VACUUM_GAP_BPS
    ask_vacuum = ask_gap > VACUUM_GAP_BPS

    bid_wall = detect_wall(bids, price, "bid")
    ask_wall = detect_wall(asks, price, "ask")
    bid_prox = wall_proximity(bid_wall)
    ask_prox = wall_proximity(ask_wall)

    # -------------------------------------------------------------------------
    # Composite scores
    # -------------------------------------------------------------------------
    alpha_mm = alpha_score(near_pressure_pct, settings.alpha_sensitivity_mm, ALPHA_K_MM)
    alpha_swing = alpha_score(ld_pct, settings.alpha_sensitivity_swing, ALPHA_K_SWING)
    alpha_htf = alpha_score(depth_imbalance_pct, settings.alpha_sensitivity_htf, ALPHA_K_HTF)
    alpha = {
        AlphaMode.MARKET_MAKER: alpha_mm,
        AlphaMode.SWING: alpha_swing,
        AlphaMode.HTF: alpha_htf,
    }[settings.alpha_mode]

    mm_bias = -vs_vwmp_pct * 10
    swing_bias = ld_pct * 0.5
    htf_bias = -vs_ifv_pct * 5

    return {
        "best_bid": best_bid,
        "best_ask": best_ask,
        "mid": mid,
        "spread": spread,
        "spread_pct": spread_pct,
        "spread_bps": spread_pct * 100,
        "bid_volume": bid_volume,
        "ask_volume": ask_volume,
        "bpr": bpr,
        "ld": ld,
        "ld_pct": ld_pct,
        "ld_strength": abs(ld_pct),
        "near_bid_volume": near_bid,
        "near_ask_volume": near_ask,
        "far_bid_volume": far_bid,
        "far_ask_volume": far_ask,
        "near_delta": near_bid - near_ask,
        "far_delta": far_bid - far_ask,
        "near_pressure_pct": near_pressure_pct,
        "ask_thin_ratio": near_ask / near_total if near_total > 0 else 0.5,
        "bid_thin_ratio": near_bid / near_total if near_total > 0 else 0.5,
        "vwmp": vwmp,
        "ifv": ifv,
        "vs_mid_pct": vs_mid_pct,
        "vs_vwmp_pct": vs_vwmp_pct,
        "vs_ifv_pct": vs_ifv_pct,
        "bid_depth": bid_depth,
        "ask_depth": ask_depth,
        "depth_imbalance_pct": depth_imbalance_pct,
        "price_to_bid_pct": price_to_bid_pct,
        "price_to_ask_pct": price_to_ask_pct,
        "at_bid_support": price_to_bid_pct < AT_LEVEL_PCT,
        "at_ask_resistance": price_to_ask_pct < AT_LEVEL_PCT,
        "bid_level_strength": bid_strength,
        "ask_level_strength": ask_strength,
        "level_imbalance_pct": level_imbalance_pct,
        "bid_level_gap_bps": bid_gap,
        "ask_level_gap_bps": ask_gap,
        "bid_vacuum": bid_vacuum,
        "ask_vacuum": ask_vacuum,
        "bid_wall": bid_wall,
        "ask_wall": ask_wall,
        "bid_wall_proximity": float(bid_prox),
        "ask_wall_proximity": float(ask_prox),
        "bid_support_score": float(_level_score(
            bid_prox, price_to_bid_pct, level_imbalance_pct, spread_pct, bid_vacuum)),
        "ask_resistance_score": float(_level_score(
            ask_prox, price_to_ask_pct, -level_imbalance_pct, spread_pct, ask_vacuum)),
        "alpha_mm": alpha_mm,
        "alpha_swing": alpha_swing,
        "alpha_htf": alpha_htf,
        "alpha": alpha,
        "mm_bias": mm_bias,
        "swing_bias": swing_bias,
        "htf_bias": htf_bias,
        "mcs": (mm_bias + swing_bias + htf_bias) / 3,
        "regime": _classify_regime(ld_pct),
        "regime_score": ld_pct,
        "next_regime_prob": _next_regime_prob(
            near_bid, near_ask, far_bid, far_ask, bpr, vs_vwmp_pct, spread_pct),
    }
