"""
Directional Analysis
Short / medium / long horizon read of the book from exclusive distance bands.

Bands are half-open in distance-% from price, so every level belongs to
at most one band:
    short   [0, 5)
    medium  [5, 15)
    long    [15, 30)

Bids are support, asks are resistance.
"""

from typing import List, Optional, Tuple

from .models import (
    BandAnalysis,
    BandImbalance,
    BandLevel,
    Bias,
    DirectionalResult,
    Level,
)


BANDS: List[Tuple[str, float, float]] = [
    ("short", 0.0, 5.0),
    ("medium", 5.0, 15.0),
    ("long", 15.0, 30.0),
]
BAND_WEIGHTS = {"short": 40, "medium": 35, "long": 25}

IMBALANCE_DIRECTION_THRESHOLD = 10
BAND_BIAS_THRESHOLD = 15
OVERALL_BIAS_THRESHOLD = 20


def _distance_pct(level: Level, price: float) -> float:
    if level.side == "bid":
        return (price - level.price) / price * 100
    return (level.price - price) / price * 100


def _in_band(level: Level, price: float, inner: float, outer: float) -> bool:
    dist = _distance_pct(level, price)
    return inner <= dist < outer


def _strongest(levels: List[Level], price: float) -> Optional[BandLevel]:
    if not levels:
        return None
    top = max(levels, key=lambda lvl: lvl.volume)
    return BandLevel(price=top.price, volume=top.volume,
                     distance_pct=abs(_distance_pct(top, price)))


def band_imbalance(bid_volume: float, ask_volume: float) -> BandImbalance:
    total = bid_volume + ask_volume
    if total <= 0:
        return BandImbalance()

    ratio = (bid_volume - ask_volume) / total * 100
    if ratio > IMBALANCE_DIRECTION_THRESHOLD:
        direction = Bias.BULLISH
    elif ratio < -IMBALANCE_DIRECTION_THRESHOLD:
        direction = Bias.BEARISH
    else:
        direction = Bias.NEUTRAL

    return BandImbalance(
        bid_volume=bid_volume,
        ask_volume=ask_volume,
        bid_pct=bid_volume / total * 100,
        ask_pct=ask_volume / total * 100,
        ratio=ratio,
        direction=direction,
    )


def analyze_band(name: str, inner: float, outer: float,
                 bids: List[Level], asks: List[Level], price: float) -> BandAnalysis:
    band_bids = [lvl for lvl in bids if _in_band(lvl, price, inner, outer)]
    band_asks = [lvl for lvl in asks if _in_band(lvl, price, inner, outer)]

    imbalance = band_imbalance(
        sum(lvl.volume for lvl in band_bids),
        sum(lvl.volume for lvl in band_asks),
    )
    if imbalance.ratio > BAND_BIAS_THRESHOLD:
        bias = Bias.BULLISH
    elif imbalance.ratio < -BAND_BIAS_THRESHOLD:
        bias = Bias.BEARISH
    else:
        bias = Bias.NEUTRAL

    return BandAnalysis(
        name=name,
        inner_pct=inner,
        outer_pct=outer,
        support=_strongest(band_bids, price),
        resistance=_strongest(band_asks, price),
        imbalance=imbalance,
        bias=bias,
    )


def overall_bias(bands: List[BandAnalysis]) -> Tuple[Bias, float]:
    score = 0.0
    for band in bands:
        weight = BAND_WEIGHTS[band.name]
        if band.bias == Bias.BULLISH:
            score += weight
        elif band.bias == Bias.BEARISH:
            score -= weight

    if score > OVERALL_BIAS_THRESHOLD:
        return Bias.BULLISH, score
    if score < -OVERALL_BIAS_THRESHOLD:
        return Bias.BEARISH, score
    return Bias.NEUTRAL, score


def confidence(bands: List[BandAnalysis]) -> str:
    """high = all three agree, medium = two agree, low = mixed"""
    bullish = sum(1 for b in bands if b.bias == Bias.BULLISH)
    bearish = sum(1 for b in bands if b.bias == Bias.BEARISH)
    if bullish == 3 or bearish == 3:
        return "high"
    if bullish >= 2 or bearish >= 2:
        return "medium"
    return "low"


def analyze_direction(bids: List[Level], asks: List[Level], price: float) -> Optional[DirectionalResult]:
    """
    Run all three bands and combine them.

    Returns None when there is no price or no levels at all.
    """
    if price <= 0 or not (bids or asks):
        return None

    short, medium, long = [
        analyze_band(name, inner, outer, bids, asks, price)
        for name, inner, outer in BANDS
    ]
    bias, score = overall_bias([short, medium, long])

    return DirectionalResult(
        price=price,
        short=short,
        medium=medium,
        long=long,
        overall_bias=bias,
        overall_score=score,
        confidence=confidence([short, medium, long]),
        upside_target=medium.resistance or long.resistance,
        downside_target=medium.support or long.support,
    )
