"""
Level Processing
Turns one raw book into the level views metrics read from.

Views:
    clustered   price-range filter → bucket to price * cluster_pct → min_volume → max_levels
    ld          clustered subset feeding BPR / LD (ld_mode)
    fair_value  raw levels inside fair_value_range_pct
    full        the whole raw book

Pure functions: book + settings in, LevelSet out.
"""

import math
from typing import Dict, List, Sequence, Tuple

from core.config import AnalysisSettings, LDMode
from core.models import Book

from .models import Level, LevelSet


BookSide = Sequence[Tuple[float, float]]


def _to_levels(raw: BookSide, side: str) -> List[Level]:
    return [Level(price=p, volume=s, side=side) for p, s in raw]


def filter_bids(raw: BookSide, price: float, range_pct: float) -> List[Tuple[float, float]]:
    """Bids inside (price * (1 - range), price]"""
    lower = price * (1 - range_pct / 100)
    return [(p, s) for p, s in raw if lower < p <= price]


def filter_asks(raw: BookSide, price: float, range_pct: float) -> List[Tuple[float, float]]:
    """Asks inside [price, price * (1 + range))"""
    upper = price * (1 + range_pct / 100)
    return [(p, s) for p, s in raw if price <= p < upper]


def cluster(raw: BookSide, side: str, bucket_size: float) -> List[Level]:
    """
    Merge raw levels into buckets of `bucket_size`.

    bucket = floor(price / bucket_size + 0.5) * bucket_size
    Volumes and raw-level counts are summed per bucket.
    """
    buckets: Dict[float, Level] = {}
    for p, s in raw:
        key = math.floor(p / bucket_size + 0.5) * bucket_size
        lvl = buckets.get(key)
        if lvl is None:
            buckets[key] = Level(price=key, volume=s, side=side, count=1)
        else:
            lvl.volume += s
            lvl.count += 1
    return list(buckets.values())


def _nearest(levels: List[Level], price: float, limit: int) -> List[Level]:
    return sorted(levels, key=lambda lvl: abs(lvl.price - price))[:limit]


def process_levels(book: Book, price: float, settings: AnalysisSettings) -> LevelSet:
    """
    Build every level view for one bar.

    Args:
        book: Raw book (bids desc, asks asc)
        price: Reference price (bar close)
        settings: Clustering / range configuration

    Returns:
        LevelSet
    """
    bucket_size = price * settings.cluster_pct

    in_range_bids = filter_bids(book.bids, price, settings.price_range_pct)
    in_range_asks = filter_asks(book.asks, price, settings.price_range_pct)

    bids = [lvl for lvl in cluster(in_range_bids, "bid", bucket_size)
            if lvl.volume >= settings.min_volume]
    asks = [lvl for lvl in cluster(in_range_asks, "ask", bucket_size)
            if lvl.volume >= settings.min_volume]

    bids = sorted(_nearest(bids, price, settings.max_levels), key=lambda lvl: -lvl.price)
    asks = sorted(_nearest(asks, price, settings.max_levels), key=lambda lvl: lvl.price)

    ld_bids, ld_asks = bids, asks
    if settings.ld_mode == LDMode.SIGNAL:
        lower = price * (1 - settings.ld_range_pct / 100)
        upper = price * (1 + settings.ld_range_pct / 100)
        windowed_bids = [lvl for lvl in bids if lvl.price >= lower]
        windowed_asks = [lvl for lvl in asks if lvl.price <= upper]
        # Empty window falls back to the broader view
        if windowed_bids or windowed_asks:
            ld_bids, ld_asks = windowed_bids, windowed_asks

    fv_bids = _to_levels(filter_bids(book.bids, price, settings.fair_value_range_pct), "bid")
    fv_asks = _to_levels(filter_asks(book.asks, price, settings.fair_value_range_pct), "ask")

    return LevelSet(
        price=price,
        clustered_bids=bids,
        clustered_asks=asks,
        ld_bids=ld_bids,
        ld_asks=ld_asks,
        fair_value_bids=fv_bids,
        fair_value_asks=fv_asks,
        full_bids=_to_levels(book.bids, "bid"),
        full_asks=_to_levels(book.asks, "ask"),
    )


def cluster_book(book: Book, price: float, cluster_pct: float):
    """Whole book bucketed to price * cluster_pct: (bids desc, asks asc)"""
    bucket_size = price * cluster_pct
    bids = sorted(cluster(book.bids, "bid", bucket_size), key=lambda lvl: -lvl.price)
    asks = sorted(cluster(book.asks, "ask", bucket_size), key=lambda lvl: lvl.price)
    return bids, asks
