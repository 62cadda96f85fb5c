"""
Domain Models
The SINGLE SOURCE OF TRUTH for snapshot formats.

After normalization, the system only sees these types.
"""

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Tuple, Dict, Any
from enum import Enum


# =============================================================================
# Data Source
# =============================================================================

class DataSource(str, Enum):
    """Where a snapshot came from, tagged at entry, never changes"""
    API = "api"
    UPLOAD = "upload"
    REPLAY = "replay"


# =============================================================================
# Candle
# =============================================================================

_CANDLE_KEYS = {"o": "open", "h": "high", "l": "low", "c": "close", "v": "volume"}


class Candle(BaseModel):
    """
    OHLCV of a single snapshot.

    Accepts both full names and the compact wire form {o, h, l, c, v}.
    """
    model_config = ConfigDict(allow_inf_nan=False)

    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0.0, ge=0)

    @model_validator(mode='before')
    @classmethod
    def expand_short_keys(cls, data):
        if isinstance(data, dict):
            return {_CANDLE_KEYS.get(k, k): v for k, v in data.items()}
        return data


# =============================================================================
# Book, price/size ladders
# =============================================================================

BookLevel = Tuple[float, float]


def _parse_levels(raw) -> List[BookLevel]:
    levels = []
    for item in raw or []:
        try:
            if isinstance(item, dict):
                price, size = item.get("price"), item.get("size")
            else:
                price, size = item[0], item[1]
            price, size = float(price), float(size)
        except (IndexError, KeyError, TypeError) as exc:
            raise ValueError(f"Malformed book level: {item!r}") from exc
        if math.isfinite(price) and math.isfinite(size) and price > 0 and size > 0:
            levels.append((price, size))
    return levels


class Book(BaseModel):
    """
    Order book at snapshot time.

    bids: descending by price
    asks: ascending by price
    """
    bids: List[BookLevel] = Field(default_factory=list)
    asks: List[BookLevel] = Field(default_factory=list)

    @field_validator('bids', mode='before')
    @classmethod
    def sort_bids(cls, v):
        return sorted(_parse_levels(v), key=lambda lvl: lvl[0], reverse=True)

    @field_validator('asks', mode='before')
    @classmethod
    def sort_asks(cls, v):
        return sorted(_parse_levels(v), key=lambda lvl: lvl[0])

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0][0] if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0][0] if self.asks else None

    @property
    def is_usable(self) -> bool:
        """Both sides present; needed for mid, spread and every ratio"""
        return bool(self.bids) and bool(self.asks)


# =============================================================================
# Snapshot, The Core Data Contract
# =============================================================================

class Snapshot(BaseModel):
    """
    One periodic order-book + candle sample.

    This is THE internal representation. Every input converts to this.
    The aggregator never sees NDJSON lines or request bodies.

    Fields:
        time: Unix seconds (milliseconds are accepted and scaled)
        candle: OHLCV
        book: Order book, None when unavailable
        source: Where it came from
    """
    time: int
    candle: Candle
    book: Optional[Book] = None
    source: DataSource = DataSource.API

    @field_validator('time', mode='before')
    @classmethod
    def parse_time(cls, v):
        """Handle seconds and milliseconds"""
        if isinstance(v, str):
            v = float(v)
        if isinstance(v, float):
            v = int(v)
        if isinstance(v, int) and v > 1e12:
            return v // 1000
        return v


# =============================================================================
# AggregatedBar, Snapshots merged into one timeframe bucket
# =============================================================================

class AggregatedBar(BaseModel):
    """
    A timeframe bar built from one or more snapshots.

    OHLC follows the usual rule (first open, max high, min low, last close,
    summed volume). The book is the LAST contributing snapshot's book; books
    are never merged.
    """
    time: int  # Bucket start, unix seconds
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    book: Optional[Book] = None
    snapshot_count: int = 1

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, bucket_time: int) -> "AggregatedBar":
        c = snapshot.candle
        return cls(
            time=bucket_time,
            open=c.open,
            high=c.high,
            low=c.low,
            close=c.close,
            volume=c.volume,
            book=snapshot.book,
            snapshot_count=1,
        )

    def update(self, snapshot: Snapshot) -> None:
        """Merge a later snapshot of the same bucket (mutates in place)"""
        c = snapshot.candle
        self.high = max(self.high, c.high)
        self.low = min(self.low, c.low)
        self.close = c.close
        self.volume += c.volume
        self.book = snapshot.book
        self.snapshot_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "snapshot_count": self.snapshot_count,
            "has_book": self.book is not None and self.book.is_usable,
        }


# =============================================================================
# API Response Models
# =============================================================================

class IngestionResult(BaseModel):
    """Result of snapshot ingestion"""
    success: bool = True
    count: int = 0
    errors: int = 0
    duplicates: int = 0
    bars_closed: int = 0
    message: str = ""


# =============================================================================
# Converters
# =============================================================================

def to_snapshot(data: Dict[str, Any], source: DataSource = DataSource.API) -> Snapshot:
    """
    Convert a raw record (NDJSON line, request body) to a Snapshot.

    Accepts {time|ts|t, candle|ohlc, book|orderbook}. Raises
    pydantic.ValidationError / KeyError for malformed input.
    """
    time = data.get("time", data.get("ts", data.get("t")))
    if time is None:
        raise KeyError("time")
    candle = data.get("candle", data.get("ohlc"))
    if candle is None:
        raise KeyError("candle")
    book = data.get("book", data.get("orderbook"))
    return Snapshot(time=time, candle=candle, book=book, source=source)
