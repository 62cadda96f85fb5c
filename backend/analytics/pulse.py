"""
Pulse Indicator
Bollinger Band Width, BB %B and a normalised width "pulse" with
bar-level buy/sell event detection.

Update: On bar close (needs min_bars history)
Use: Chart events, alert metrics

Every series is aligned to the input bars; warm-up positions are NaN
internally and None in the result.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .models import PulseEvents, PulseResult


@dataclass
class PulseSettings:
    bbw_len: int = 20
    bbw_mult: float = 2.0
    bbw_expansion_len: int = 125
    bbw_contraction_len: int = 125
    bbw_zema_len: int = 7
    bbb_len: int = 20
    bbb_mult: float = 1.5
    bbb_zema_len: int = 2
    pulse_n_len: int = 20
    pulse_top: float = 1.5
    pulse_bottom: float = -0.5
    sell_threshold: float = 1.0
    buy_threshold: float = 0.0
    filter_signals: bool = False
    min_bars: int = 200
    source: str = "open"


NORMALIZE_EPSILON = 1e-10


# =============================================================================
# Building blocks
# =============================================================================

def seeded_ema(series: pd.Series, period: int) -> pd.Series:
    """
    EMA seeded with the SMA of its first `period` valid values.

    Positions before the seed are NaN.
    """
    valid = series.dropna()
    out = pd.Series(np.nan, index=series.index)
    if len(valid) < period:
        return out

    seed_pos = valid.index[period - 1]
    seeded = series.copy()
    seeded.loc[:seed_pos] = np.nan
    seeded.loc[seed_pos] = valid.iloc[:period].mean()
    return seeded.ewm(alpha=2 / (period + 1), adjust=False).mean()


def zero_lag_ema(series: pd.Series, period: int) -> pd.Series:
    """2 * EMA - EMA(EMA)"""
    ema1 = seeded_ema(series, period)
    ema2 = seeded_ema(ema1, period)
    return 2 * ema1 - ema2


def band_width(src: pd.Series, length: int, mult: float) -> pd.Series:
    """Inverted band width in % of basis: -((upper - lower) / basis * 100)"""
    basis = src.rolling(length).mean()
    dev = src.rolling(length).std(ddof=0)
    width = (2 * mult * dev) / basis.replace(0, np.nan) * 100
    return -width


def percent_b(src: pd.Series, length: int, mult: float) -> pd.Series:
    """(x - lower) / (upper - lower), 0.5 when the bands collapse"""
    basis = src.rolling(length).mean()
    dev = src.rolling(length).std(ddof=0)
    lower = basis - mult * dev
    width = 2 * mult * dev
    bbr = (src - lower) / width.replace(0, np.nan)
    return bbr.where(width != 0, 0.5).where(basis.notna())


def normalize(series: pd.Series, period: int, top: float, bottom: float) -> pd.Series:
    """
    Rolling min/max normalisation onto [bottom, top]:
        ((x - min) / range) * (top - bottom) + bottom
    """
    lo = series.rolling(period).min()
    hi = series.rolling(period).max()
    rng = (hi - lo).where(lambda r: r != 0, NORMALIZE_EPSILON)
    return ((series - lo) / rng) * (top - bottom) + bottom


# =============================================================================
# Indicator
# =============================================================================

def _as_list(series: pd.Series) -> List[Optional[float]]:
    return [None if (v is None or math.isnan(v)) else float(v) for v in series.tolist()]


def compute_pulse(
    times: Sequence[int],
    values: Sequence[float],
    settings: Optional[PulseSettings] = None,
) -> PulseResult:
    """
    Run the pulse indicator over a source series.

    Args:
        times: Bar times
        values: Source values (candle open by default), gaps already removed
        settings: Indicator settings

    Returns:
        PulseResult (ready=False and empty series below min_bars)
    """
    s = settings or PulseSettings()
    times = list(times)
    if len(values) < s.min_bars:
        return PulseResult(
            times=[], bbw=[], bbw_zema=[], bbw_expansion=[], bbw_contraction=[],
            pulse=[], bbr=[], bbr_zema=[], bbr_high=[], bbr_low=[], events=[],
            ready=False,
        )

    src = pd.Series(values, dtype=float)

    bbw = band_width(src, s.bbw_len, s.bbw_mult)
    bbw_zema = zero_lag_ema(bbw, s.bbw_zema_len)
    bbw_expansion = bbw.rolling(s.bbw_expansion_len).max()
    bbw_contraction = bbw.rolling(s.bbw_contraction_len).min()

    # Widest bands (window minimum of the inverted width) map to pulse_top
    pulse = normalize(bbw, s.pulse_n_len, s.pulse_bottom, s.pulse_top)

    bbr = percent_b(src, s.bbb_len, s.bbb_mult)
    bbr_zema = zero_lag_ema(bbr, s.bbb_zema_len)
    bbr_high = bbr.rolling(s.bbb_len).max()
    bbr_low = bbr.rolling(s.bbb_len).min()

    events = detect_events(times, bbr.to_numpy(), bbr_high.to_numpy(),
                           bbr_low.to_numpy(), pulse.to_numpy(), s)

    return PulseResult(
        times=times,
        bbw=_as_list(bbw),
        bbw_zema=_as_list(bbw_zema),
        bbw_expansion=_as_list(bbw_expansion),
        bbw_contraction=_as_list(bbw_contraction),
        pulse=_as_list(pulse),
        bbr=_as_list(bbr),
        bbr_zema=_as_list(bbr_zema),
        bbr_high=_as_list(bbr_high),
        bbr_low=_as_list(bbr_low),
        events=events,
        ready=True,
    )


def detect_events(
    times: Sequence[int],
    bbr: np.ndarray,
    bbr_high: np.ndarray,
    bbr_low: np.ndarray,
    pulse: np.ndarray,
    s: PulseSettings,
) -> List[PulseEvents]:
    """
    Per-bar signal flags, starting where the %B period high/low is defined.

    bbb_top / bbb_bottom   %B at its period high / low
    pulse_first_up/down    pulse turns up from ≤ bottom / down from ≥ top
    greedy_up              %B rising two bars and above mid * 1.05
    buy_1 / sell_1         at bottom / at top
    buy_2 / sell_2         leaving the bottom / top
    buy_3                  inside the lowest 10% of the period range
    """
    events: List[PulseEvents] = []
    prev_top = prev_bottom = False

    for i in range(len(bbr)):
        hi, lo, x = bbr_high[i], bbr_low[i], bbr[i]
        if np.isnan(hi) or np.isnan(lo) or np.isnan(x):
            continue

        at_top = bool(x >= hi)
        at_bottom = bool(x <= lo)

        first_up = first_down = False
        if i >= 1 and not np.isnan(pulse[i]) and not np.isnan(pulse[i - 1]):
            first_up = bool(pulse[i] > pulse[i - 1] and pulse[i - 1] <= s.pulse_bottom)
            first_down = bool(pulse[i] < pulse[i - 1] and pulse[i - 1] >= s.pulse_top)

        mid = (hi + lo) / 2
        double_up = (
            i >= 2
            and not np.isnan(bbr[i - 1]) and not np.isnan(bbr[i - 2])
            and x >= bbr[i - 1] >= bbr[i - 2]
        )
        greedy_up = bool(double_up and x > mid * 1.05 and not at_top)

        buy_1 = at_bottom
        buy_2 = prev_bottom and not at_bottom
        buy_3 = bool(x <= lo + (hi - lo) * 0.10) and not at_top and not buy_1 and not buy_2
        sell_1 = at_top
        sell_2 = prev_top and not at_top

        if s.filter_signals:
            buy_ok = bool(x <= s.buy_threshold)
            sell_ok = bool(x >= s.sell_threshold)
            buy_1, buy_2, buy_3 = buy_1 and buy_ok, buy_2 and buy_ok, buy_3 and buy_ok
            sell_1, sell_2 = sell_1 and sell_ok, sell_2 and sell_ok

        events.append(PulseEvents(
            time=times[i],
            bbb_top=at_top,
            bbb_bottom=at_bottom,
            pulse_first_up=first_up,
            pulse_first_down=first_down,
            greedy_up=greedy_up,
            buy_1=buy_1,
            buy_2=buy_2,
            buy_3=buy_3,
            sell_1=sell_1,
            sell_2=sell_2,
        ))
        prev_top, prev_bottom = at_top, at_bottom

    return events
