"""
Tests for the pulse indicator.
"""

import math

import numpy as np
import pandas as pd
import pytest

from analytics.models import PulseEvents, PulseSignal
from analytics.pulse import (
    PulseSettings,
    compute_pulse,
    detect_events,
    normalize,
    percent_b,
    seeded_ema,
)

from conftest import T0


def create_wave(count: int):
    """Helper to create (times, values) of a smooth oscillating series"""
    times = [T0 + i * 60 for i in range(count)]
    values = [100 + 5 * math.sin(i / 7) + 0.01 * i for i in range(count)]
    return times, values


class TestBuildingBlocks:
    """Tests for EMA, %B and normalisation"""

    def test_seeded_ema_starts_at_sma(self):
        ema = seeded_ema(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0]), 3)

        assert np.isnan(ema.iloc[0])
        assert np.isnan(ema.iloc[1])
        assert ema.iloc[2] == pytest.approx(2.0)
        assert ema.iloc[3] == pytest.approx(3.0)

    def test_seeded_ema_short_series_is_empty(self):
        assert seeded_ema(pd.Series([1.0, 2.0]), 3).isna().all()

    def test_percent_b_flat_series(self):
        bbr = percent_b(pd.Series([100.0] * 30), 20, 2.0)
        assert bbr.iloc[:19].isna().all()
        assert (bbr.iloc[19:] == 0.5).all()

    def test_normalize_maps_window_max_to_top(self):
        out = normalize(pd.Series([1.0, 2.0, 3.0, 2.0]), 3, top=1.0, bottom=0.0)
        assert out.iloc[2] == pytest.approx(1.0)
        assert out.iloc[3] == pytest.approx(0.0)


class TestComputePulse:
    """Tests for the full indicator"""

    def test_not_ready_below_min_bars(self):
        times, values = create_wave(100)
        result = compute_pulse(times, values, PulseSettings(min_bars=200))

        assert not result.ready
        assert result.events == []
        assert result.latest_signal == PulseSignal.NONE

    def test_series_aligned_to_input(self):
        times, values = create_wave(250)
        result = compute_pulse(times, values)

        assert result.ready
        for series in (result.bbw, result.pulse, result.bbr, result.bbr_high, result.bbw_zema):
            assert len(series) == 250
        assert result.bbw[18] is None
        assert result.bbw[19] is not None

    def test_pulse_within_bounds(self):
        times, values = create_wave(250)
        s = PulseSettings()
        result = compute_pulse(times, values, s)

        defined = [p for p in result.pulse if p is not None]
        assert defined
        assert all(s.pulse_bottom - 1e-9 <= p <= s.pulse_top + 1e-9 for p in defined)

    def test_events_start_after_warm_up(self):
        times, values = create_wave(250)
        result = compute_pulse(times, values)

        # %B needs 20 bars, its period high/low another 19
        assert result.events[0].time == times[38]
        assert len(result.events) == 250 - 38
        assert result.latest.time == times[-1]

    def test_to_dict_limit(self):
        times, values = create_wave(250)
        data = compute_pulse(times, values).to_dict(limit=5)
        assert len(data["times"]) == 5
        assert len(data["events"]) == 5


class TestEvents:
    """Tests for signal flags"""

    def test_bottom_then_leaving_bottom(self):
        nan = np.nan
        events = detect_events(
            [T0, T0 + 60, T0 + 120],
            bbr=np.array([0.1, 0.5, 0.9]),
            bbr_high=np.array([1.0, 1.0, 0.9]),
            bbr_low=np.array([0.1, 0.1, 0.1]),
            pulse=np.array([nan, nan, nan]),
            s=PulseSettings(),
        )

        assert events[0].buy_1
        assert events[0].signal == PulseSignal.BUY
        assert events[1].buy_2
        assert not events[1].buy_1
        assert events[2].sell_1
        assert events[2].signal == PulseSignal.SELL

    def test_pulse_turning_up_from_bottom(self):
        s = PulseSettings()
        events = detect_events(
            [T0, T0 + 60],
            bbr=np.array([0.5, 0.5]),
            bbr_high=np.array([1.0, 1.0]),
            bbr_low=np.array([0.0, 0.0]),
            pulse=np.array([s.pulse_bottom, 0.0]),
            s=s,
        )
        assert events[1].pulse_first_up
        assert events[1].signal == PulseSignal.BUY

    def test_filter_signals_requires_threshold(self):
        events = detect_events(
            [T0],
            bbr=np.array([0.1]),
            bbr_high=np.array([1.0]),
            bbr_low=np.array([0.1]),
            pulse=np.array([np.nan]),
            s=PulseSettings(filter_signals=True, buy_threshold=0.0),
        )
        assert events[0].bbb_bottom
        assert not events[0].buy_1

    def test_signal_both(self):
        event = PulseEvents(time=T0, buy_1=True, sell_2=True)
        assert event.signal == PulseSignal.BOTH
        assert PulseEvents(time=T0).signal == PulseSignal.NONE
