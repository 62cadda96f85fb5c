"""
Tests for entry certainty scoring.
"""

import random
from dataclasses import replace

import pytest

from analytics.certainty import decide_entry, score_entry
from analytics.metrics import compute_metrics
from analytics.models import EntrySignal
from core.config import AnalysisSettings

from conftest import T0, make_book


@pytest.fixture
def base_metrics():
    return compute_metrics(T0, 100, make_book(), AnalysisSettings())


def long_extreme(m):
    """Helper: every long-side component at its top tier, short side silent"""
    return replace(
        m,
        bid_wall_proximity=90.0, ask_wall_proximity=0.0,
        bid_support_score=80.0, ask_resistance_score=0.0,
        level_imbalance_pct=50.0,
        ask_vacuum=True, bid_vacuum=False,
        near_pressure_pct=50.0, depth_imbalance_pct=50.0,
        bpr=3.0, ld_pct=50.0,
        vs_ifv_pct=-0.05, vs_vwmp_pct=-0.05,
        ld_momentum="rising", spread_state="tight", spread_direction="stable",
        deltas={},
    )


def short_extreme(m):
    """Helper: mirror image of long_extreme"""
    return replace(
        m,
        bid_wall_proximity=0.0, ask_wall_proximity=90.0,
        bid_support_score=0.0, ask_resistance_score=80.0,
        level_imbalance_pct=-50.0,
        ask_vacuum=False, bid_vacuum=True,
        near_pressure_pct=-50.0, depth_imbalance_pct=-50.0,
        bpr=0.3, ld_pct=-50.0,
        vs_ifv_pct=0.05, vs_vwmp_pct=0.05,
        ld_momentum="falling", spread_state="tight", spread_direction="stable",
        deltas={},
    )


class TestScoreEntry:
    """Tests for the LONG/SHORT point awards"""

    def test_long_extreme(self, base_metrics):
        result = score_entry(long_extreme(base_metrics))

        assert result.long_certainty == 100
        assert result.short_certainty == 0
        assert result.entry_signal == EntrySignal.LONG
        assert result.long_reasons
        assert not result.short_reasons

    def test_short_extreme(self, base_metrics):
        result = score_entry(short_extreme(base_metrics))

        assert result.short_certainty == 100
        assert result.long_certainty == 0
        assert result.entry_signal == EntrySignal.SHORT

    def test_wide_spread_penalises_both(self, base_metrics):
        tight = score_entry(long_extreme(base_metrics))
        wide = score_entry(replace(long_extreme(base_metrics), spread_state="wide",
                                   bid_wall_proximity=0.0, bid_support_score=0.0))
        assert wide.long_certainty < tight.long_certainty
        assert wide.short_certainty == 0

    def test_random_metrics_stay_in_bounds(self, base_metrics):
        rng = random.Random(7)
        for _ in range(200):
            m = replace(
                base_metrics,
                bid_wall_proximity=rng.uniform(0, 100),
                ask_wall_proximity=rng.uniform(0, 100),
                bid_support_score=rng.uniform(0, 100),
                ask_resistance_score=rng.uniform(0, 100),
                level_imbalance_pct=rng.uniform(-100, 100),
                ask_vacuum=rng.random() < 0.5,
                bid_vacuum=rng.random() < 0.5,
                near_pressure_pct=rng.uniform(-100, 100),
                depth_imbalance_pct=rng.uniform(-100, 100),
                bpr=rng.uniform(0, 10),
                ld_pct=rng.uniform(-100, 100),
                vs_ifv_pct=rng.uniform(-1, 1),
                vs_vwmp_pct=rng.uniform(-1, 1),
                ld_momentum=rng.choice(["rising", "falling", "flat"]),
                spread_state=rng.choice(["tight", "normal", "wide"]),
                spread_direction=rng.choice(["tightening", "stable", "widening"]),
                deltas={"ld_pct": rng.uniform(-5, 5)},
            )
            result = score_entry(m)

            assert 0 <= result.long_certainty <= 100
            assert 0 <= result.short_certainty <= 100
            assert result.entry_signal == decide_entry(result.long_certainty, result.short_certainty)
            if result.entry_signal == EntrySignal.LONG:
                assert result.short_certainty < 30
            if result.entry_signal == EntrySignal.SHORT:
                assert result.long_certainty < 30


class TestDecideEntry:
    def test_thresholds(self):
        assert decide_entry(80, 29) == EntrySignal.LONG
        assert decide_entry(80, 30) == EntrySignal.WAIT
        assert decide_entry(79, 0) == EntrySignal.WAIT
        assert decide_entry(10, 95) == EntrySignal.SHORT
        assert decide_entry(0, 0) == EntrySignal.WAIT
