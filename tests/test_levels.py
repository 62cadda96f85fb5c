"""
Tests for level processing.
"""

import pytest

from analytics.levels import cluster, cluster_book, filter_asks, filter_bids, process_levels
from core.config import AnalysisSettings, LDMode

from conftest import make_book


class TestRangeFilters:
    """Tests for the price-range filters"""

    def test_bid_at_price_included_lower_bound_excluded(self):
        raw = [(100, 1), (95, 1), (90, 1), (101, 1)]
        assert filter_bids(raw, 100, 10) == [(100, 1), (95, 1)]

    def test_ask_at_price_included_upper_bound_excluded(self):
        raw = [(100, 1), (105, 1), (110, 1), (99, 1)]
        assert filter_asks(raw, 100, 10) == [(100, 1), (105, 1)]


class TestClustering:
    """Tests for price bucketing"""

    def test_bucket_rounds_half_up(self):
        levels = cluster([(100.0, 1), (100.4, 2), (100.6, 3)], "bid", 1.0)
        by_price = {lvl.price: lvl for lvl in levels}

        assert set(by_price) == {100.0, 101.0}
        assert by_price[100.0].volume == 3
        assert by_price[100.0].count == 2
        assert by_price[101.0].volume == 3

    def test_cluster_book_sorted_per_side(self):
        book = make_book(bids=[[98, 1], [99, 1]], asks=[[103, 1], [101, 1]])
        bids, asks = cluster_book(book, 100, 0.0015)
        assert [lvl.price for lvl in bids] == sorted((lvl.price for lvl in bids), reverse=True)
        assert [lvl.price for lvl in asks] == sorted(lvl.price for lvl in asks)


class TestProcessLevels:
    """Tests for the combined level views"""

    def test_example_book(self):
        levels = process_levels(make_book(), 100, AnalysisSettings())

        assert sum(lvl.volume for lvl in levels.ld_bids) == pytest.approx(7)
        assert sum(lvl.volume for lvl in levels.ld_asks) == pytest.approx(5)
        assert len(levels.full_bids) == 2
        assert len(levels.fair_value_asks) == 2

    def test_min_volume_drops_thin_levels(self):
        settings = AnalysisSettings(min_volume=3)
        levels = process_levels(make_book(), 100, settings)

        assert [lvl.volume for lvl in levels.clustered_bids] == [5]
        assert [lvl.volume for lvl in levels.clustered_asks] == [4]
        # Full book is never filtered
        assert len(levels.full_bids) == 2

    def test_max_levels_keeps_nearest(self):
        book = make_book(bids=[[99, 1], [97, 1], [95, 1]], asks=[[101, 1]])
        levels = process_levels(book, 100, AnalysisSettings(max_levels=2))
        assert [round(lvl.price) for lvl in levels.clustered_bids] == [99, 97]

    def test_signal_window_limits_ld_levels(self):
        book = make_book(bids=[[99, 1], [95, 10]], asks=[[101, 1]])
        signal = process_levels(book, 100, AnalysisSettings(ld_range_pct=2))
        context = process_levels(book, 100, AnalysisSettings(ld_range_pct=2, ld_mode=LDMode.CONTEXT))

        assert sum(lvl.volume for lvl in signal.ld_bids) == pytest.approx(1)
        assert sum(lvl.volume for lvl in context.ld_bids) == pytest.approx(11)

    def test_ld_range_is_clamped(self):
        assert AnalysisSettings(ld_range_pct=0).ld_range_pct == 1
        assert AnalysisSettings(ld_range_pct=80).ld_range_pct == 50
