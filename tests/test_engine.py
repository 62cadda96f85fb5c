"""
Tests for the analysis pipeline.
"""

import json

import pytest
from pydantic import ValidationError

from core.config import EngineConfig
from core.engine import PULSE_SETTINGS_KEY, SETTINGS_KEY, AnalysisEngine
from db import InMemoryStore

from conftest import T0, make_minute_snapshots, make_snapshot


BPR_ALERT = {
    "section": "orderflow",
    "metric_key": "bpr",
    "condition": "above",
    "threshold": 1.2,
    "frequency": "once_per_bar",
}


def feed(engine, snapshots):
    """Helper: ingest snapshots, return every outcome"""
    return [engine.ingest(s) for s in snapshots]


class TestBarClosing:
    """Tests for closed-bar analysis"""

    def test_bar_closes_on_next_bucket(self, engine):
        outcomes = feed(engine, make_minute_snapshots(3))

        assert outcomes[0].closed == []
        assert [s.bar_id for s in outcomes[1].closed] == [T0]
        assert [s.bar_id for s in engine.channel.drain()] == [T0, T0 + 60]
        assert engine.stats()["bars_closed"] == 2

    def test_closed_analysis_has_every_stage(self, engine):
        feed(engine, make_minute_snapshots(2))
        snap = engine.series()[-1]

        assert snap.closed
        assert snap.metrics.bpr == pytest.approx(1.4)
        assert snap.certainty is not None
        assert snap.direction is not None
        # 100 buckets to 100.05, above price
        assert snap.nearest_support_pct == pytest.approx(1.0)
        assert snap.nearest_resistance_pct == pytest.approx(0.95)

    def test_duplicate_snapshot_ignored(self, engine):
        feed(engine, make_minute_snapshots(2))
        outcome = engine.ingest(make_snapshot(T0 + 60, price=500))

        assert outcome.status == "duplicate"
        assert engine.stats()["duplicates"] == 1

    def test_provisional_analysis_of_forming_bar(self, engine):
        feed(engine, make_minute_snapshots(2))
        latest = engine.latest()

        assert latest.bar_id == T0 + 60
        assert not latest.closed
        assert engine.series()[-1].bar_id == T0

    def test_provisional_throttled(self, store, clock):
        config = EngineConfig(analytics_interval_sec=5, db_path=None)
        engine = AnalysisEngine(config=config, store=store, clock=clock)

        first = engine.ingest(make_snapshot(T0))
        second = engine.ingest(make_snapshot(T0 + 10))
        clock.advance(5)
        third = engine.ingest(make_snapshot(T0 + 20))

        assert first.provisional is not None
        assert second.provisional is None
        assert third.provisional is not None


class TestGaps:
    """Tests for bars without a usable book"""

    def test_gap_resets_previous(self, engine):
        snapshots = [
            make_snapshot(T0),
            make_snapshot(T0 + 60, with_book=False),
            make_snapshot(T0 + 120),
            make_snapshot(T0 + 180),
            make_snapshot(T0 + 240),
        ]
        feed(engine, snapshots)
        series = engine.series()

        assert series[1].metrics is None
        assert series[1].certainty is None
        assert series[2].metrics.previous is None
        assert series[2].metrics.deltas == {}
        assert series[3].metrics.previous is not None
        assert series[3].metrics.previous.previous is None
        assert engine.stats()["gaps"] == 1


class TestRecompute:
    """Tests for late data and timeframe changes"""

    def test_late_snapshot_inserted_and_recomputed(self, engine):
        feed(engine, [make_snapshot(T0), make_snapshot(T0 + 120)])
        outcome = engine.ingest(make_snapshot(T0 + 60))

        assert outcome.status == "inserted"
        assert [s.bar_id for s in engine.series()] == [T0, T0 + 60]
        assert len(engine.channel) == 1
        stats = engine.stats()
        assert stats["late_inserts"] == 1
        assert stats["recomputes"] == 1

    def test_timeframe_change(self, engine):
        feed(engine, make_minute_snapshots(10))
        engine.channel.drain()
        engine.set_timeframe("5m")

        assert engine.timeframe == "5m"
        series = engine.series()
        assert [s.bar_id for s in series] == [T0]
        assert series[0].timeframe == "5m"
        assert len(engine.channel) == 0
        assert engine.bars()[-1].snapshot_count == 5

    def test_unknown_timeframe(self, engine):
        with pytest.raises(ValueError):
            engine.set_timeframe("7m")
        assert engine.timeframe == "1m"


class TestSymbol:
    def test_set_symbol_clears_state_and_scopes_alerts(self, engine):
        engine.alerts.upsert(BPR_ALERT)
        feed(engine, make_minute_snapshots(3))
        engine.set_symbol("eth")

        assert engine.symbol == "ETH"
        assert engine.series() == []
        assert engine.latest() is None
        assert engine.alerts.list() == []

        engine.set_symbol("BTC")
        assert len(engine.alerts.list()) == 1


class TestSettings:
    """Tests for analysis and pulse settings"""

    def test_update_persists_and_recomputes(self, engine, store, clock):
        feed(engine, make_minute_snapshots(3))
        engine.update_settings({"min_volume": 3})

        assert engine.series()[-1].metrics.bid_volume == pytest.approx(5)
        assert json.loads(store.get(SETTINGS_KEY))["min_volume"] == 3

        reloaded = AnalysisEngine(config=engine.config, store=store, clock=clock)
        assert reloaded.settings.min_volume == 3

    def test_invalid_settings_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.update_settings({"cluster_pct": -1})
        assert engine.settings.cluster_pct == 0.0015

    def test_malformed_stored_settings_fall_back(self, clock):
        store = InMemoryStore({SETTINGS_KEY: "not json", PULSE_SETTINGS_KEY: '{"source": "nope"}'})
        engine = AnalysisEngine(config=EngineConfig(db_path=None), store=store, clock=clock)

        assert engine.settings.cluster_pct == 0.0015
        assert engine.pulse_settings.source == "open"

    def test_pulse_settings_validation(self, engine):
        with pytest.raises(ValueError):
            engine.update_pulse_settings({"nope": 1})
        with pytest.raises(ValueError):
            engine.update_pulse_settings({"source": "bogus"})
        engine.update_pulse_settings({"source": "bpr"})
        assert engine.pulse_settings.source == "bpr"

    def test_pulse_attached_once_ready(self, engine, store):
        engine.update_pulse_settings({"min_bars": 50, "source": "close"})
        snapshots = [make_snapshot(T0 + i * 60, price=100 + (i % 7)) for i in range(61)]
        feed(engine, snapshots)

        assert engine.pulse().ready
        latest = engine.series()[-1]
        assert latest.pulse_value is not None
        assert latest.bbr is not None
        assert latest.pulse is not None
        assert json.loads(store.get(PULSE_SETTINGS_KEY))["min_bars"] == 50


class TestAlerts:
    """Tests for alert evaluation inside the pipeline"""

    def test_once_per_bar_across_provisional_and_close(self, engine):
        engine.alerts.upsert(BPR_ALERT)

        first = engine.ingest(make_snapshot(T0))
        second = engine.ingest(make_snapshot(T0 + 30))
        third = engine.ingest(make_snapshot(T0 + 60))

        assert len(first.fired) == 1
        assert second.fired == []
        # Close of T0 is deduplicated, forming T0+60 fires
        assert [e.log_entry.context["bar_id"] for e in third.fired] == [T0 + 60]

    def test_pulse_changes_fire_only_on_closed_transitions(self, engine):
        engine.update_pulse_settings({"min_bars": 50, "source": "close"})
        engine.alerts.upsert({
            "section": "pulse",
            "metric_key": "signal",
            "condition": "changes",
            "frequency": "once_per_bar",
        })
        snapshots = [make_snapshot(T0 + i * 60, price=100 + i) for i in range(90)]
        outcomes = feed(engine, snapshots)

        # Forming bars carry no pulse event, so they never feed the condition
        assert all(o.provisional.pulse is None for o in outcomes if o.provisional is not None)

        signals = [(s.bar_id, s.pulse.signal) for s in engine.series() if s.pulse is not None]
        assert len(signals) > 1
        expected = [bar_id for (bar_id, signal), (_, prev) in zip(signals[1:], signals) if signal != prev]
        fired = [e.log_entry.context["bar_id"] for o in outcomes for e in o.fired]
        assert fired == expected

    def test_recompute_does_not_fire(self, engine):
        feed(engine, make_minute_snapshots(3))
        engine.alerts.upsert(BPR_ALERT)
        engine.set_timeframe("3m")
        assert engine.alerts.get_log() == []

    def test_heartbeat(self, engine, clock):
        feed(engine, make_minute_snapshots(2))
        engine.alerts.upsert(BPR_ALERT)

        assert engine.heartbeat() == []
        clock.advance(engine.config.alert_heartbeat_sec)
        assert len(engine.heartbeat()) == 1

    def test_heartbeat_without_analysis(self, engine, clock):
        clock.advance(100)
        assert engine.heartbeat() == []


class TestReadModel:
    def test_stats_and_dict(self, engine):
        feed(engine, make_minute_snapshots(2))
        stats = engine.stats()
        data = engine.latest().to_dict()

        assert stats["symbol"] == "BTC"
        assert stats["forming_bar"]["time"] == T0 + 60
        assert data["bpr"] == pytest.approx(1.4)
        assert data["entry_signal"] in ("LONG", "SHORT", "WAIT")
        assert data["direction"]["overall_bias"] in ("bullish", "bearish", "neutral")

    def test_bars_with_and_without_forming(self, engine):
        feed(engine, make_minute_snapshots(3))
        assert len(engine.bars()) == 3
        assert len(engine.bars(include_forming=False)) == 2
