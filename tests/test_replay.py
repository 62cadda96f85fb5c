"""
Tests for NDJSON replay.
"""

import json

import pytest

from core.models import DataSource
from services.replay import ReplayReport, iter_snapshots, parse_line, replay_file, replay_lines

from conftest import T0


def record_line(time: int, price: float = 100.0) -> str:
    return json.dumps({
        "time": time,
        "candle": {"o": price, "h": price, "l": price, "c": price, "v": 1},
        "book": {"bids": [[100, 2], [99, 5]], "asks": [[101, 1], [102, 4]]},
    })


class TestParsing:
    def test_blank_line(self):
        assert parse_line("   \n") is None

    def test_source_tag(self):
        assert parse_line(record_line(T0)).source == DataSource.REPLAY

    def test_malformed_lines_counted(self):
        lines = [record_line(T0), "not json", '{"time": 1}', "", record_line(T0 + 60)]
        report = ReplayReport()
        snapshots = list(iter_snapshots(lines, report))

        assert [s.time for s in snapshots] == [T0, T0 + 60]
        assert report.lines == 5
        assert report.skipped == 2


class TestReplay:
    """Tests for feeding the engine"""

    def test_replay_lines(self, engine):
        engine.alerts.upsert({"section": "orderflow", "metric_key": "bpr", "condition": "above",
                              "threshold": 1.2, "frequency": "once_per_bar"})
        lines = [record_line(T0 + i * 60) for i in range(3)] + ["garbage", record_line(T0)]
        report = replay_lines(lines, engine)

        assert report.ingested == 3
        assert report.skipped == 1
        assert report.duplicates == 1
        assert report.bars_closed == 2
        assert report.alerts_fired == 3
        assert all(m.startswith("[BTC]") for m in report.messages)
        assert engine.stats()["errors"] == 1

    def test_replay_file_applies_symbol_and_timeframe(self, engine, tmp_path):
        path = tmp_path / "feed.ndjson"
        path.write_text("\n".join(record_line(T0 + i * 60) for i in range(11)) + "\n")

        report = replay_file(path, engine, timeframe="5m", symbol="eth")

        assert engine.symbol == "ETH"
        assert engine.timeframe == "5m"
        assert report.bars_closed == 2
        assert report.to_dict()["lines"] == 11

    def test_missing_file(self, engine, tmp_path):
        with pytest.raises(FileNotFoundError):
            replay_file(tmp_path / "nope.ndjson", engine)
