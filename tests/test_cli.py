"""
Tests for the command line entry point.
"""

import json

import pytest

from app import build_parser, main

from conftest import T0


def write_feed(path, count):
    lines = []
    for i in range(count):
        lines.append(json.dumps({
            "time": T0 + i * 60,
            "candle": {"o": 100, "h": 100, "l": 100, "c": 100, "v": 1},
            "book": {"bids": [[100, 2], [99, 5]], "asks": [[101, 1], [102, 4]]},
        }))
    path.write_text("\n".join(lines))


class TestCli:
    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_replay_prints_summary(self, tmp_path, capsys, monkeypatch):
        monkeypatch.delenv("OBS_DB_PATH", raising=False)
        feed = tmp_path / "feed.ndjson"
        write_feed(feed, 6)

        assert main(["replay", str(feed), "--timeframe", "3m"]) == 0
        summary = json.loads(capsys.readouterr().out)

        assert summary["lines"] == 6
        assert summary["ingested"] == 6
        assert summary["bars_closed"] == 1
        assert summary["latest"] is None

    def test_replay_missing_file(self, tmp_path):
        assert main(["replay", str(tmp_path / "missing.ndjson")]) == 1

    def test_replay_unknown_timeframe(self, tmp_path):
        feed = tmp_path / "feed.ndjson"
        write_feed(feed, 1)
        assert main(["replay", str(feed), "--timeframe", "7m"]) == 1
