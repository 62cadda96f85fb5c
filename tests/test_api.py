"""
Tests for the HTTP API.
"""

import json

import pytest
from fastapi.testclient import TestClient

from core.engine import reset_engine
from main import app

from conftest import T0, make_minute_snapshots


def snapshot_record(time: int, price: float = 100.0, with_book: bool = True) -> dict:
    """Helper to create a wire-format snapshot record"""
    record = {"time": time, "candle": {"o": price, "h": price, "l": price, "c": price, "v": 1}}
    if with_book:
        record["book"] = {"bids": [[100, 2], [99, 5]], "asks": [[101, 1], [102, 4]]}
    return record


@pytest.fixture
def client(engine):
    reset_engine(engine)
    yield TestClient(app)
    reset_engine(None)


@pytest.fixture
def fed_client(client, engine):
    for snapshot in make_minute_snapshots(3):
        engine.ingest(snapshot)
    return client


BPR_ALERT = {
    "section": "orderflow",
    "metric_key": "bpr",
    "condition": "above",
    "threshold": 1.2,
    "frequency": "once_per_bar",
}


class TestSnapshots:
    """Tests for ingestion endpoints"""

    def test_ingest_one(self, client):
        first = client.post("/api/snapshots", json=snapshot_record(T0))
        second = client.post("/api/snapshots", json=snapshot_record(T0 + 60))

        assert first.status_code == 200
        assert first.json()["status"] == "appended"
        assert [s["bar_id"] for s in second.json()["closed"]] == [T0]

    def test_ingest_invalid(self, client, engine):
        response = client.post("/api/snapshots", json={"candle": {"o": 1, "h": 1, "l": 1, "c": 1}})
        assert response.status_code == 400
        assert engine.stats()["errors"] == 1

        response = client.post("/api/snapshots", json={
            "time": T0, "candle": {"o": 1, "h": 1, "l": 1, "c": 1}, "book": {"bids": [[1]]},
        })
        assert response.status_code == 400

    def test_non_finite_candle_rejected(self, client, engine):
        body = json.dumps(snapshot_record(T0)).replace('"c": 100.0', '"c": NaN')
        assert "NaN" in body
        response = client.post(
            "/api/snapshots", content=body, headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert engine.stats()["errors"] == 1
        assert client.get("/api/metrics/latest").status_code == 404

    def test_batch_counts_errors(self, client):
        records = [snapshot_record(T0 + i * 60) for i in range(3)]
        records.append({"time": "soon"})
        records.append(snapshot_record(T0))

        data = client.post("/api/snapshots/batch", json={"snapshots": records}).json()

        assert data["count"] == 3
        assert data["errors"] == 1
        assert data["duplicates"] == 1
        assert data["bars_closed"] == 2
        assert data["success"] is False

    def test_upload_ndjson(self, client):
        lines = [json.dumps(snapshot_record(T0 + i * 60)) for i in range(4)]
        lines.insert(2, "{broken")
        lines.append("")
        content = "\n".join(lines).encode()

        response = client.post(
            "/api/snapshots/upload",
            files={"file": ("feed.ndjson", content, "application/x-ndjson")},
        )
        data = response.json()

        assert response.status_code == 200
        assert data["count"] == 4
        assert data["errors"] == 1
        assert data["bars_closed"] == 3

    def test_bars(self, fed_client):
        data = fed_client.get("/api/snapshots/bars").json()
        assert data["count"] == 3
        assert data["bars"][0]["has_book"] is True

        data = fed_client.get("/api/snapshots/bars", params={"include_forming": False}).json()
        assert data["count"] == 2


class TestMetrics:
    """Tests for the read model"""

    def test_latest_404_when_empty(self, client):
        assert client.get("/api/metrics/latest").status_code == 404
        assert client.get("/api/metrics/direction").status_code == 404

    def test_latest(self, fed_client):
        data = fed_client.get("/api/metrics/latest").json()
        assert data["bar_id"] == T0 + 120
        assert data["closed"] is False
        assert data["bpr"] == pytest.approx(1.4)

    def test_series_and_channel(self, fed_client):
        series = fed_client.get("/api/metrics/series").json()
        assert [s["bar_id"] for s in series["series"]] == [T0, T0 + 60]

        drained = fed_client.get("/api/metrics/channel").json()
        assert drained["count"] == 2
        assert fed_client.get("/api/metrics/channel").json()["count"] == 0

    def test_pulse_not_ready(self, fed_client):
        data = fed_client.get("/api/metrics/pulse").json()
        assert data["ready"] is False
        assert data["required_bars"] == 200

    def test_direction(self, fed_client):
        data = fed_client.get("/api/metrics/direction").json()
        assert set(data) >= {"short", "medium", "long", "overall_bias", "confidence"}


class TestEngineControl:
    """Tests for timeframe, symbol and settings endpoints"""

    def test_timeframe(self, fed_client):
        assert fed_client.put("/api/engine/timeframe", json={"timeframe": "7m"}).status_code == 400
        response = fed_client.put("/api/engine/timeframe", json={"timeframe": "5m"})
        assert response.json()["timeframe"] == "5m"
        assert "1w" in fed_client.get("/api/engine/timeframes").json()["timeframes"]

    def test_symbol(self, fed_client):
        data = fed_client.put("/api/engine/symbol", json={"symbol": "eth"}).json()
        assert data["symbol"] == "ETH"
        assert fed_client.put("/api/engine/symbol", json={"symbol": "  "}).status_code == 400
        assert fed_client.get("/api/metrics/latest").status_code == 404

    def test_settings(self, client):
        data = client.get("/api/engine/settings").json()
        assert data["analysis"]["cluster_pct"] == 0.0015
        assert data["pulse"]["source"] == "open"

        assert client.put("/api/engine/settings", json={"min_volume": 2}).json()["min_volume"] == 2
        assert client.put("/api/engine/settings", json={"max_levels": 0}).status_code == 400
        assert client.put("/api/engine/pulse", json={"source": "nope"}).status_code == 400
        assert client.put("/api/engine/pulse", json={"min_bars": 50}).json()["min_bars"] == 50

    def test_stats(self, fed_client):
        data = fed_client.get("/api/engine/stats").json()
        assert data["snapshots_ingested"] == 3
        assert data["alerts"]["alerts_count"] == 0


class TestAlertsApi:
    """Tests for alert management endpoints"""

    def test_registry(self, client):
        data = client.get("/api/alerts/registry").json()
        assert "orderflow" in data
        keys = [m["key"] for m in data["orderflow"]["metrics"]]
        assert "bpr" in keys

        data = client.get("/api/alerts/registry", params={"section": "pulse"}).json()
        assert set(data["pulse"]) == {"signal", "pulse", "bbr"}

    def test_create_list_get_delete(self, client):
        created = client.post("/api/alerts", json=BPR_ALERT)
        assert created.status_code == 200
        alert_id = created.json()["alert"]["id"]

        assert client.get("/api/alerts").json()["count"] == 1
        assert client.get(f"/api/alerts/{alert_id}").json()["threshold"] == 1.2
        assert client.delete(f"/api/alerts/{alert_id}").status_code == 200
        assert client.get(f"/api/alerts/{alert_id}").status_code == 404
        assert client.delete(f"/api/alerts/{alert_id}").status_code == 404

    def test_create_invalid(self, client):
        bad_metric = dict(BPR_ALERT, metric_key="nope")
        assert client.post("/api/alerts", json=bad_metric).status_code == 400
        bad_condition = dict(BPR_ALERT, condition="sideways")
        assert client.post("/api/alerts", json=bad_condition).status_code == 422

    def test_patch_and_toggle(self, client):
        alert_id = client.post("/api/alerts", json=BPR_ALERT).json()["alert"]["id"]

        patched = client.patch(f"/api/alerts/{alert_id}", json={"threshold": 2.0}).json()
        assert patched["alert"]["threshold"] == 2.0
        assert patched["alert"]["condition"] == "above"

        client.post(f"/api/alerts/{alert_id}/disable")
        assert client.get(f"/api/alerts/{alert_id}").json()["enabled"] is False
        client.post(f"/api/alerts/{alert_id}/enable")
        assert client.get(f"/api/alerts/{alert_id}").json()["enabled"] is True
        assert client.patch("/api/alerts/missing", json={"threshold": 1}).status_code == 404

    def test_dry_run(self, client, engine):
        alert_id = client.post("/api/alerts", json=BPR_ALERT).json()["alert"]["id"]
        assert client.post(f"/api/alerts/{alert_id}/test").status_code == 400

        for snapshot in make_minute_snapshots(2):
            engine.ingest(snapshot)
        fire_count = engine.alerts.get(alert_id).runtime.fire_count

        data = client.post(f"/api/alerts/{alert_id}/test").json()
        assert data["value"] == pytest.approx(1.4)
        assert data["message"].startswith("[BTC] BPR")
        assert engine.alerts.get(alert_id).runtime.fire_count == fire_count

    def test_history(self, client, engine):
        client.post("/api/alerts", json=BPR_ALERT)
        for snapshot in make_minute_snapshots(2):
            engine.ingest(snapshot)

        history = client.get("/api/alerts/history").json()
        assert history["count"] == 2
        assert client.get("/api/alerts/stats").json()["fired"] == 2

        client.delete("/api/alerts/history")
        assert client.get("/api/alerts/history").json()["count"] == 0

    def test_reset(self, client):
        assert client.post("/api/alerts/reset").status_code == 200


class TestRoot:
    def test_health(self, fed_client):
        data = fed_client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["engine"]["bars_closed"] == 2
        assert data["latest_bar"] == T0 + 120

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"
