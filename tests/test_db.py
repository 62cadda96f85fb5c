"""
Tests for the key/value stores.
"""

import pytest

from db import ConfigStore, InMemoryStore, SQLiteStorage


@pytest.fixture(params=["memory", "sqlite"])
def kv_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStore()
    return SQLiteStorage(str(tmp_path / "nested" / "signals.db"))


class TestConfigStore:
    """Behaviour shared by every store"""

    def test_satisfies_protocol(self, kv_store):
        assert isinstance(kv_store, ConfigStore)

    def test_get_set_delete(self, kv_store):
        assert kv_store.get("missing") is None
        kv_store.set("alerts.v1.BTC", "[]")
        kv_store.set("alerts.v1.BTC", '[{"id": "a"}]')
        assert kv_store.get("alerts.v1.BTC") == '[{"id": "a"}]'

        kv_store.delete("alerts.v1.BTC")
        assert kv_store.get("alerts.v1.BTC") is None
        kv_store.delete("alerts.v1.BTC")

    def test_keys_by_prefix(self, kv_store):
        for key in ("alerts.v1.BTC", "alerts.v1.ETH", "alerts.log.v1.BTC", "settings.v1"):
            kv_store.set(key, "x")
        assert kv_store.keys("alerts.v1.") == ["alerts.v1.BTC", "alerts.v1.ETH"]
        assert len(kv_store.keys()) == 4


class TestSQLiteStorage:
    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "signals.db")
        SQLiteStorage(path).set("settings.v1", '{"min_volume": 1}')
        assert SQLiteStorage(path).get("settings.v1") == '{"min_volume": 1}'

    def test_clear_prefix_and_stats(self, tmp_path):
        storage = SQLiteStorage(str(tmp_path / "signals.db"))
        storage.set("alerts.v1.BTC", "[]")
        storage.set("settings.v1", "{}")

        storage.clear("alerts.")
        assert storage.keys() == ["settings.v1"]
        assert storage.get_stats()["keys"] == 1

        storage.clear()
        assert storage.get_stats()["keys"] == 0
