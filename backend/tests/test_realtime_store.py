"""Tests for the realtime session store backends."""

from unittest.mock import MagicMock

import pytest
import redis

from attempt_service.services import realtime_store
from attempt_service.services.errors import RealtimeUnavailableError
from attempt_service.services.realtime_store import (
    InMemoryRealtimeStore,
    RedisRealtimeStore,
    answers_path,
    archive_path,
    log_path,
    session_path,
)


# ── In-process ─────────────────────────────────────────────────────────────────


class TestInMemoryRealtimeStore:
    def test_set_get_update(self):
        store = InMemoryRealtimeStore()
        store.set("sessions/a", {"status": "in_progress", "tab_switch_count": 0})
        store.update("sessions/a", {"status": "paused", "is_online": False})

        assert store.get("sessions/a") == {
            "status": "paused",
            "tab_switch_count": 0,
            "is_online": False,
        }
        assert store.get_field("sessions/a", "status") == "paused"
        assert store.get_field("sessions/a", "missing") is None
        assert store.get("sessions/b") is None

    def test_set_replaces(self):
        store = InMemoryRealtimeStore()
        store.set("p", {"a": 1, "b": 2})
        store.set("p", {"c": 3})
        assert store.get("p") == {"c": 3}

    def test_values_are_copied(self):
        store = InMemoryRealtimeStore()
        visited = ["q1"]
        store.set("p", {"visited": visited})
        visited.append("q2")
        fetched = store.get("p")
        fetched["visited"].append("q3")
        assert store.get("p") == {"visited": ["q1"]}

    def test_increment(self):
        store = InMemoryRealtimeStore()
        assert store.increment("p", "count") == 1
        assert store.increment("p", "count", 4) == 5

    def test_append_and_read_log(self):
        store = InMemoryRealtimeStore()
        assert store.append("log", {"event_type": "start"}) == 1
        assert store.append("log", {"event_type": "select"}) == 2
        assert [r["event_type"] for r in store.read_log("log")] == ["start", "select"]
        assert store.read_log("other") == []

    def test_delete(self):
        store = InMemoryRealtimeStore()
        store.set("a", {"x": 1})
        store.append("b", {"y": 2})
        store.delete("a", "b", "never-existed")
        assert store.get("a") is None
        assert store.read_log("b") == []


class TestPaths:
    def test_paths(self):
        assert session_path("abc") == "sessions/abc"
        assert answers_path("abc") == "sessions/abc/answers"
        assert log_path("abc") == "sessions/abc/events"
        assert archive_path("abc") == "archived/abc"


# ── Redis ──────────────────────────────────────────────────────────────────────


class TestRedisRealtimeStore:
    def test_key_mapping_and_json_decoding(self):
        client = MagicMock()
        client.hgetall.return_value = {"status": '"paused"', "tab_switch_count": "3"}
        store = RedisRealtimeStore(client=client, prefix="attempts")

        assert store.get("sessions/abc") == {"status": "paused", "tab_switch_count": 3}
        client.hgetall.assert_called_once_with("attempts:sessions:abc")

    def test_empty_hash_is_none(self):
        client = MagicMock()
        client.hgetall.return_value = {}
        assert RedisRealtimeStore(client=client).get("sessions/abc") is None

    def test_update_encodes_and_refreshes_ttl(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        store = RedisRealtimeStore(client=client, prefix="attempts", ttl=120)

        store.update("sessions/abc", {"is_online": True, "visited": ["q1"]})
        pipe.hset.assert_called_once_with(
            "attempts:sessions:abc", mapping={"is_online": "true", "visited": '["q1"]'}
        )
        pipe.expire.assert_called_once_with("attempts:sessions:abc", 120)
        pipe.execute.assert_called_once()

    def test_increment_refreshes_ttl(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [3, True]
        store = RedisRealtimeStore(client=client, prefix="attempts", ttl=120)

        assert store.increment("sessions/abc", "tab_switch_count") == 3
        pipe.hincrby.assert_called_once_with("attempts:sessions:abc", "tab_switch_count", 1)
        pipe.expire.assert_called_once_with("attempts:sessions:abc", 120)

    def test_append_returns_list_length(self):
        client = MagicMock()
        client.pipeline.return_value.execute.return_value = [4, True]
        store = RedisRealtimeStore(client=client)
        assert store.append("sessions/abc/events", {"event_type": "select"}) == 4

    def test_redis_errors_become_unavailable(self):
        client = MagicMock()
        client.hgetall.side_effect = redis.ConnectionError("refused")
        client.pipeline.return_value.execute.side_effect = redis.TimeoutError("slow")
        store = RedisRealtimeStore(client=client)

        with pytest.raises(RealtimeUnavailableError):
            store.get("sessions/abc")
        with pytest.raises(RealtimeUnavailableError):
            store.increment("sessions/abc", "tab_switch_count")


class TestWiring:
    def test_memory_backend(self, monkeypatch):
        monkeypatch.setattr(realtime_store, "_store", None)
        monkeypatch.setattr(realtime_store.settings, "REALTIME_BACKEND", "memory")
        store = realtime_store.get_realtime_store()
        assert isinstance(store, InMemoryRealtimeStore)
        assert realtime_store.get_realtime_store() is store

    def test_redis_backend(self, monkeypatch):
        monkeypatch.setattr(realtime_store, "_store", None)
        monkeypatch.setattr(realtime_store.settings, "REALTIME_BACKEND", "redis")
        assert isinstance(realtime_store.get_realtime_store(), RedisRealtimeStore)
