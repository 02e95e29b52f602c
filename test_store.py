"""
Storage Tests
Key-value backends and the ledger's markers, circuit breaker and health record
"""

import json
from datetime import timedelta
from unittest import mock

import pytest
import redis

from conftest import FrozenClock
from marketwire.storage import Ledger, MemoryStore, RedisStore, SQLiteStore, StorageError, build_store


class Tick:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    tick = Tick()
    if request.param == "memory":
        store = MemoryStore(clock=tick)
    else:
        store = SQLiteStore(str(tmp_path / "kv.sqlite"), clock=tick)
    yield store, tick
    store.close()


def test_set_get_exists_delete(backend):
    store, _ = backend
    assert store.get("missing") is None
    assert not store.exists("missing")

    store.set("k", {"a": 1, "b": ["x"]})
    assert store.exists("k")
    assert store.get("k") == {"a": 1, "b": ["x"]}

    store.delete("k")
    assert not store.exists("k")


def test_ttl_expiry(backend):
    store, tick = backend
    store.set("short", "v", ttl=60)
    store.set("forever", "v")

    tick.now += 59
    assert store.exists("short")
    tick.now += 1
    assert not store.exists("short")
    assert store.get("short") is None
    assert store.exists("forever")


def test_sets(backend):
    store, _ = backend
    store.sadd("s", "1")
    store.sadd("s", 2)
    store.sadd("s", "1")
    assert store.smembers("s") == {"1", "2"}

    store.srem("s", "1")
    assert store.smembers("s") == {"2"}
    assert store.smembers("other") == set()


def test_sqlite_persists_across_connections(tmp_path):
    path = str(tmp_path / "nested" / "kv.sqlite")
    first = SQLiteStore(path)
    first.set("news:dispatched:abc", {"execution_id": "c1"}, ttl=3600)
    first.sadd("subscribers:active:users", "111")
    first.close()

    second = SQLiteStore(path)
    assert second.get("news:dispatched:abc") == {"execution_id": "c1"}
    assert second.smembers("subscribers:active:users") == {"111"}
    second.close()


def test_sqlite_purge_expired(tmp_path):
    tick = Tick()
    store = SQLiteStore(str(tmp_path / "kv.sqlite"), clock=tick)
    store.set("a", 1, ttl=10)
    store.set("b", 2)
    tick.now += 11
    assert store.purge_expired() == 1
    store.close()


def test_redis_store_uses_native_ttl():
    client = mock.MagicMock()
    store = RedisStore(client=client)

    store.set("circuit:https://x", {"failed_count": 1}, ttl=3600)
    client.set.assert_called_once_with("circuit:https://x", json.dumps({"failed_count": 1}), ex=3600)

    client.get.return_value = json.dumps({"failed_count": 1})
    assert store.get("circuit:https://x") == {"failed_count": 1}

    client.exists.return_value = 0
    assert store.exists("nope") is False

    client.smembers.return_value = {"111", "-222"}
    assert store.smembers("subscribers:active:users") == {"111", "-222"}


def test_redis_errors_become_storage_errors():
    client = mock.MagicMock()
    client.get.side_effect = redis.ConnectionError("connection refused")
    store = RedisStore(client=client)

    with pytest.raises(StorageError):
        store.get("news:dispatched:abc")


def test_redis_store_requires_url():
    with pytest.raises(StorageError):
        RedisStore()


def test_build_store(tmp_path):
    assert isinstance(build_store("memory"), MemoryStore)
    sqlite_store = build_store("sqlite", str(tmp_path / "s.sqlite"))
    assert isinstance(sqlite_store, SQLiteStore)
    sqlite_store.close()
    with pytest.raises(ValueError):
        build_store("postgres")


def test_dispatched_and_delivered_markers(ledger, store):
    assert not ledger.is_dispatched("fp1")
    ledger.mark_dispatched("fp1", "HIGH", "CORE", "cycle-1")
    assert ledger.is_dispatched("fp1")
    assert store.get("news:dispatched:fp1")["execution_id"] == "cycle-1"

    assert not ledger.is_delivered("fp1", "111")
    ledger.mark_delivered("fp1", "111", "cycle-1")
    assert ledger.is_delivered("fp1", "111")
    assert not ledger.is_delivered("fp1", "222")


def test_markers_expire_after_seven_days():
    tick = Tick()
    store = MemoryStore(clock=tick)
    ledger = Ledger(store)
    ledger.mark_dispatched("fp1", "HIGH", "CORE", "cycle-1")

    tick.now += 7 * 24 * 3600 - 1
    assert ledger.is_dispatched("fp1")
    tick.now += 1
    assert not ledger.is_dispatched("fp1")


def test_circuit_breaker_opens_after_three_failures(ledger, clock):
    url = "https://feeds.example.com/rss"
    ledger.record_source_failure(url)
    ledger.record_source_failure(url)
    assert not ledger.should_skip_source(url)

    state = ledger.record_source_failure(url)
    assert state["failed_count"] == 3
    assert ledger.should_skip_source(url)

    clock.now += timedelta(hours=1, seconds=1)
    assert not ledger.should_skip_source(url)


def test_circuit_breaker_reset(ledger):
    url = "https://feeds.example.com/rss"
    for _ in range(3):
        ledger.record_source_failure(url)
    ledger.reset_source_failures(url)
    assert ledger.get_circuit_breaker(url) is None
    assert not ledger.should_skip_source(url)


def test_health_status(store):
    clock = FrozenClock()
    ledger = Ledger(store, clock=clock)
    assert ledger.get_health_status()["status"] == "degraded"
    assert ledger.get_health_status()["minutes_since_last_run"] is None

    ledger.record_successful_run()
    clock.now += timedelta(minutes=10)
    status = ledger.get_health_status()
    assert status["status"] == "healthy"
    assert status["minutes_since_last_run"] == 10

    clock.now += timedelta(minutes=25)
    assert ledger.get_health_status()["status"] == "degraded"
