"""
Key-Value Store Module
TTL key-value storage behind dispatched/delivery markers, circuit breakers and subscriber records

Backends:
- MemoryStore: in-process dict, used for tests and dry runs
- SQLiteStore: single-file persistence (kv + sets tables), expired rows purged lazily
- RedisStore: native Redis TTLs and sets

Values are JSON-serializable. Any backend failure is raised as StorageError so the
cycle aborts instead of guessing about dedup state.
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Tuple

import redis
from loguru import logger


class StorageError(Exception):
    """Raised when the ledger store cannot be read or written"""
    pass


class KVStore:
    """Interface shared by every backend"""

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def get(self, key: str) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def sadd(self, name: str, member: str) -> None:
        raise NotImplementedError

    def srem(self, name: str, member: str) -> None:
        raise NotImplementedError

    def smembers(self, name: str) -> Set[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemoryStore(KVStore):
    """Dict-backed store; `clock` makes expiry testable"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._live(key)
            # Round-trip through JSON so callers never share mutable state with the store
            return json.loads(entry[0]) if entry else None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (json.dumps(value), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def sadd(self, name: str, member: str) -> None:
        with self._lock:
            self._sets.setdefault(name, set()).add(str(member))

    def srem(self, name: str, member: str) -> None:
        with self._lock:
            self._sets.get(name, set()).discard(str(member))

    def smembers(self, name: str) -> Set[str]:
        with self._lock:
            return set(self._sets.get(name, set()))


class SQLiteStore(KVStore):
    """
    SQLite-backed store

    Tables:
        kv(key TEXT PRIMARY KEY, value TEXT, expires_at REAL NULL)
        sets(name TEXT, member TEXT, PRIMARY KEY(name, member))
    """

    def __init__(self, path: str, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self._clock = clock
        try:
            if str(path) != ":memory:":
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(path), timeout=30)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL, expires_at REAL)"
            )
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS sets (name TEXT NOT NULL, member TEXT NOT NULL, PRIMARY KEY (name, member))"
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open SQLite store at {path}: {e}") from e
        logger.info(f"SQLite store ready at {path}")
        self.purge_expired()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}") from e

    def purge_expired(self) -> int:
        cur = self._execute("DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (self._clock(),))
        if cur.rowcount:
            logger.debug(f"Purged {cur.rowcount} expired keys")
        return cur.rowcount

    def _row(self, key: str) -> Optional[str]:
        cur = self._execute(
            "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, self._clock()),
        )
        row = cur.fetchone()
        return row[0] if row else None

    def exists(self, key: str) -> bool:
        return self._row(key) is not None

    def get(self, key: str) -> Any:
        raw = self._row(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._execute(
            "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at",
            (key, json.dumps(value), expires_at),
        )

    def delete(self, key: str) -> None:
        self._execute("DELETE FROM kv WHERE key = ?", (key,))

    def sadd(self, name: str, member: str) -> None:
        self._execute("INSERT OR IGNORE INTO sets (name, member) VALUES (?, ?)", (name, str(member)))

    def srem(self, name: str, member: str) -> None:
        self._execute("DELETE FROM sets WHERE name = ? AND member = ?", (name, str(member)))

    def smembers(self, name: str) -> Set[str]:
        cur = self._execute("SELECT member FROM sets WHERE name = ?", (name,))
        return {row[0] for row in cur.fetchall()}

    def close(self) -> None:
        try:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
        except sqlite3.Error as e:
            logger.warning(f"SQLite close failed: {e}")


class RedisStore(KVStore):
    """Redis-backed store; values are stored as JSON strings"""

    def __init__(self, url: str = None, client: "redis.Redis" = None):
        if client is None:
            if not url:
                raise StorageError("REDIS_URL is required for the redis store backend")
            client = redis.from_url(url, decode_responses=True)
        self._client = client

    def _call(self, method: str, *args, **kwargs):
        try:
            return getattr(self._client, method)(*args, **kwargs)
        except redis.RedisError as e:
            raise StorageError(f"Redis {method} failed: {e}") from e

    def exists(self, key: str) -> bool:
        return bool(self._call("exists", key))

    def get(self, key: str) -> Any:
        raw = self._call("get", key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if ttl:
            self._call("set", key, json.dumps(value), ex=int(ttl))
        else:
            self._call("set", key, json.dumps(value))

    def delete(self, key: str) -> None:
        self._call("delete", key)

    def sadd(self, name: str, member: str) -> None:
        self._call("sadd", name, str(member))

    def srem(self, name: str, member: str) -> None:
        self._call("srem", name, str(member))

    def smembers(self, name: str) -> Set[str]:
        return {str(m) for m in (self._call("smembers", name) or set())}

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning(f"Redis close failed: {e}")


def build_store(backend: str = "memory", path: str = None, redis_url: str = None) -> KVStore:
    """Create the store backend named in settings"""
    if backend == "sqlite":
        return SQLiteStore(path or "data/marketwire.sqlite")
    if backend == "redis":
        return RedisStore(url=redis_url)
    if backend == "memory":
        logger.warning("Using in-memory store: dedup and delivery markers will not survive restarts")
        return MemoryStore()
    raise ValueError(f"Unknown store backend: {backend}")
