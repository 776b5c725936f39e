"""Realtime session store.

Holds the fast, volatile state of in-flight attempts: presence, current
question, counters, the latest answer per question and the append-only
activity log. Nothing here is durable; the finalizer copies what it needs
into the database when the attempt ends.

Data is addressed by slash-separated paths, e.g.::

    sessions/<attempt_id>              → hash of session fields
    sessions/<attempt_id>/answers      → hash  question_id → answer
    sessions/<attempt_id>/time         → hash  question_id → seconds
    sessions/<attempt_id>/events       → list (append-only)
    archived/<attempt_id>              → hash (copy kept after finalization)

Two backends share the :class:`RealtimeStore` interface: Redis for
deployments and an in-process store for tests and single-node dev runs.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import redis

from attempt_service.config import settings
from attempt_service.services.errors import RealtimeUnavailableError

logger = logging.getLogger(__name__)


def session_path(attempt_id) -> str:
    return f"sessions/{attempt_id}"


def answers_path(attempt_id) -> str:
    return f"sessions/{attempt_id}/answers"


def time_path(attempt_id) -> str:
    return f"sessions/{attempt_id}/time"


def log_path(attempt_id) -> str:
    return f"sessions/{attempt_id}/events"


def archive_path(attempt_id) -> str:
    return f"archived/{attempt_id}"


class RealtimeStore(ABC):
    """Path-addressed hashes plus append-only logs."""

    @abstractmethod
    def get(self, path: str) -> dict[str, Any] | None:
        """Return every field stored at *path*, or None if nothing is there."""
        raise NotImplementedError

    @abstractmethod
    def get_field(self, path: str, field: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    def set(self, path: str, values: dict[str, Any], ttl: int | None = None) -> None:
        """Replace everything at *path* with *values*."""
        raise NotImplementedError

    @abstractmethod
    def update(self, path: str, values: dict[str, Any]) -> None:
        """Merge *values* into the hash at *path* (field-level overwrite)."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, path: str, field: str, amount: int = 1) -> int:
        """Atomically add *amount* to an integer field and return the new value."""
        raise NotImplementedError

    @abstractmethod
    def append(self, path: str, record: dict[str, Any]) -> int:
        """Append *record* to the log at *path*; returns its 1-based sequence."""
        raise NotImplementedError

    @abstractmethod
    def read_log(self, path: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, *paths: str) -> None:
        raise NotImplementedError


# ── Redis ─────────────────────────────────────────────────────────────────────


_pool: redis.ConnectionPool | None = None


def _get_redis() -> redis.Redis:
    """Return a Redis client backed by a shared connection pool."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=10,
        )
    return redis.Redis(connection_pool=_pool)


class RedisRealtimeStore(RealtimeStore):
    """Each path is a Redis hash (fields JSON-encoded) or a Redis list.

    Every write refreshes the key TTL so abandoned sessions expire on their own.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        prefix: str | None = None,
        ttl: int | None = None,
    ) -> None:
        self._client = client
        self._prefix = prefix if prefix is not None else settings.REALTIME_KEY_PREFIX
        self._ttl = ttl or settings.REALTIME_SESSION_TTL_SECONDS

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = _get_redis()
        return self._client

    def _key(self, path: str) -> str:
        return f"{self._prefix}:{path.replace('/', ':')}"

    def get(self, path: str) -> dict[str, Any] | None:
        try:
            raw = self.client.hgetall(self._key(path))
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime read failed: {e}") from e
        if not raw:
            return None
        return {field: json.loads(value) for field, value in raw.items()}

    def get_field(self, path: str, field: str) -> Any:
        try:
            raw = self.client.hget(self._key(path), field)
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime read failed: {e}") from e
        return json.loads(raw) if raw is not None else None

    def set(self, path: str, values: dict[str, Any], ttl: int | None = None) -> None:
        key = self._key(path)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(key)
            if values:
                pipe.hset(key, mapping=self._encode(values))
                pipe.expire(key, ttl or self._ttl)
            pipe.execute()
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime write failed: {e}") from e

    def update(self, path: str, values: dict[str, Any]) -> None:
        if not values:
            return
        key = self._key(path)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(key, mapping=self._encode(values))
            pipe.expire(key, self._ttl)
            pipe.execute()
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime write failed: {e}") from e

    def increment(self, path: str, field: str, amount: int = 1) -> int:
        key = self._key(path)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hincrby(key, field, amount)
            pipe.expire(key, self._ttl)
            value, _ = pipe.execute()
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime write failed: {e}") from e
        return int(value)

    def append(self, path: str, record: dict[str, Any]) -> int:
        key = self._key(path)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.rpush(key, json.dumps(record, default=str))
            pipe.expire(key, self._ttl)
            length, _ = pipe.execute()
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime write failed: {e}") from e
        return int(length)

    def read_log(self, path: str) -> list[dict[str, Any]]:
        try:
            raw = self.client.lrange(self._key(path), 0, -1)
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime read failed: {e}") from e
        return [json.loads(item) for item in raw]

    def delete(self, *paths: str) -> None:
        if not paths:
            return
        try:
            self.client.delete(*(self._key(p) for p in paths))
        except redis.RedisError as e:
            raise RealtimeUnavailableError(f"Realtime delete failed: {e}") from e

    @staticmethod
    def _encode(values: dict[str, Any]) -> dict[str, str]:
        return {field: json.dumps(value, default=str) for field, value in values.items()}


# ── In-process ────────────────────────────────────────────────────────────────


class InMemoryRealtimeStore(RealtimeStore):
    """Dict-backed store. Values are deep-copied in and out, like a network store."""

    def __init__(self) -> None:
        self._hashes: dict[str, dict[str, Any]] = {}
        self._logs: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> dict[str, Any] | None:
        with self._lock:
            data = self._hashes.get(path)
            return copy.deepcopy(data) if data else None

    def get_field(self, path: str, field: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._hashes.get(path, {}).get(field))

    def set(self, path: str, values: dict[str, Any], ttl: int | None = None) -> None:
        with self._lock:
            self._hashes[path] = copy.deepcopy(values)

    def update(self, path: str, values: dict[str, Any]) -> None:
        with self._lock:
            self._hashes.setdefault(path, {}).update(copy.deepcopy(values))

    def increment(self, path: str, field: str, amount: int = 1) -> int:
        with self._lock:
            data = self._hashes.setdefault(path, {})
            data[field] = int(data.get(field) or 0) + amount
            return data[field]

    def append(self, path: str, record: dict[str, Any]) -> int:
        with self._lock:
            log = self._logs.setdefault(path, [])
            log.append(copy.deepcopy(record))
            return len(log)

    def read_log(self, path: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._logs.get(path, []))

    def delete(self, *paths: str) -> None:
        with self._lock:
            for path in paths:
                self._hashes.pop(path, None)
                self._logs.pop(path, None)


# ── Wiring ────────────────────────────────────────────────────────────────────


_store: RealtimeStore | None = None


def get_realtime_store() -> RealtimeStore:
    """FastAPI dependency: returns the process-wide realtime store."""
    global _store
    if _store is None:
        backend = (settings.REALTIME_BACKEND or "redis").lower()
        if backend == "memory":
            logger.warning("Using in-process realtime store; sessions are not shared")
            _store = InMemoryRealtimeStore()
        else:
            _store = RedisRealtimeStore()
    return _store
