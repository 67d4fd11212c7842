"""Namespaced, TTL-aware keyed store shared by every defense component.

Two backends implement :class:`KeyedWindowStore`:

* :class:`RedisWindowStore` talks to a shared Redis instance and is what every
  request-handling process uses in production.
* :class:`MemoryWindowStore` keeps state on the instance itself. It exists for
  tests and single-worker development; each instance is isolated so test cases
  never leak state into each other.

Every operation is a coroutine and may fail. Backend failures surface as
:class:`StoreUnavailableError` so callers can apply the fail-open policy without
knowing which backend they talk to. ``increment``, ``increment_with_ttl`` and
``record_event`` are atomic; any other read-then-write sequence is not.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

__all__ = [
    "Clock",
    "KeyedWindowStore",
    "MemoryWindowStore",
    "RedisWindowStore",
    "StoreUnavailableError",
]


class StoreUnavailableError(RuntimeError):
    """Raised when the backing store cannot serve a request."""


def _new_member(ts_ms: float) -> str:
    return f"{int(ts_ms)}-{secrets.token_hex(4)}"


class KeyedWindowStore(ABC):
    """Contract shared by the Redis and in-memory backends."""

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Atomically increment an integer counter and return the new value."""

    @abstractmethod
    async def increment_with_ttl(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment a counter and (re)set its expiry."""

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the string value for ``key`` or ``None`` when absent."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""

    @abstractmethod
    async def add_timestamp(
        self, key: str, ts_ms: float, ttl_seconds: int | None = None
    ) -> str:
        """Add a timestamp to a sorted set and return the generated member."""

    @abstractmethod
    async def count_since(self, key: str, min_ts_ms: float) -> int:
        """Count timestamps greater than or equal to ``min_ts_ms``."""

    @abstractmethod
    async def prune_older_than(self, key: str, min_ts_ms: float) -> int:
        """Drop timestamps strictly older than ``min_ts_ms``."""

    @abstractmethod
    async def oldest_timestamp(self, key: str) -> float | None:
        """Return the smallest timestamp held in the set."""

    @abstractmethod
    async def remove_member(self, key: str, member: str) -> None:
        """Remove a single member from a sorted set."""

    @abstractmethod
    async def record_event(
        self, key: str, ts_ms: float, min_ts_ms: float, ttl_seconds: int
    ) -> tuple[str, int]:
        """Prune, add and count in one indivisible step.

        Returns:
            The member that was added and the number of timestamps in the set
            after pruning and adding.
        """

    @abstractmethod
    async def push_capped(self, key: str, value: str, max_len: int, ttl_seconds: int) -> None:
        """Prepend ``value`` to a list, keep ``max_len`` items and refresh the TTL."""

    @abstractmethod
    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        """Return list items between ``start`` and ``end`` inclusive."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend answers."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    async def get_json(self, key: str) -> Any | None:
        """Return the decoded JSON document stored under ``key``."""
        raw = await self.get(key)
        return None if raw is None else json.loads(raw)

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Encode ``value`` as JSON and store it for ``ttl_seconds``."""
        await self.set_with_ttl(key, json.dumps(value), ttl_seconds)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StoreUnavailableError(f"{operation} failed: {exc}") from exc


class RedisWindowStore(KeyedWindowStore):
    """Store backed by ``redis.asyncio``."""

    def __init__(self, client: redis.Redis, namespace: str = "") -> None:
        self._redis = client
        self._namespace = namespace

    @classmethod
    def from_url(
        cls, url: str, *, socket_timeout: float | None = None, namespace: str = ""
    ) -> RedisWindowStore:
        """Build a store from a Redis URL."""
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, namespace=namespace)

    def _k(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def increment(self, key: str) -> int:
        with _translate_errors("increment"):
            return int(await self._redis.incr(self._k(key)))

    async def increment_with_ttl(self, key: str, ttl_seconds: int) -> int:
        with _translate_errors("increment_with_ttl"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(self._k(key))
                pipe.expire(self._k(key), int(ttl_seconds))
                value, _ = await pipe.execute()
        return int(value)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with _translate_errors("set_with_ttl"):
            await self._redis.set(self._k(key), value, ex=int(ttl_seconds))

    async def get(self, key: str) -> str | None:
        with _translate_errors("get"):
            return await self._redis.get(self._k(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("delete"):
            return int(await self._redis.delete(*(self._k(key) for key in keys)))

    async def add_timestamp(
        self, key: str, ts_ms: float, ttl_seconds: int | None = None
    ) -> str:
        member = _new_member(ts_ms)
        with _translate_errors("add_timestamp"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zadd(self._k(key), {member: ts_ms})
                if ttl_seconds:
                    pipe.expire(self._k(key), int(ttl_seconds))
                await pipe.execute()
        return member

    async def count_since(self, key: str, min_ts_ms: float) -> int:
        with _translate_errors("count_since"):
            return int(await self._redis.zcount(self._k(key), min_ts_ms, "+inf"))

    async def prune_older_than(self, key: str, min_ts_ms: float) -> int:
        with _translate_errors("prune_older_than"):
            return int(await self._redis.zremrangebyscore(self._k(key), "-inf", f"({min_ts_ms}"))

    async def oldest_timestamp(self, key: str) -> float | None:
        with _translate_errors("oldest_timestamp"):
            oldest = await self._redis.zrange(self._k(key), 0, 0, withscores=True)
        if not oldest:
            return None
        return float(oldest[0][1])

    async def remove_member(self, key: str, member: str) -> None:
        with _translate_errors("remove_member"):
            await self._redis.zrem(self._k(key), member)

    async def record_event(
        self, key: str, ts_ms: float, min_ts_ms: float, ttl_seconds: int
    ) -> tuple[str, int]:
        member = _new_member(ts_ms)
        with _translate_errors("record_event"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(self._k(key), "-inf", f"({min_ts_ms}")
                pipe.zadd(self._k(key), {member: ts_ms})
                pipe.zcard(self._k(key))
                pipe.expire(self._k(key), int(ttl_seconds))
                results = await pipe.execute()
        return member, int(results[2])

    async def push_capped(self, key: str, value: str, max_len: int, ttl_seconds: int) -> None:
        with _translate_errors("push_capped"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lpush(self._k(key), value)
                pipe.ltrim(self._k(key), 0, max_len - 1)
                pipe.expire(self._k(key), int(ttl_seconds))
                await pipe.execute()

    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        with _translate_errors("list_range"):
            return list(await self._redis.lrange(self._k(key), start, end))

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            logger.warning("Window store ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryWindowStore(KeyedWindowStore):
    """Per-instance store honouring the same TTL semantics as Redis.

    Expiry is evaluated lazily against ``clock`` so tests can move time forward
    without sleeping. Once closed, every call raises
    :class:`StoreUnavailableError`, mirroring a lost Redis connection.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires_at: dict[str, float] = {}
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreUnavailableError("memory store is closed")

    def _live(self, key: str) -> Any:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
        return self._data.get(key)

    def _expire(self, key: str, ttl_seconds: int | None) -> None:
        if ttl_seconds:
            self._expires_at[key] = self._clock() + ttl_seconds

    def _zset(self, key: str) -> dict[str, float]:
        current = self._live(key)
        if current is None:
            current = {}
            self._data[key] = current
        return current

    async def increment(self, key: str) -> int:
        self._ensure_open()
        value = int(self._live(key) or 0) + 1
        self._data[key] = value
        return value

    async def increment_with_ttl(self, key: str, ttl_seconds: int) -> int:
        value = await self.increment(key)
        self._expire(key, ttl_seconds)
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._ensure_open()
        self._data[key] = value
        self._expire(key, ttl_seconds)

    async def get(self, key: str) -> str | None:
        self._ensure_open()
        value = self._live(key)
        return None if value is None else str(value)

    async def delete(self, *keys: str) -> int:
        self._ensure_open()
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                removed += 1
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
        return removed

    async def add_timestamp(
        self, key: str, ts_ms: float, ttl_seconds: int | None = None
    ) -> str:
        self._ensure_open()
        member = _new_member(ts_ms)
        self._zset(key)[member] = ts_ms
        self._expire(key, ttl_seconds)
        return member

    async def count_since(self, key: str, min_ts_ms: float) -> int:
        self._ensure_open()
        entries = self._live(key) or {}
        return sum(1 for score in entries.values() if score >= min_ts_ms)

    async def prune_older_than(self, key: str, min_ts_ms: float) -> int:
        self._ensure_open()
        entries = self._live(key)
        if not entries:
            return 0
        stale = [member for member, score in entries.items() if score < min_ts_ms]
        for member in stale:
            del entries[member]
        return len(stale)

    async def oldest_timestamp(self, key: str) -> float | None:
        self._ensure_open()
        entries = self._live(key)
        if not entries:
            return None
        return min(entries.values())

    async def remove_member(self, key: str, member: str) -> None:
        self._ensure_open()
        entries = self._live(key)
        if entries:
            entries.pop(member, None)

    async def record_event(
        self, key: str, ts_ms: float, min_ts_ms: float, ttl_seconds: int
    ) -> tuple[str, int]:
        await self.prune_older_than(key, min_ts_ms)
        member = await self.add_timestamp(key, ts_ms, ttl_seconds)
        return member, len(self._zset(key))

    async def push_capped(self, key: str, value: str, max_len: int, ttl_seconds: int) -> None:
        self._ensure_open()
        items = self._live(key)
        if items is None:
            items = []
            self._data[key] = items
        items.insert(0, value)
        del items[max_len:]
        self._expire(key, ttl_seconds)

    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        self._ensure_open()
        items = self._live(key) or []
        stop = None if end == -1 else end + 1
        return list(items[start:stop])

    async def ping(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True
