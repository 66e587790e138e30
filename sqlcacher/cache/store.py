"""
Cache Store Adapters

Redis-backed key-value storage for serialized query results, with an
in-memory fallback for when Redis is not configured or unavailable.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from sqlcacher.config import Settings, get_settings
from sqlcacher.errors import CacheBackendError, CacheDecodeError

logger = structlog.get_logger(__name__)

# Failures raised by the Redis client and the network stack underneath it
BACKEND_ERRORS = (RedisError, ConnectionError, TimeoutError, OSError)


def _check_ttl(ttl_seconds: int | None) -> int | None:
    if ttl_seconds is None or ttl_seconds == 0:
        return None
    if ttl_seconds < 0:
        raise ValueError(f"TTL must be zero or positive, got {ttl_seconds}")
    return ttl_seconds


class RedisCacheStore:
    """
    Redis-backed cache store.

    Payloads are stored verbatim as string values. Errors are translated
    into CacheBackendError and never retried.
    """

    def __init__(self, redis_client: Any):
        self._redis = redis_client
        self._logger = logger.bind(backend="redis")
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}

    @property
    def client(self) -> Any:
        return self._redis

    def _backend_error(self, operation: str, key: str | None, error: Exception) -> CacheBackendError:
        self._logger.error("cache_backend_error", operation=operation, key=key, error=str(error))
        return CacheBackendError(
            f"Redis {operation} failed: {error}", operation=operation, key=key
        )

    async def get(self, key: str) -> str | None:
        """Get the payload stored under key, or None when absent."""
        try:
            data = await self._redis.get(key)
        except BACKEND_ERRORS as e:
            raise self._backend_error("get", key, e) from e

        if data is None:
            self._stats["misses"] += 1
            return None

        self._stats["hits"] += 1
        if isinstance(data, bytes):
            try:
                return data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CacheDecodeError(f"Cached payload is not UTF-8: {e}", key=key) from e
        return str(data)

    async def set(self, key: str, payload: str, ttl_seconds: int | None = None) -> bool:
        """
        Store a payload.

        Args:
            key: Cache key
            payload: Serialized result
            ttl_seconds: Expiry in seconds (None or 0 = no expiry)

        Returns:
            True if Redis acknowledged the write
        """
        ttl = _check_ttl(ttl_seconds)
        try:
            if ttl is None:
                result = await self._redis.set(key, payload)
            else:
                result = await self._redis.set(key, payload, ex=ttl)
        except BACKEND_ERRORS as e:
            raise self._backend_error("set", key, e) from e

        self._stats["sets"] += 1
        return bool(result)

    async def delete(self, key: str) -> int:
        """Delete a key, returning the number of keys removed."""
        try:
            removed = await self._redis.delete(key)
        except BACKEND_ERRORS as e:
            raise self._backend_error("delete", key, e) from e

        self._stats["deletes"] += int(removed)
        return int(removed)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except BACKEND_ERRORS as e:
            raise self._backend_error("ping", None, e) from e

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except BACKEND_ERRORS as e:
            raise self._backend_error("close", None, e) from e

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "backend": "redis"}


@dataclass
class _MemoryEntry:
    payload: str
    stored_at: float
    expires_at: float | None = None


class InMemoryCacheStore:
    """
    In-memory fallback store.

    Used when Redis is not configured or unavailable, and in tests.
    """

    def __init__(self, max_size: int = 10000, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._entries: dict[str, _MemoryEntry] = {}
        self._max_size = max_size
        self._clock = clock
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._live(key) is not None

    def _live(self, key: str) -> _MemoryEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        if entry is None:
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return entry.payload

    async def set(self, key: str, payload: str, ttl_seconds: int | None = None) -> bool:
        ttl = _check_ttl(ttl_seconds)
        now = self._clock()

        # Evict oldest entry if at capacity
        if key not in self._entries and len(self._entries) >= self._max_size:
            oldest_key = min(self._entries, key=lambda k: self._entries[k].stored_at)
            del self._entries[oldest_key]

        self._entries[key] = _MemoryEntry(
            payload=payload,
            stored_at=now,
            expires_at=now + ttl if ttl is not None else None,
        )
        self._stats["sets"] += 1
        return True

    async def delete(self, key: str) -> int:
        if self._entries.pop(key, None) is None:
            return 0
        self._stats["deletes"] += 1
        return 1

    async def close(self) -> None:
        self._entries.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "total_cached": len(self._entries),
            "max_size": self._max_size,
            "backend": "memory",
        }


# Global store instance
_cache_store: RedisCacheStore | InMemoryCacheStore | None = None


async def init_cache_store(
    settings: Settings | None = None,
) -> RedisCacheStore | InMemoryCacheStore:
    """Initialize the cache store with Redis or fall back to memory."""
    global _cache_store

    if _cache_store is not None:
        return _cache_store

    settings = settings or get_settings()

    if not settings.redis_url:
        logger.info("cache_store_initialized", backend="memory")
        _cache_store = InMemoryCacheStore(max_size=settings.cache_memory_max_size)
        return _cache_store

    client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        password=settings.redis_password,
        decode_responses=True,
    )
    store = RedisCacheStore(client)

    try:
        # Test connection
        await store.ping()
    except CacheBackendError as e:
        if not settings.cache_fallback_to_memory:
            raise
        logger.warning("redis_unavailable_using_memory", error=str(e))
        _cache_store = InMemoryCacheStore(max_size=settings.cache_memory_max_size)
        return _cache_store

    _cache_store = store
    logger.info("cache_store_initialized", backend="redis")
    return _cache_store


def get_cache_store() -> RedisCacheStore | InMemoryCacheStore | None:
    """Get the cache store instance."""
    return _cache_store


async def close_cache_store() -> None:
    """Close the cache store connection."""
    global _cache_store

    if _cache_store is None:
        return

    store, _cache_store = _cache_store, None
    try:
        await store.close()
    except CacheBackendError as e:
        logger.warning("cache_store_close_error", error=str(e))
    logger.info("cache_store_closed")


__all__ = [
    "BACKEND_ERRORS",
    "RedisCacheStore",
    "InMemoryCacheStore",
    "init_cache_store",
    "get_cache_store",
    "close_cache_store",
]
