"""
Cache Session

Read-through caching of relational queries. A session is configured with a
model, key prefix and TTL, then used to run one logical query at a time:

    widgets = cacher(datasource, store).model("widget").ttl(60)
    row = await widgets.find({"where": {"id": 7}})
    widgets.cache_hit  # False on the first call, True afterwards

Configuration methods return a new session and leave the original
untouched. A session is not meant to be shared between concurrent queries;
cache_hit reflects the most recent call made through it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from sqlcacher.cache.codec import decode_payload, encode_payload
from sqlcacher.cache.keys import RAW_ENTITY, RAW_OPERATION, derive_key, derive_raw_key
from sqlcacher.cache.normalizer import normalize
from sqlcacher.config import get_settings
from sqlcacher.database.operations import Operation
from sqlcacher.database.records import entity_name
from sqlcacher.errors import InvalidOperationError, ModelNotSetError
from sqlcacher.types import CacheStore, DataSource, QueryOptions, SourceResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class QueryRequest:
    """One logical query as it was issued through a session."""

    entity: str
    operation: str
    options: Any = None
    sql: str | None = None

    @property
    def is_raw(self) -> bool:
        return self.sql is not None

    def key(self, prefix: str) -> str:
        if self.sql is not None:
            return derive_raw_key(prefix, self.sql)
        return derive_key(prefix, self.entity, self.operation, self.options)


class CacheSession:
    """Read-through cache in front of a relational data source."""

    def __init__(
        self,
        datasource: DataSource,
        store: CacheStore,
        prefix: str | None = None,
        ttl: int | None = None,
        model: type | None = None,
    ):
        """
        Initialize a cache session.

        Args:
            datasource: Executes retrieval operations and raw queries
            store: Key-value store holding serialized results
            prefix: Key prefix (defaults to settings)
            ttl: Expiry in seconds, 0 for none (defaults to settings)
            model: Mapped class queried by structured operations
        """
        settings = get_settings()
        self._datasource = datasource
        self._store = store
        self._prefix = _check_prefix(settings.cache_key_prefix if prefix is None else prefix)
        self._ttl = _check_ttl(settings.cache_ttl_seconds if ttl is None else ttl)
        self._model = model
        self._entity = entity_name(model) if model is not None else None

        self._cache_hit = False
        self._last: QueryRequest | None = None

    def _replace(self, **changes: Any) -> CacheSession:
        config: dict[str, Any] = {
            "prefix": self._prefix,
            "ttl": self._ttl,
            "model": self._model,
        }
        config.update(changes)
        return CacheSession(self._datasource, self._store, **config)

    # =========================================================================
    # Configuration
    # =========================================================================

    def model(self, name: str | type) -> CacheSession:
        """Select the model queried by structured operations."""
        model = self._datasource.model(name) if isinstance(name, str) else name
        return self._replace(model=model)

    select_entity = model

    def prefix(self, prefix: str) -> CacheSession:
        """Use a different key prefix."""
        return self._replace(prefix=prefix)

    key_prefix = prefix

    def ttl(self, seconds: int) -> CacheSession:
        """Expire cached results after the given number of seconds (0 = never)."""
        return self._replace(ttl=seconds)

    @property
    def entity(self) -> str | None:
        return self._entity

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    @property
    def cache_hit(self) -> bool:
        """Whether the most recent query was served from the cache."""
        return self._cache_hit

    @property
    def last_request(self) -> QueryRequest | None:
        return self._last

    # =========================================================================
    # Retrieval Operations
    # =========================================================================

    async def run(self, operation: Operation | str, options: QueryOptions | None = None) -> Any:
        """
        Run a retrieval operation through the cache.

        Raises:
            InvalidOperationError: Unknown operation name
            ModelNotSetError: No model selected
            InvalidOptionsError: Options cannot be hashed or translated
            CacheBackendError: Store failure
            CacheDecodeError: Cached payload is corrupt or result cannot be encoded
            DataSourceError: Query execution failure
        """
        op = Operation.parse(operation)
        if self._model is None or self._entity is None:
            raise ModelNotSetError()

        request = QueryRequest(self._entity, op.value, {} if options is None else options)
        key = request.key(self._prefix)
        self._last = request

        model = self._model
        return await self._read_through(
            key, lambda: self._datasource.execute(model, op, request.options)
        )

    async def find(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.FIND, options)

    async def find_one(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.FIND_ONE, options)

    async def find_all(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.FIND_ALL, options)

    async def find_and_count(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.FIND_AND_COUNT, options)

    async def find_and_count_all(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.FIND_AND_COUNT_ALL, options)

    async def all(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.ALL, options)

    async def min(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.MIN, options)

    async def max(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.MAX, options)

    async def sum(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.SUM, options)

    async def count(self, options: QueryOptions | None = None) -> Any:
        return await self.run(Operation.COUNT, options)

    async def query(self, sql: str) -> Any:
        """Run a raw SQL query through the cache. No model is needed."""
        request = QueryRequest(RAW_ENTITY, RAW_OPERATION, sql=sql)
        key = request.key(self._prefix)
        self._last = request
        return await self._read_through(key, lambda: self._datasource.execute_raw(sql))

    run_raw_query = query

    async def _read_through(
        self,
        key: str,
        load: Callable[[], Awaitable[SourceResult]],
    ) -> Any:
        payload = await self._store.get(key)
        if payload is not None:
            self._cache_hit = True
            logger.debug("cache_hit", key=key)
            return decode_payload(payload, key)

        self._cache_hit = False
        logger.debug("cache_miss", key=key)

        result = normalize(await load())
        if result is None:
            logger.debug("cache_skip_null", key=key)
            return None

        encoded = encode_payload(result)
        await self._store.set(key, encoded, self._ttl)
        logger.debug("cache_store", key=key, ttl_seconds=self._ttl)
        return result

    # =========================================================================
    # Introspection & Invalidation
    # =========================================================================

    def _request(self, options: Any = None, operation: Operation | str | None = None) -> QueryRequest:
        last = self._last
        if operation is None and options is None and last is not None and last.is_raw:
            return last

        if operation is not None:
            op_name = Operation.parse(operation).value
        elif last is not None and not last.is_raw:
            op_name = last.operation
        else:
            raise InvalidOperationError(None)

        if self._entity is None:
            raise ModelNotSetError()

        if options is None:
            options = last.options if last is not None and not last.is_raw else {}
        return QueryRequest(self._entity, op_name, options)

    def compute_key(
        self,
        sql: str | None = None,
        options: Any = None,
        operation: Operation | str | None = None,
    ) -> str:
        """
        Compute a cache key without touching the store.

        With sql the raw-query key is returned. Otherwise the key is built
        from the most recent request, with options and operation overriding
        its fields.
        """
        if sql is not None:
            return derive_raw_key(self._prefix, sql)
        return self._request(options, operation).key(self._prefix)

    async def clear_cache(
        self,
        options: Any = None,
        operation: Operation | str | None = None,
    ) -> bool:
        """
        Delete the cached result of the most recent request.

        Options and operation override the most recent request's fields.
        cache_hit is left unchanged.

        Returns:
            True if a cached payload was removed
        """
        key = self._request(options, operation).key(self._prefix)
        removed = await self._store.delete(key)
        logger.debug("cache_clear", key=key, removed=removed)
        return removed > 0


def _check_prefix(prefix: str) -> str:
    if not isinstance(prefix, str) or not prefix:
        raise ValueError("Cache key prefix must be a non-empty string")
    if ":" in prefix:
        raise ValueError("Cache key prefix cannot contain ':'")
    return prefix


def _check_ttl(ttl: int) -> int:
    if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl < 0:
        raise ValueError(f"TTL must be a non-negative integer, got {ttl!r}")
    return ttl


def cacher(
    datasource: DataSource,
    store: CacheStore,
    prefix: str | None = None,
    ttl: int | None = None,
) -> CacheSession:
    """Create a cache session for a data source and store."""
    return CacheSession(datasource, store, prefix=prefix, ttl=ttl)


__all__ = [
    "CacheSession",
    "QueryRequest",
    "cacher",
]
