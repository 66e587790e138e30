"""
sqlcacher Cache

Key derivation, payload encoding, store adapters and the cache session.
"""

from sqlcacher.cache.codec import decode_payload, encode_payload
from sqlcacher.cache.keys import canonicalize_options, derive_key, derive_raw_key
from sqlcacher.cache.normalizer import normalize
from sqlcacher.cache.session import CacheSession, QueryRequest, cacher
from sqlcacher.cache.store import (
    InMemoryCacheStore,
    RedisCacheStore,
    close_cache_store,
    get_cache_store,
    init_cache_store,
)

__all__ = [
    "CacheSession",
    "QueryRequest",
    "cacher",
    "canonicalize_options",
    "derive_key",
    "derive_raw_key",
    "normalize",
    "encode_payload",
    "decode_payload",
    "RedisCacheStore",
    "InMemoryCacheStore",
    "init_cache_store",
    "get_cache_store",
    "close_cache_store",
]
