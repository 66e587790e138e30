"""
sqlcacher - Query Result Caching for SQLAlchemy

Read-through caching of relational query results in Redis.
"""

__version__ = "1.0.0"

from sqlcacher.cache import (  # noqa: E402
    CacheSession,
    InMemoryCacheStore,
    RedisCacheStore,
    cacher,
    close_cache_store,
    get_cache_store,
    init_cache_store,
)
from sqlcacher.database import (  # noqa: E402
    DatabaseClient,
    Operation,
    SQLAlchemyDataSource,
)
from sqlcacher.errors import (  # noqa: E402
    CacheBackendError,
    CacheDecodeError,
    CacheEncodeError,
    CacherError,
    DataSourceError,
    InvalidOperationError,
    InvalidOptionsError,
    ModelNotFoundError,
    ModelNotSetError,
)

__all__ = [
    "__version__",
    "CacheSession",
    "cacher",
    "RedisCacheStore",
    "InMemoryCacheStore",
    "init_cache_store",
    "get_cache_store",
    "close_cache_store",
    "DatabaseClient",
    "SQLAlchemyDataSource",
    "Operation",
    "CacherError",
    "ModelNotSetError",
    "ModelNotFoundError",
    "InvalidOperationError",
    "InvalidOptionsError",
    "CacheBackendError",
    "CacheDecodeError",
    "CacheEncodeError",
    "DataSourceError",
]
