"""
sqlcacher Exceptions

Every failure raised by the caching layer derives from CacherError.
Third-party exceptions (Redis, SQLAlchemy) are translated at the adapter
boundary and chained as __cause__.
"""

from __future__ import annotations


class CacherError(Exception):
    """Base exception for sqlcacher errors."""
    pass


class ModelNotSetError(CacherError):
    """A retrieval operation was invoked before a model was selected."""

    def __init__(self, message: str = "Model not set") -> None:
        super().__init__(message)


class ModelNotFoundError(CacherError, LookupError):
    """The data source has no model registered under the requested name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown model - {name}")


class InvalidOperationError(CacherError, ValueError):
    """The requested retrieval operation is not supported."""

    def __init__(self, operation: object) -> None:
        self.operation = operation
        super().__init__(f"Invalid method - {operation}")


class InvalidOptionsError(CacherError, ValueError):
    """The query options descriptor cannot be hashed or translated."""
    pass


class CacheBackendError(CacherError):
    """The key-value store failed to serve a request."""

    def __init__(self, message: str, *, operation: str, key: str | None = None) -> None:
        self.operation = operation
        self.key = key
        super().__init__(message)


class CacheDecodeError(CacherError):
    """A cached payload is not valid serialized data."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        self.key = key
        super().__init__(message)


class CacheEncodeError(CacheDecodeError):
    """A result could not be serialized for storage."""
    pass


class DataSourceError(CacherError):
    """The underlying database query failed."""
    pass


__all__ = [
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
