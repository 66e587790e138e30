"""
Central Type Definitions for sqlcacher

Type aliases, result variants and the protocols that the cache session
relies on from its collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

# Query options descriptor (where/include/order/...)
QueryOptions = dict[str, Any]


# =============================================================================
# Result Variants
# =============================================================================


class ResultShape(str, Enum):
    """Result variant declared by the data source for each operation."""

    ABSENT = "absent"  # nothing found
    RECORD = "record"  # a single record wrapper exposing to_plain()
    RECORDS = "records"  # list of plain mappings
    COUNTED = "counted"  # {"count": int, "rows": [...]}
    SCALAR = "scalar"  # aggregate value


@dataclass(frozen=True)
class SourceResult:
    """Raw result of a data-source call tagged with its shape."""

    shape: ResultShape
    value: Any = None

    @classmethod
    def absent(cls) -> SourceResult:
        return cls(ResultShape.ABSENT, None)


# =============================================================================
# Collaborator Protocols
# =============================================================================


@runtime_checkable
class PlainRecord(Protocol):
    """A record wrapper that can flatten itself into plain data."""

    def to_plain(self) -> dict[str, Any]: ...


class CacheStore(Protocol):
    """Key-value backend addressed by UTF-8 string keys."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, payload: str, ttl_seconds: int | None = None) -> bool: ...

    async def delete(self, key: str) -> int: ...

    async def close(self) -> None: ...


class DataSource(Protocol):
    """Relational data source exposing named retrieval operations."""

    def model(self, name: str) -> type: ...

    async def execute(self, model: type, operation: Any, options: QueryOptions) -> SourceResult: ...

    async def execute_raw(self, sql: str) -> SourceResult: ...


__all__ = [
    "QueryOptions",
    "ResultShape",
    "SourceResult",
    "PlainRecord",
    "CacheStore",
    "DataSource",
]
