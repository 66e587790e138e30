"""
ORM Record Extraction

Converts SQLAlchemy ORM instances into plain, JSON-native mappings so that
results look the same whether they come from the database or from the cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Table
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper

# Relationship key -> nested include tree
IncludeTree = dict[str, "IncludeTree"]


def entity_name(value: Any) -> str | None:
    """
    Return the entity name of a data-source model reference.

    Mapped classes, mappers and tables resolve to their table name.
    Anything else returns None.
    """
    if isinstance(value, Table):
        return value.name
    if isinstance(value, Mapper):
        return value.local_table.name  # type: ignore[union-attr]
    if isinstance(value, type):
        mapper = sa_inspect(value, raiseerr=False)
        if isinstance(mapper, Mapper):
            return mapper.local_table.name  # type: ignore[union-attr]
    return None


def jsonable(value: Any) -> Any:
    """Convert a column value into its JSON-native form."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def jsonable_mapping(row: Any) -> dict[str, Any]:
    """Convert a result row mapping into a plain dict."""
    return {str(k): jsonable(v) for k, v in dict(row).items()}


def to_plain(
    instance: Any,
    attributes: list[str] | None = None,
    includes: IncludeTree | None = None,
) -> dict[str, Any]:
    """
    Flatten an ORM instance into a plain dict.

    Only column attributes and explicitly included relationships are read,
    so no lazy loads are triggered and no back-references are followed.

    Args:
        instance: A mapped ORM instance
        attributes: Column attributes to extract (defaults to all columns)
        includes: Relationships to extract, with their own nested includes

    Returns:
        Plain mapping of attribute name to JSON-native value
    """
    state = sa_inspect(instance)
    mapper = state.mapper
    if attributes is None:
        # Deferred columns that were never loaded stay out of the result
        unloaded = state.unloaded
        keys = [attr.key for attr in mapper.column_attrs if attr.key not in unloaded]
    else:
        keys = attributes

    plain: dict[str, Any] = {key: jsonable(getattr(instance, key)) for key in keys}

    for rel_key, nested in (includes or {}).items():
        related = getattr(instance, rel_key)
        if related is None:
            plain[rel_key] = None
        elif mapper.relationships[rel_key].uselist:
            plain[rel_key] = [to_plain(item, None, nested) for item in related]
        else:
            plain[rel_key] = to_plain(related, None, nested)

    return plain


@dataclass(frozen=True)
class OrmRecord:
    """A single ORM instance together with the shape it was loaded with."""

    instance: Any
    attributes: list[str] | None = None
    includes: IncludeTree = field(default_factory=dict)

    def to_plain(self) -> dict[str, Any]:
        return to_plain(self.instance, self.attributes, self.includes)


__all__ = [
    "IncludeTree",
    "OrmRecord",
    "entity_name",
    "jsonable",
    "jsonable_mapping",
    "to_plain",
]
