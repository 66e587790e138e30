"""
Cache Key Derivation

Keys are deterministic strings built from the session prefix, the entity
name, the operation name and a SHA-1 digest of the canonical options JSON:

    {prefix}:{entity}:{operation}:{sha1(options)}
    {prefix}:__raw__:query:{sha1(sql)}

The canonical JSON keeps mapping insertion order. Two descriptors that
differ only in key order therefore produce different keys.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlcacher.database.records import entity_name
from sqlcacher.errors import InvalidOptionsError

RAW_ENTITY = "__raw__"
RAW_OPERATION = "query"


def _sha1(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _default(value: Any) -> Any:
    """Replace values json cannot encode natively."""
    name = entity_name(value)
    if name is not None:
        return name
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    raise TypeError(f"Object of type {type(value).__name__} is not serializable")


def canonicalize_options(options: Any) -> str:
    """
    Serialize an options descriptor into its canonical JSON text.

    Raises:
        InvalidOptionsError: If the descriptor holds unserializable values
            or circular references
    """
    try:
        return json.dumps(
            options,
            default=_default,
            separators=(",", ":"),
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        raise InvalidOptionsError(f"Query options cannot be hashed: {e}") from e


def hash_options(options: Any) -> str:
    """SHA-1 hex digest of the canonical options JSON."""
    return _sha1(canonicalize_options(options))


def derive_key(prefix: str, entity: str, operation: str, options: Any) -> str:
    """Build the cache key for a structured retrieval."""
    return f"{prefix}:{entity}:{operation}:{hash_options(options)}"


def derive_raw_key(prefix: str, sql: str) -> str:
    """Build the cache key for a raw SQL query."""
    return f"{prefix}:{RAW_ENTITY}:{RAW_OPERATION}:{_sha1(sql)}"


__all__ = [
    "RAW_ENTITY",
    "RAW_OPERATION",
    "canonicalize_options",
    "hash_options",
    "derive_key",
    "derive_raw_key",
]
