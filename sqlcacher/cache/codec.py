"""
Cached payload encoding.
"""

import json
from typing import Any

from sqlcacher.errors import CacheDecodeError, CacheEncodeError


def encode_payload(value: Any) -> str:
    """Serialize a normalized result into compact JSON text."""
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise CacheEncodeError(f"Result cannot be cached: {e}") from e


def decode_payload(payload: str | bytes, key: str | None = None) -> Any:
    """Parse a cached payload back into plain data."""
    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = bytes(payload).decode("utf-8")
        return json.loads(payload)
    except (UnicodeDecodeError, ValueError) as e:
        raise CacheDecodeError(f"Corrupt cached payload: {e}", key=key) from e
