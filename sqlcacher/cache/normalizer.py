"""
Result Normalization

Turns a tagged data-source result into plain serializable data so that a
cache hit and a cache miss hand callers values of the same shape.
"""

from collections.abc import Mapping
from typing import Any

from sqlcacher.errors import DataSourceError
from sqlcacher.types import PlainRecord, ResultShape, SourceResult


def normalize(result: SourceResult) -> Any:
    """
    Reduce a data-source result to plain data.

    Single records are flattened through their to_plain() method. Lists,
    counted results and scalars are already plain and pass through untouched.
    """
    if result.value is None or result.shape is ResultShape.ABSENT:
        return None

    if result.shape is ResultShape.RECORD:
        if isinstance(result.value, PlainRecord):
            return result.value.to_plain()
        if isinstance(result.value, Mapping):
            return dict(result.value)
        raise DataSourceError(
            f"Record result of type {type(result.value).__name__} cannot be flattened"
        )

    return result.value
