"""
sqlcacher Database Layer

Async SQLAlchemy client, ORM record extraction and retrieval operations.
"""

from sqlcacher.database.client import DatabaseClient, close_db_client, get_db_client
from sqlcacher.database.operations import (
    OPERATIONS,
    Operation,
    OperationSpec,
    QueryPlan,
    SQLAlchemyDataSource,
    build_plan,
)
from sqlcacher.database.records import OrmRecord, entity_name, jsonable, to_plain

__all__ = [
    "DatabaseClient",
    "get_db_client",
    "close_db_client",
    "Operation",
    "OperationSpec",
    "OPERATIONS",
    "QueryPlan",
    "SQLAlchemyDataSource",
    "build_plan",
    "OrmRecord",
    "entity_name",
    "jsonable",
    "to_plain",
]
