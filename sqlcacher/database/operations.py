"""
Retrieval Operations

The fixed set of retrieval operations a cache session can run, the lookup
table mapping each one to its SQLAlchemy implementation and declared result
shape, and the data source that executes them.

Options descriptor keys:
    where       {"column": value | [values] | None | {"op": value}, "and": [...], "or": [...]}
    attributes  ["column", ...]
    include     ["relationship" | MappedClass | {"association": ..., "include": [...]}]
    order       ["column" | "-column" | ["column", "ASC"|"DESC"], ...]
    limit       int
    offset      int
    pk          primary key value (find)
    column      aggregated column (min, max, sum)
    distinct    count distinct values of column / primary key (count)
"""

from __future__ import annotations

import operator
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import Select, and_, distinct, func, or_, select, true
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapper, RelationshipProperty, load_only, selectinload

from sqlcacher.database.client import DatabaseClient
from sqlcacher.database.records import (
    IncludeTree,
    OrmRecord,
    entity_name,
    jsonable,
    jsonable_mapping,
)
from sqlcacher.errors import (
    DataSourceError,
    InvalidOperationError,
    InvalidOptionsError,
    ModelNotFoundError,
)
from sqlcacher.monitoring.logging import log_duration
from sqlcacher.types import QueryOptions, ResultShape, SourceResult

logger = structlog.get_logger(__name__)


class Operation(str, Enum):
    """Retrieval operations supported by the cache session."""

    FIND = "find"  # point lookup
    FIND_ONE = "find_one"
    FIND_ALL = "find_all"
    FIND_AND_COUNT = "find_and_count"
    FIND_AND_COUNT_ALL = "find_and_count_all"
    ALL = "all"
    MIN = "min"
    MAX = "max"
    SUM = "sum"
    COUNT = "count"

    @classmethod
    def parse(cls, name: Operation | str) -> Operation:
        """Resolve an operation name, rejecting anything outside the set."""
        if isinstance(name, Operation):
            return name
        try:
            return cls(name)
        except ValueError:
            raise InvalidOperationError(name) from None


OPTION_KEYS = frozenset(
    {"where", "attributes", "include", "order", "limit", "offset", "pk", "column", "distinct"}
)


def _between(column: Any, bounds: Any) -> Any:
    if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
        raise InvalidOptionsError("'between' expects a [low, high] pair")
    return column.between(*bounds)


OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "in": lambda column, value: column.in_(list(value)),
    "not_in": lambda column, value: column.not_in(list(value)),
    "like": lambda column, value: column.like(value),
    "ilike": lambda column, value: column.ilike(value),
    "is": lambda column, value: column.is_(value),
    "is_not": lambda column, value: column.is_not(value),
    "between": _between,
}


# =============================================================================
# Options -> Query Plan
# =============================================================================


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _mapper(model: type) -> Mapper[Any]:
    mapper = sa_inspect(model, raiseerr=False)
    if not isinstance(mapper, Mapper):
        raise InvalidOptionsError(f"{model!r} is not a mapped class")
    return mapper


def _column(mapper: Mapper[Any], name: Any) -> Any:
    if not isinstance(name, str) or name not in mapper.column_attrs:
        raise InvalidOptionsError(
            f"Unknown column '{name}' on {entity_name(mapper)}"
        )
    return getattr(mapper.class_, name)


def _relationship(mapper: Mapper[Any], target: Any) -> RelationshipProperty[Any]:
    if isinstance(target, str):
        if target in mapper.relationships:
            return mapper.relationships[target]
    else:
        name = entity_name(target)
        if name is not None:
            for rel in mapper.relationships:
                if entity_name(rel.mapper) == name:
                    return rel
    raise InvalidOptionsError(
        f"{entity_name(mapper)} has no relationship matching {target!r}"
    )


def _combine(clauses: list[Any], conjunction: Callable[..., Any] = and_) -> Any:
    if not clauses:
        return true()
    if len(clauses) == 1:
        return clauses[0]
    return conjunction(*clauses)


def build_where(mapper: Mapper[Any], where: Any) -> list[Any]:
    """Translate a where mapping into SQLAlchemy criteria."""
    if where is None:
        return []
    if not isinstance(where, Mapping):
        raise InvalidOptionsError("'where' must be a mapping")

    clauses: list[Any] = []
    for key, condition in where.items():
        if key in ("and", "or"):
            if not isinstance(condition, (list, tuple)):
                raise InvalidOptionsError(f"'{key}' expects a list of where mappings")
            groups = [_combine(build_where(mapper, sub)) for sub in condition]
            clauses.append(_combine(groups, and_ if key == "and" else or_))
            continue

        column = _column(mapper, key)
        if isinstance(condition, Mapping):
            for op_name, value in condition.items():
                op = OPERATORS.get(op_name)
                if op is None:
                    raise InvalidOptionsError(f"Unsupported operator '{op_name}'")
                clauses.append(op(column, value))
        elif condition is None:
            clauses.append(column.is_(None))
        elif isinstance(condition, (list, tuple, set, frozenset)):
            clauses.append(column.in_(list(condition)))
        else:
            clauses.append(column == condition)

    return clauses


def build_order(mapper: Mapper[Any], order: Any) -> list[Any]:
    """Translate order items into ORDER BY clauses."""
    clauses = []
    for item in _as_list(order):
        if isinstance(item, str):
            descending = item.startswith("-")
            name = item[1:] if descending else item
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            name, direction = item
            if not isinstance(direction, str) or direction.upper() not in ("ASC", "DESC"):
                raise InvalidOptionsError(f"Invalid order direction {direction!r}")
            descending = direction.upper() == "DESC"
        else:
            raise InvalidOptionsError(f"Invalid order item {item!r}")

        column = _column(mapper, name)
        clauses.append(column.desc() if descending else column.asc())
    return clauses


def build_includes(mapper: Mapper[Any], include: Any) -> tuple[list[Any], IncludeTree]:
    """Translate include items into selectin loaders and an include tree."""
    loaders: list[Any] = []
    tree: IncludeTree = {}

    for item in _as_list(include):
        target = item
        nested: Any = None
        if isinstance(item, Mapping):
            target = item.get("association", item.get("model"))
            nested = item.get("include")
            if target is None:
                raise InvalidOptionsError("Include entries need an 'association' or 'model'")

        rel = _relationship(mapper, target)
        loader = selectinload(getattr(mapper.class_, rel.key))
        nested_loaders, nested_tree = build_includes(rel.mapper, nested)
        if nested_loaders:
            loader = loader.options(*nested_loaders)

        loaders.append(loader)
        tree[rel.key] = nested_tree

    return loaders, tree


def _non_negative_int(options: Mapping[str, Any], key: str) -> int | None:
    value = options.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidOptionsError(f"'{key}' must be a non-negative integer")
    return value


def _pk_criteria(mapper: Mapper[Any], pk: Any) -> list[Any]:
    columns = list(mapper.primary_key)
    if isinstance(pk, Mapping):
        return [_column(mapper, name) == value for name, value in pk.items()]
    values = list(pk) if isinstance(pk, (list, tuple)) else [pk]
    if len(values) != len(columns):
        raise InvalidOptionsError(
            f"{entity_name(mapper)} primary key has {len(columns)} column(s)"
        )
    return [column == value for column, value in zip(columns, values)]


@dataclass
class QueryPlan:
    """A validated options descriptor bound to a model."""

    model: type
    criteria: list[Any] = field(default_factory=list)
    order_by: list[Any] = field(default_factory=list)
    loaders: list[Any] = field(default_factory=list)
    attributes: list[str] | None = None
    includes: IncludeTree = field(default_factory=dict)
    limit: int | None = None
    offset: int | None = None
    pk_criteria: list[Any] = field(default_factory=list)
    column: Any = None
    distinct: bool = False

    def select(self) -> Select[Any]:
        stmt = select(self.model)
        if self.criteria:
            stmt = stmt.where(*self.criteria)
        if self.order_by:
            stmt = stmt.order_by(*self.order_by)
        if self.offset is not None:
            stmt = stmt.offset(self.offset)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        if self.loaders:
            stmt = stmt.options(*self.loaders)
        return stmt

    def scalar_select(self, expression: Any) -> Select[Any]:
        stmt = select(expression).select_from(self.model)
        if self.criteria:
            stmt = stmt.where(*self.criteria)
        return stmt

    def require_column(self, operation: Operation) -> Any:
        if self.column is None:
            raise InvalidOptionsError(f"'{operation.value}' requires a 'column' option")
        return self.column

    def record(self, instance: Any) -> OrmRecord:
        return OrmRecord(instance, self.attributes, self.includes)


def build_plan(model: type, options: QueryOptions | None) -> QueryPlan:
    """Validate an options descriptor and bind it to a model."""
    options = options or {}
    if not isinstance(options, Mapping):
        raise InvalidOptionsError("Query options must be a mapping")

    unknown = set(options) - OPTION_KEYS
    if unknown:
        raise InvalidOptionsError(f"Unsupported option(s): {', '.join(sorted(map(str, unknown)))}")

    mapper = _mapper(model)
    plan = QueryPlan(model=model)
    plan.criteria = build_where(mapper, options.get("where"))
    plan.order_by = build_order(mapper, options.get("order"))
    plan.limit = _non_negative_int(options, "limit")
    plan.offset = _non_negative_int(options, "offset")
    plan.distinct = bool(options.get("distinct", False))

    attributes = options.get("attributes")
    if attributes is not None:
        columns = [_column(mapper, name) for name in _as_list(attributes)]
        plan.attributes = [column.key for column in columns]
        plan.loaders.append(load_only(*columns))

    include_loaders, plan.includes = build_includes(mapper, options.get("include"))
    plan.loaders.extend(include_loaders)

    if options.get("pk") is not None:
        plan.pk_criteria = _pk_criteria(mapper, options["pk"])
    if options.get("column") is not None:
        plan.column = _column(mapper, options["column"])

    return plan


# =============================================================================
# Operation Handlers
# =============================================================================

Handler = Callable[[AsyncSession, QueryPlan, Operation], Awaitable[Any]]


async def _find_one(session: AsyncSession, plan: QueryPlan, operation: Operation) -> Any:
    stmt = plan.select().limit(1)
    instance = (await session.execute(stmt)).scalars().first()
    return plan.record(instance) if instance is not None else None


async def _find(session: AsyncSession, plan: QueryPlan, operation: Operation) -> Any:
    if plan.pk_criteria:
        stmt = plan.select().where(*plan.pk_criteria).limit(1)
        instance = (await session.execute(stmt)).scalars().first()
        return plan.record(instance) if instance is not None else None
    return await _find_one(session, plan, operation)


async def _find_all(session: AsyncSession, plan: QueryPlan, operation: Operation) -> Any:
    instances = (await session.execute(plan.select())).scalars().all()
    return [plan.record(instance).to_plain() for instance in instances]


async def _find_and_count(session: AsyncSession, plan: QueryPlan, operation: Operation) -> Any:
    total = (await session.execute(plan.scalar_select(func.count()))).scalar_one()
    rows = await _find_all(session, plan, operation)
    return {"count": int(total), "rows": rows}


def _aggregate(function: Callable[[Any], Any]) -> Handler:
    async def handler(session: AsyncSession, plan: QueryPlan, operation: Operation) -> Any:
        column = plan.require_column(operation)
        value = (await session.execute(plan.scalar_select(function(column)))).scalar_one_or_none()
        return jsonable(value)

    return handler


async def _count(session: AsyncSession, plan: QueryPlan, operation: Operation) -> Any:
    if plan.distinct:
        target = plan.column if plan.column is not None else _mapper(plan.model).primary_key[0]
        expression = func.count(distinct(target))
    else:
        expression = func.count()
    total = (await session.execute(plan.scalar_select(expression))).scalar_one()
    return int(total)


@dataclass(frozen=True)
class OperationSpec:
    """Declared result shape and implementation of one operation."""

    shape: ResultShape
    handler: Handler
    needs_column: bool = False


OPERATIONS: dict[Operation, OperationSpec] = {
    Operation.FIND: OperationSpec(ResultShape.RECORD, _find),
    Operation.FIND_ONE: OperationSpec(ResultShape.RECORD, _find_one),
    Operation.FIND_ALL: OperationSpec(ResultShape.RECORDS, _find_all),
    Operation.FIND_AND_COUNT: OperationSpec(ResultShape.COUNTED, _find_and_count),
    Operation.FIND_AND_COUNT_ALL: OperationSpec(ResultShape.COUNTED, _find_and_count),
    Operation.ALL: OperationSpec(ResultShape.RECORDS, _find_all),
    Operation.MIN: OperationSpec(ResultShape.SCALAR, _aggregate(func.min), needs_column=True),
    Operation.MAX: OperationSpec(ResultShape.SCALAR, _aggregate(func.max), needs_column=True),
    Operation.SUM: OperationSpec(ResultShape.SCALAR, _aggregate(func.sum), needs_column=True),
    Operation.COUNT: OperationSpec(ResultShape.SCALAR, _count),
}


# =============================================================================
# Data Source
# =============================================================================


class SQLAlchemyDataSource:
    """
    Executes retrieval operations against SQLAlchemy ORM models.

    Each call opens one session, runs exactly one read and closes the
    session again. Failures are not retried.
    """

    def __init__(
        self,
        client: DatabaseClient,
        models: Iterable[type] = (),
        base: type | None = None,
    ):
        """
        Initialize the data source.

        Args:
            client: Connected database client
            models: Mapped classes to register
            base: Declarative base whose mapped classes are all registered
        """
        self._client = client
        self._models: dict[str, type] = {}

        if base is not None:
            for mapper in base.registry.mappers:  # type: ignore[attr-defined]
                self.register(mapper.class_)
        for model in models:
            self.register(model)

    @property
    def client(self) -> DatabaseClient:
        return self._client

    def register(self, model: type) -> type:
        """Register a mapped class under its table name."""
        name = entity_name(model)
        if name is None:
            raise TypeError(f"{model!r} is not a mapped class")
        self._models[name] = model
        return model

    def model(self, name: str) -> type:
        """Look up a model by table name or class name."""
        model = self._models.get(name)
        if model is None:
            model = next((m for m in self._models.values() if m.__name__ == name), None)
        if model is None:
            raise ModelNotFoundError(name)
        return model

    async def execute(
        self,
        model: type,
        operation: Operation | str,
        options: QueryOptions | None = None,
    ) -> SourceResult:
        """
        Run one retrieval operation.

        Returns:
            The operation's value tagged with its declared shape, or an
            ABSENT result when nothing was found
        """
        operation = Operation.parse(operation)
        entry = OPERATIONS[operation]
        plan = build_plan(model, options)
        if entry.needs_column:
            plan.require_column(operation)
        name = entity_name(model)

        try:
            with log_duration(logger, "datasource_execute", model=name, operation=operation.value):
                async with self._client.session() as session:
                    value = await entry.handler(session, plan, operation)
        except SQLAlchemyError as e:
            raise DataSourceError(f"{operation.value} on {name} failed: {e}") from e

        if value is None:
            return SourceResult.absent()
        return SourceResult(entry.shape, value)

    async def execute_raw(self, sql: str) -> SourceResult:
        """
        Run a literal SQL query and return its rows as plain mappings.

        The text goes to the driver unchanged, so colons are never read as
        bind parameters.
        """
        try:
            with log_duration(logger, "datasource_execute_raw"):
                async with self._client.session() as session:
                    conn = await session.connection()
                    result = await conn.exec_driver_sql(sql)
                    if not result.returns_rows:
                        return SourceResult.absent()
                    rows = [jsonable_mapping(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise DataSourceError(f"Raw query failed: {e}") from e

        return SourceResult(ResultShape.RECORDS, rows)


__all__ = [
    "Operation",
    "OperationSpec",
    "OPERATIONS",
    "OPERATORS",
    "QueryPlan",
    "SQLAlchemyDataSource",
    "build_plan",
    "build_where",
    "build_order",
    "build_includes",
]
