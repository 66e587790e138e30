"""
Tests for Retrieval Operations

Tests cover:
- Operation parsing and the lookup table
- Options translation and validation
- Data source model registry
- Each operation against SQLite
- Raw queries and error wrapping
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from sqlcacher.database.operations import (
    OPERATIONS,
    Operation,
    SQLAlchemyDataSource,
    build_plan,
)
from sqlcacher.errors import (
    DataSourceError,
    InvalidOperationError,
    InvalidOptionsError,
    ModelNotFoundError,
)
from sqlcacher.types import ResultShape
from tests.conftest import Part, Vendor, Widget


class TestOperation:
    """Tests for the Operation enum."""

    def test_parse_known_names(self):
        assert Operation.parse("find") is Operation.FIND
        assert Operation.parse("find_and_count_all") is Operation.FIND_AND_COUNT_ALL
        assert Operation.parse(Operation.SUM) is Operation.SUM

    @pytest.mark.parametrize("name", ["destroy", "FIND", "", None, 3])
    def test_parse_rejects_unknown(self, name):
        with pytest.raises(InvalidOperationError) as exc_info:
            Operation.parse(name)
        assert exc_info.value.operation == name

    def test_every_operation_has_an_entry(self):
        assert set(OPERATIONS) == set(Operation)

    def test_declared_shapes(self):
        assert OPERATIONS[Operation.FIND].shape is ResultShape.RECORD
        assert OPERATIONS[Operation.FIND_ALL].shape is ResultShape.RECORDS
        assert OPERATIONS[Operation.FIND_AND_COUNT].shape is ResultShape.COUNTED
        assert OPERATIONS[Operation.COUNT].shape is ResultShape.SCALAR


class TestBuildPlan:
    """Tests for options translation."""

    def test_empty_options(self):
        plan = build_plan(Widget, None)

        assert plan.model is Widget
        assert plan.criteria == []
        assert plan.limit is None

    def test_where_variants_compile(self):
        plan = build_plan(
            Widget,
            {
                "where": {
                    "color": None,
                    "id": [1, 2],
                    "price": {"gte": 1, "lt": 5},
                    "or": [{"name": "bolt"}, {"name": {"like": "g%"}}],
                }
            },
        )
        sql = str(plan.select().compile(compile_kwargs={"literal_binds": True}))

        assert "widget.color IS NULL" in sql
        assert "widget.id IN (1, 2)" in sql
        assert "widget.price >= 1" in sql
        assert "widget.price < 5" in sql
        assert "widget.name = 'bolt' OR widget.name LIKE 'g%'" in sql

    def test_order_and_paging(self):
        plan = build_plan(Widget, {"order": ["-price", ["name", "asc"]], "limit": 2, "offset": 1})
        sql = str(plan.select().compile(compile_kwargs={"literal_binds": True}))

        assert "ORDER BY widget.price DESC, widget.name ASC" in sql
        assert plan.limit == 2
        assert plan.offset == 1

    def test_attributes(self):
        plan = build_plan(Widget, {"attributes": ["id", "name"]})
        assert plan.attributes == ["id", "name"]

    def test_include_tree(self):
        plan = build_plan(Widget, {"include": [{"model": Part, "include": [Vendor]}]})
        assert plan.includes == {"parts": {"vendor": {}}}

    @pytest.mark.parametrize(
        "options",
        [
            {"raw": True},
            {"where": {"weight": 1}},
            {"where": {"id": {"near": 1}}},
            {"where": {"id": {"between": [1]}}},
            {"where": ["id", 1]},
            {"where": {"or": {"id": 1}}},
            {"order": ["weight"]},
            {"order": [["name", "sideways"]]},
            {"order": [["name", "asc", "extra"]]},
            {"limit": -1},
            {"limit": "10"},
            {"offset": True},
            {"include": ["owner"]},
            {"include": [Vendor]},
            {"include": [{"include": ["vendor"]}]},
            {"attributes": ["id", "weight"]},
            {"column": "weight"},
        ],
    )
    def test_invalid_options(self, options):
        with pytest.raises(InvalidOptionsError):
            build_plan(Widget, options)

    def test_unmapped_model(self):
        with pytest.raises(InvalidOptionsError):
            build_plan(dict, {})


class TestModelRegistry:
    """Tests for the data source model registry."""

    def test_registers_base_models(self, datasource):
        assert datasource.model("widget") is Widget
        assert datasource.model("part") is Part
        assert datasource.model("vendor") is Vendor

    def test_lookup_by_class_name(self, datasource):
        assert datasource.model("Widget") is Widget

    def test_unknown_model(self, datasource):
        with pytest.raises(ModelNotFoundError) as exc_info:
            datasource.model("gadget")
        assert str(exc_info.value) == "Unknown model - gadget"

    def test_explicit_models(self, db_client):
        datasource = SQLAlchemyDataSource(db_client, models=[Widget])

        assert datasource.model("widget") is Widget
        with pytest.raises(ModelNotFoundError):
            datasource.model("part")

    def test_register_unmapped(self, db_client):
        with pytest.raises(TypeError):
            SQLAlchemyDataSource(db_client).register(dict)


class TestExecute:
    """Tests for operations against the seeded database."""

    @pytest.mark.asyncio
    async def test_find_by_pk(self, datasource):
        result = await datasource.execute(Widget, "find", {"pk": 3})

        assert result.shape is ResultShape.RECORD
        assert result.value.to_plain()["name"] == "gear"

    @pytest.mark.asyncio
    async def test_find_first_match(self, datasource):
        result = await datasource.execute(Widget, Operation.FIND, {"where": {"color": "red"}, "order": ["id"]})
        assert result.value.to_plain()["id"] == 1

    @pytest.mark.asyncio
    async def test_find_missing_is_absent(self, datasource):
        result = await datasource.execute(Widget, "find", {"pk": 999})

        assert result.shape is ResultShape.ABSENT
        assert result.value is None

    @pytest.mark.asyncio
    async def test_find_one_with_attributes(self, datasource):
        result = await datasource.execute(
            Widget, "find_one", {"where": {"name": "nut"}, "attributes": ["id", "color"]}
        )
        assert result.value.to_plain() == {"id": 2, "color": None}

    @pytest.mark.asyncio
    async def test_find_all(self, datasource):
        result = await datasource.execute(
            Widget, "find_all", {"where": {"quantity": {"gt": 0}}, "order": ["-quantity"]}
        )

        assert result.shape is ResultShape.RECORDS
        assert [row["name"] for row in result.value] == ["bolt", "gear", "spring"]

    @pytest.mark.asyncio
    async def test_all_with_or(self, datasource):
        result = await datasource.execute(
            Widget, "all", {"where": {"or": [{"id": 2}, {"color": "blue"}]}, "order": ["id"]}
        )
        assert [row["id"] for row in result.value] == [2, 3]

    @pytest.mark.asyncio
    async def test_between(self, datasource):
        result = await datasource.execute(
            Widget, "all", {"where": {"price": {"between": [1, 3]}}, "order": ["id"]}
        )
        assert [row["id"] for row in result.value] == [1, 2]

    @pytest.mark.asyncio
    async def test_include_by_class(self, datasource):
        result = await datasource.execute(
            Part, "find_all", {"include": [Widget], "attributes": ["id", "widget_id"], "order": ["id"]}
        )

        assert result.value[2] == {
            "id": 3,
            "widget_id": 3,
            "widget": {
                "id": 3,
                "name": "gear",
                "price": 4.0,
                "quantity": 5,
                "color": "blue",
                "created_at": "2024-01-03T00:00:00",
            },
        }

    @pytest.mark.asyncio
    async def test_find_and_count_ignores_paging(self, datasource):
        result = await datasource.execute(
            Widget, "find_and_count", {"order": ["id"], "limit": 2, "offset": 1}
        )

        assert result.shape is ResultShape.COUNTED
        assert result.value["count"] == 4
        assert [row["id"] for row in result.value["rows"]] == [2, 3]

    @pytest.mark.asyncio
    async def test_aggregates(self, datasource):
        assert (await datasource.execute(Widget, "min", {"column": "quantity"})).value == 0
        assert (await datasource.execute(Widget, "max", {"column": "name"})).value == "spring"
        assert (await datasource.execute(Widget, "sum", {"column": "price"})).value == 8.25

    @pytest.mark.asyncio
    async def test_aggregate_on_empty_is_absent(self, datasource):
        result = await datasource.execute(Widget, "sum", {"column": "price", "where": {"id": 999}})
        assert result.shape is ResultShape.ABSENT

    @pytest.mark.asyncio
    async def test_aggregate_requires_column(self, datasource):
        with pytest.raises(InvalidOptionsError):
            await datasource.execute(Widget, "min", {})

    @pytest.mark.asyncio
    async def test_count(self, datasource):
        assert (await datasource.execute(Widget, "count")).value == 4
        assert (await datasource.execute(Widget, "count", {"where": {"color": "red"}})).value == 2

    @pytest.mark.asyncio
    async def test_count_distinct(self, datasource):
        result = await datasource.execute(Widget, "count", {"column": "color", "distinct": True})
        assert result.value == 2

    @pytest.mark.asyncio
    async def test_count_empty_is_zero(self, datasource):
        result = await datasource.execute(Widget, "count", {"where": {"id": 999}})

        assert result.shape is ResultShape.SCALAR
        assert result.value == 0

    @pytest.mark.asyncio
    async def test_invalid_operation(self, datasource):
        with pytest.raises(InvalidOperationError):
            await datasource.execute(Widget, "destroy")


class TestExecuteRaw:
    """Tests for raw SQL execution."""

    @pytest.mark.asyncio
    async def test_rows_as_mappings(self, datasource):
        result = await datasource.execute_raw("SELECT id, label FROM part ORDER BY id")

        assert result.shape is ResultShape.RECORDS
        assert result.value == [
            {"id": 1, "label": "head"},
            {"id": 2, "label": "thread"},
            {"id": 3, "label": "tooth"},
        ]

    @pytest.mark.asyncio
    async def test_colons_are_literal(self, datasource):
        result = await datasource.execute_raw("SELECT ':bolt' AS tag, name FROM widget WHERE id = 1")
        assert result.value == [{"tag": ":bolt", "name": "bolt"}]

        result = await datasource.execute_raw("SELECT name FROM widget WHERE name = ':bolt'")
        assert result.value == []

    @pytest.mark.asyncio
    async def test_empty_result(self, datasource):
        result = await datasource.execute_raw("SELECT id FROM part WHERE id = 999")

        assert result.shape is ResultShape.RECORDS
        assert result.value == []

    @pytest.mark.asyncio
    async def test_statement_without_rows(self, datasource):
        result = await datasource.execute_raw("DELETE FROM part WHERE id = 999")
        assert result.shape is ResultShape.ABSENT

    @pytest.mark.asyncio
    async def test_failure_wrapped(self, datasource):
        with pytest.raises(DataSourceError) as exc_info:
            await datasource.execute_raw("SELECT * FROM missing_table")

        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)

    @pytest.mark.asyncio
    async def test_structured_failure_wrapped(self, db_client):
        datasource = SQLAlchemyDataSource(db_client, base=None, models=[Widget])
        await db_client.close()
        await db_client.connect()

        # Fresh in-memory database has no tables
        with pytest.raises(DataSourceError) as exc_info:
            await datasource.execute(Widget, "count")

        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)
