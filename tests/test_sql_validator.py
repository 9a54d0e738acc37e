import pytest

from conftest import FakeCatalog, TOP_PRODUCTS_ROWS, TOP_PRODUCTS_SQL
from insight.pipeline.sql.executor import QueryExecutor, QueryExecutionError
from insight.pipeline.stages import SchemaIntrospector, SQLValidator


@pytest.mark.asyncio
async def test_valid_query_is_explained(catalog):
    schemas = await SchemaIntrospector(catalog).get_schema()
    result = await SQLValidator(catalog).validate(TOP_PRODUCTS_SQL, schemas)

    assert result.is_valid
    assert result.errors == []
    assert catalog.explained == [TOP_PRODUCTS_SQL]


@pytest.mark.asyncio
async def test_static_errors_skip_explain(catalog):
    schemas = await SchemaIntrospector(catalog).get_schema()
    result = await SQLValidator(catalog).validate("DELETE FROM orders WHERE id = 1", schemas)

    assert not result.is_valid
    assert result.errors == ["DELETE is not allowed (read-only queries only)"]
    assert catalog.explained == []


@pytest.mark.asyncio
async def test_planner_error_becomes_validation_error():
    catalog = FakeCatalog(explain_error=RuntimeError('column "nme" does not exist'))
    schemas = await SchemaIntrospector(catalog).get_schema()

    result = await SQLValidator(catalog).validate("SELECT nme FROM products LIMIT 5", schemas)

    assert not result.is_valid
    assert result.errors == ['SQL syntax error: column "nme" does not exist']


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported_not_raised(catalog):
    # schemas of the wrong shape make the static check blow up
    result = await SQLValidator(catalog).validate("SELECT 1 FROM orders", [object()])

    assert not result.is_valid
    assert result.errors[0].startswith("Validation error:")


@pytest.mark.asyncio
async def test_executor_returns_json_rows(catalog):
    rows = await QueryExecutor(catalog).execute(TOP_PRODUCTS_SQL)

    assert rows == TOP_PRODUCTS_ROWS
    assert catalog.executed == [TOP_PRODUCTS_SQL]


@pytest.mark.asyncio
async def test_executor_caps_rows():
    catalog = FakeCatalog(rows=[{"id": i} for i in range(50)])

    rows = await QueryExecutor(catalog, max_rows=10).execute("SELECT id FROM orders LIMIT 50")

    assert len(rows) == 10


@pytest.mark.asyncio
async def test_executor_failure_is_typed():
    catalog = FakeCatalog(fetch_error=RuntimeError("canceling statement due to statement timeout"))

    with pytest.raises(QueryExecutionError) as exc_info:
        await QueryExecutor(catalog).execute("SELECT id FROM orders LIMIT 5")

    assert "statement timeout" in str(exc_info.value)
    assert exc_info.value.sql == "SELECT id FROM orders LIMIT 5"


@pytest.mark.asyncio
async def test_table_from_another_schema_is_rejected(catalog):
    schemas = await SchemaIntrospector(catalog).get_schema()

    result = await SQLValidator(catalog).validate("SELECT email FROM hr.customers ORDER BY email LIMIT 5", schemas)

    assert result.errors == ["Table 'hr.customers' does not exist in schema"]
    assert catalog.explained == []
