"""
SQL utilities (catalog, protection, execution)
"""
from insight.pipeline.sql.catalog import Catalog, PostgresCatalog, literal_sql
from insight.pipeline.sql.protector import (
    check_sql,
    check_read_only,
    check_tables,
    extract_table_refs,
    extract_tables,
    advisory_warnings,
)
from insight.pipeline.sql.executor import QueryExecutor, QueryExecutionError, to_json_rows

__all__ = [
    "Catalog",
    "PostgresCatalog",
    "literal_sql",
    "check_sql",
    "check_read_only",
    "check_tables",
    "extract_table_refs",
    "extract_tables",
    "advisory_warnings",
    "QueryExecutor",
    "QueryExecutionError",
    "to_json_rows",
]
