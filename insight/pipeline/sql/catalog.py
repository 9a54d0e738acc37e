"""
Relational catalog access (PostgreSQL information_schema)

The catalog is the only component that talks to the live business schema:
table listing, column/PK/FK reflection, sample rows, read-only execution
and planner-only dry runs.
"""
import re
from typing import Any, Dict, List, Protocol
from sqlalchemy import TextClause, text as sqltext
from sqlalchemy.ext.asyncio import AsyncEngine


class Catalog(Protocol):
    schema: str

    async def list_tables(self) -> List[str]: ...

    async def describe_columns(self, table_name: str) -> List[Dict[str, Any]]: ...

    async def primary_keys(self, table_name: str) -> List[str]: ...

    async def foreign_keys(self, table_name: str) -> List[Dict[str, Any]]: ...

    async def sample_rows(self, table_name: str, limit: int) -> List[Dict[str, Any]]: ...

    async def fetch_rows(self, sql: str, max_rows: int) -> List[Dict[str, Any]]: ...

    async def explain(self, sql: str) -> None: ...


def literal_sql(sql: str) -> TextClause:
    """
    Wrap generated SQL in a text clause without bind parameters

    Single colons are escaped so that literals like '10:30' are not parsed
    as :binds; PostgreSQL casts (::numeric) are left alone.
    """
    return sqltext(re.sub(r"(?<![:\\]):(?!:)", r"\\:", sql))


class PostgresCatalog:
    """Catalog backed by an async SQLAlchemy engine"""

    def __init__(self, engine: AsyncEngine, schema: str = "public"):
        self.engine = engine
        self.schema = schema

    async def list_tables(self) -> List[str]:
        """All base tables of the schema, in name order"""
        async with self.engine.connect() as conn:
            rows = await conn.execute(
                sqltext("""
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_schema = :schema
                      AND table_type = 'BASE TABLE'
                    ORDER BY table_name
                """),
                {"schema": self.schema}
            )
            return [row[0] for row in rows]

    async def describe_columns(self, table_name: str) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            rows = await conn.execute(
                sqltext("""
                    SELECT
                        column_name,
                        data_type,
                        is_nullable,
                        column_default,
                        character_maximum_length,
                        numeric_precision,
                        numeric_scale,
                        col_description(
                            (quote_ident(table_schema) || '.' || quote_ident(table_name))::regclass,
                            ordinal_position
                        ) AS comment
                    FROM information_schema.columns
                    WHERE table_schema = :schema AND table_name = :table
                    ORDER BY ordinal_position
                """),
                {"schema": self.schema, "table": table_name}
            )
            return [dict(row) for row in rows.mappings()]

    async def primary_keys(self, table_name: str) -> List[str]:
        async with self.engine.connect() as conn:
            rows = await conn.execute(
                sqltext("""
                    SELECT kcu.column_name
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                      ON tc.constraint_name = kcu.constraint_name
                     AND tc.table_schema = kcu.table_schema
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                      AND tc.table_schema = :schema
                      AND tc.table_name = :table
                    ORDER BY kcu.ordinal_position
                """),
                {"schema": self.schema, "table": table_name}
            )
            return [row[0] for row in rows]

    async def foreign_keys(self, table_name: str) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            rows = await conn.execute(
                sqltext("""
                    SELECT
                        kcu.column_name,
                        ccu.table_name AS referenced_table,
                        ccu.column_name AS referenced_column
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                      ON tc.constraint_name = kcu.constraint_name
                     AND tc.table_schema = kcu.table_schema
                    JOIN information_schema.constraint_column_usage ccu
                      ON ccu.constraint_name = tc.constraint_name
                     AND ccu.table_schema = tc.table_schema
                    WHERE tc.constraint_type = 'FOREIGN KEY'
                      AND tc.table_schema = :schema
                      AND tc.table_name = :table
                    ORDER BY kcu.column_name
                """),
                {"schema": self.schema, "table": table_name}
            )
            return [dict(row) for row in rows.mappings()]

    async def sample_rows(self, table_name: str, limit: int) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            quote = conn.dialect.identifier_preparer.quote
            rows = await conn.execute(
                sqltext(f"SELECT * FROM {quote(self.schema)}.{quote(table_name)} LIMIT :limit"),
                {"limit": limit}
            )
            return [dict(row) for row in rows.mappings()]

    async def fetch_rows(self, sql: str, max_rows: int) -> List[Dict[str, Any]]:
        """
        Run a statement inside a READ ONLY transaction

        Rows are streamed from a server-side cursor and at most max_rows are
        fetched. The transaction is rolled back when the connection closes.
        """
        async with self.engine.connect() as conn:
            await conn.execute(sqltext("SET TRANSACTION READ ONLY"))
            result = await conn.stream(literal_sql(sql))
            rows = await result.mappings().fetchmany(max_rows)
            await result.close()
            return [dict(row) for row in rows]

    async def explain(self, sql: str) -> None:
        """Ask the planner for a plan without executing; raises on any planner error"""
        async with self.engine.connect() as conn:
            await conn.execute(sqltext("SET TRANSACTION READ ONLY"))
            await conn.execute(literal_sql(f"EXPLAIN {sql}"))
