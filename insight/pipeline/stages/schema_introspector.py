"""
Stage: Schema Introspection
Discovers table/column/relationship/sample-data metadata from the live catalog
"""
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from insight.core.config import settings
from insight.dtos import ColumnSchema, RelationshipSchema, TableSchema
from insight.pipeline.sql.catalog import Catalog
from insight.pipeline.sql.executor import to_json_rows

logger = logging.getLogger(__name__)

_NUMERIC_TYPES = {"numeric", "decimal"}

# Per-process schema cache, only used when a TTL is configured
_SCHEMA_CACHE: Dict[str, Tuple[float, List[TableSchema]]] = {}


def clear_schema_cache() -> None:
    _SCHEMA_CACHE.clear()


def matches_keywords(table_name: str, keywords: Sequence[str]) -> bool:
    """Case-insensitive substring match against the domain keywords"""
    name = table_name.lower()
    return any(keyword.lower() in name for keyword in keywords)


def format_column_type(row: Dict[str, Any]) -> str:
    """Format column type with length/precision, e.g. varchar(255), numeric(10,2)"""
    col_type = row["data_type"]

    if row.get("character_maximum_length"):
        return f"{col_type}({row['character_maximum_length']})"

    if col_type in _NUMERIC_TYPES and row.get("numeric_precision"):
        if row.get("numeric_scale") is not None:
            return f"{col_type}({row['numeric_precision']},{row['numeric_scale']})"
        return f"{col_type}({row['numeric_precision']})"

    return col_type


def describe_schema(schemas: Sequence[TableSchema]) -> str:
    """Serialize schemas into the textual description given to the SQL generator"""
    blocks: List[str] = []
    for table in schemas:
        columns = []
        for col in table.columns:
            parts = [f"  - {col.name}", f"({col.type})"]
            if col.is_primary:
                parts.append("[PRIMARY KEY]")
            if col.is_foreign:
                parts.append("[FOREIGN KEY]")
            if col.nullable:
                parts.append("[nullable]")
            if col.comment:
                parts.append(f"-- {col.comment}")
            columns.append(" ".join(parts))

        block = f"Table: {table.table_name}\n  Columns:\n" + "\n".join(columns)

        if table.relationships:
            block += "\n  Relationships:\n" + "\n".join(
                f"    - {rel.foreign_key} -> {rel.related_table}.{rel.referenced_key} ({rel.type})"
                for rel in table.relationships
            )

        if table.sample_data:
            sample = json.dumps(table.sample_data[:1], indent=2, default=str)
            block += "\n  Sample Data (for context):\n" + "\n".join(
                f"    {line}" for line in sample.split("\n")
            )

        blocks.append(block + "\n")

    return "\n".join(blocks)


class SchemaIntrospector:
    """
    Builds TableSchema objects for every catalog table matching a domain keyword

    Per-table failures skip that table; a failure to list tables yields an
    empty list, which callers treat as "no schema available".
    """

    def __init__(
        self,
        catalog: Catalog,
        keywords: Optional[Sequence[str]] = None,
        sample_rows: Optional[int] = None,
        cache_ttl: Optional[float] = None
    ):
        self.catalog = catalog
        self.keywords = list(keywords if keywords is not None else settings.SCHEMA_TABLE_KEYWORDS)
        self.sample_rows = settings.SCHEMA_SAMPLE_ROWS if sample_rows is None else sample_rows
        self.cache_ttl = settings.SCHEMA_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl

    def _cache_key(self) -> str:
        return f"{getattr(self.catalog, 'schema', '')}:{','.join(sorted(self.keywords))}"

    async def get_schema(self) -> List[TableSchema]:
        """Schemas of all keyword-matching tables, in catalog order"""
        if self.cache_ttl > 0:
            cached = _SCHEMA_CACHE.get(self._cache_key())
            if cached and time.monotonic() - cached[0] < self.cache_ttl:
                logger.debug("Using cached schema")
                return list(cached[1])

        try:
            table_names = [
                t for t in await self.catalog.list_tables()
                if matches_keywords(t, self.keywords)
            ]
        except Exception as e:
            logger.error(f"Error listing catalog tables: {e}", exc_info=True)
            return []

        schemas: List[TableSchema] = []
        for table_name in table_names:
            schema = await self.get_table_schema(table_name)
            if schema is None:
                continue
            schema.sample_data = await self.get_sample_data(table_name, self.sample_rows)
            schemas.append(schema)

        logger.info(f"Retrieved schema for {len(schemas)} tables")

        if self.cache_ttl > 0 and schemas:
            _SCHEMA_CACHE[self._cache_key()] = (time.monotonic(), list(schemas))

        return schemas

    async def get_table_schema(self, table_name: str) -> Optional[TableSchema]:
        """Columns, keys and relationships of one table, or None on failure"""
        try:
            rows = await self.catalog.describe_columns(table_name)
            primary_keys = set(await self.catalog.primary_keys(table_name))
            foreign_keys = await self.catalog.foreign_keys(table_name)
        except Exception as e:
            logger.warning(f"Skipping table {table_name}: {e}")
            return None

        fk_columns = {fk["column_name"] for fk in foreign_keys}
        columns = [
            ColumnSchema(
                name=row["column_name"],
                type=format_column_type(row),
                nullable=row.get("is_nullable") == "YES",
                is_primary=row["column_name"] in primary_keys,
                is_foreign=row["column_name"] in fk_columns,
                default_value=row.get("column_default"),
                comment=row.get("comment")
            )
            for row in rows
        ]

        # Only keep relationships whose column was reflected
        column_names = {c.name for c in columns}
        relationships = [
            RelationshipSchema(
                related_table=fk["referenced_table"],
                foreign_key=fk["column_name"],
                referenced_key=fk["referenced_column"]
            )
            for fk in foreign_keys
            if fk["column_name"] in column_names
        ]

        return TableSchema(table_name=table_name, columns=columns, relationships=relationships)

    async def get_sample_data(self, table_name: str, limit: int) -> List[Dict[str, Any]]:
        """A few representative rows for grounding the language model"""
        if limit <= 0:
            return []
        try:
            return to_json_rows(await self.catalog.sample_rows(table_name, limit))
        except Exception as e:
            logger.warning(f"Could not get sample data for {table_name}: {e}")
            return []
