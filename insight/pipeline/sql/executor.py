"""
SQL Executor
Executes validated read-only SQL queries
"""
import logging
import time
from typing import Any, Dict, List, Optional
from fastapi.encoders import jsonable_encoder

from insight.core.config import settings
from insight.pipeline.sql.catalog import Catalog

logger = logging.getLogger(__name__)


class QueryExecutionError(Exception):
    """Runtime failure of an already-validated query (timeout, permission, type mismatch...)"""

    def __init__(self, message: str, sql: str):
        super().__init__(message)
        self.sql = sql


def to_json_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Make driver values (Decimal, datetime, UUID...) JSON-serializable"""
    return jsonable_encoder(rows)


class QueryExecutor:
    """Runs SQL against the catalog and returns JSON-shaped records"""

    def __init__(self, catalog: Catalog, max_rows: Optional[int] = None):
        self.catalog = catalog
        self.max_rows = max_rows or settings.SQL_MAX_LIMIT

    async def execute(self, sql: str) -> List[Dict[str, Any]]:
        t0 = time.time()
        try:
            rows = await self.catalog.fetch_rows(sql, self.max_rows)
        except Exception as e:
            logger.error(f"SQL execution failed: {e}", exc_info=True)
            raise QueryExecutionError(str(e), sql) from e

        duration_ms = int((time.time() - t0) * 1000)
        if len(rows) >= self.max_rows:
            logger.warning(f"Result capped at {self.max_rows} rows")

        logger.info(f"SQL executed successfully: {len(rows)} rows in {duration_ms}ms")

        return to_json_rows(rows)
