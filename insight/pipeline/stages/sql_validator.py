"""
Stage: SQL Validation
Static read-only/table checks followed by a database syntax check (EXPLAIN)
"""
import logging
from typing import Sequence

from insight.dtos import TableSchema, ValidationResult
from insight.pipeline.sql.catalog import Catalog
from insight.pipeline.sql.protector import check_sql

logger = logging.getLogger(__name__)


class SQLValidator:
    """
    Decides whether generated SQL may run

    Static errors skip the EXPLAIN round-trip. Never raises: unexpected
    failures are reported as a validation error.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    async def validate(self, sql: str, schemas: Sequence[TableSchema]) -> ValidationResult:
        try:
            result = check_sql(sql, schemas, self.catalog.schema)

            for warning in result.warnings:
                logger.warning(f"SQL warning: {warning}")

            if result.errors:
                logger.warning(f"SQL rejected: {result.errors}")
                return result

            try:
                await self.catalog.explain(sql)
            except Exception as e:
                logger.warning(f"SQL syntax check failed: {e}")
                result.errors.append(f"SQL syntax error: {e}")

            return result

        except Exception as e:
            logger.error(f"SQL validation failed unexpectedly: {e}", exc_info=True)
            return ValidationResult(errors=[f"Validation error: {e}"])
