"""
Stage: SQL Generation
Translates a data question into one PostgreSQL SELECT grounded in the schema
"""
import logging
from typing import Optional, Sequence

from insight.core.config import settings
from insight.dtos import PromptAnalysisResult, SQLGenerationResult, TableSchema
from insight.pipeline.llm.client import LLMClient
from insight.pipeline.llm.prompts import build_sql_generation_prompt
from insight.pipeline.llm.parsers import parse_json, clean_sql, as_str_list, as_confidence
from insight.pipeline.llm.pricing import UsageLedger
from insight.pipeline.stages.schema_introspector import describe_schema

logger = logging.getLogger(__name__)


class SQLGenerationError(Exception):
    """The model call failed or its answer held no usable query"""


class SQLGenerator:
    """Low-temperature JSON call on the SQL model"""

    def __init__(self, llm: LLMClient, model: Optional[str] = None, temperature: Optional[float] = None):
        self.llm = llm
        self.model = model or settings.LLM_SQL_MODEL
        self.temperature = settings.SQL_TEMPERATURE if temperature is None else temperature

    async def generate(
        self,
        message: str,
        schemas: Sequence[TableSchema],
        analysis: PromptAnalysisResult,
        ledger: Optional[UsageLedger] = None
    ) -> SQLGenerationResult:
        """
        Generate SQL for a data-related message

        Raises SQLGenerationError when the call fails, the answer is not a
        JSON object, or it carries an empty query.
        """
        system, user = build_sql_generation_prompt(
            message,
            describe_schema(schemas),
            analysis,
            default_limit=settings.SQL_DEFAULT_LIMIT,
            max_limit=settings.SQL_MAX_LIMIT
        )

        try:
            completion = await self.llm.complete_json(system, user, self.temperature, model=self.model)
        except Exception as e:
            logger.error(f"SQL generation call failed: {e}")
            raise SQLGenerationError(f"Failed to generate SQL query: {e}") from e

        if ledger is not None:
            ledger.record(completion.usage, completion.model)

        try:
            data = parse_json(completion.content)
        except ValueError as e:
            logger.error(f"SQL generation returned invalid JSON: {e}")
            raise SQLGenerationError("Failed to generate SQL query: invalid model response") from e

        raw_sql = data.get("sqlQuery")
        sql = clean_sql(raw_sql) if isinstance(raw_sql, str) else ""
        if not sql:
            raise SQLGenerationError("Failed to generate SQL query: empty query")

        result = SQLGenerationResult(
            sql_query=sql,
            explanation=str(data.get("explanation") or ""),
            confidence=as_confidence(data.get("confidence")),
            tables=as_str_list(data.get("tables")),
            columns=as_str_list(data.get("columns"))
        )

        logger.info(f"Generated SQL (confidence={result.confidence:.2f}): {sql}")

        return result
