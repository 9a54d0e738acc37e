"""
Pipeline stage results (classification, generation, validation)
"""
from typing import List, Literal
from pydantic import BaseModel, Field

Intent = Literal["query", "report", "statistics", "general"]


class PromptAnalysisResult(BaseModel):
    """Output of the prompt classifier"""
    is_data_related: bool = False
    intent: Intent = "general"
    entities: List[str] = []
    suggested_queries: List[str] = []
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class SQLGenerationResult(BaseModel):
    """Output of the SQL generator"""
    sql_query: str
    explanation: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    tables: List[str] = []
    columns: List[str] = []


class ValidationResult(BaseModel):
    """
    Result of SQL validation

    errors block execution; warnings are advisory and never invalidate
    """
    errors: List[str] = []
    warnings: List[str] = []

    @property
    def is_valid(self) -> bool:
        return not self.errors
