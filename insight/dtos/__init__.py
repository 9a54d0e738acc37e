"""
DTOs (Data Transfer Objects)
Internal objects for passing data between layers
"""
from insight.dtos.analysis import (
    PromptAnalysisResult,
    SQLGenerationResult,
    ValidationResult,
)
from insight.dtos.chat import (
    TokenUsage,
    ChatRequest,
    ChatStreamChunk,
    ChatResponse,
)
from insight.dtos.schema import (
    ColumnSchema,
    RelationshipSchema,
    TableSchema,
)

__all__ = [
    "PromptAnalysisResult",
    "SQLGenerationResult",
    "ValidationResult",
    "TokenUsage",
    "ChatRequest",
    "ChatStreamChunk",
    "ChatResponse",
    "ColumnSchema",
    "RelationshipSchema",
    "TableSchema",
]
