"""
LLM utilities (client, prompts, parsers, pricing)
"""
from insight.pipeline.llm.client import LLMClient, LLMCompletion, LLMStreamDelta, LLMError
from insight.pipeline.llm.prompts import (
    DEFAULT_SUGGESTIONS,
    FALLBACK_CONTEXT,
    build_classification_prompt,
    build_sql_generation_prompt,
    build_response_prompt,
)
from insight.pipeline.llm.parsers import parse_json, clean_sql
from insight.pipeline.llm.pricing import UsageLedger, calculate_cost, quantize_cost

__all__ = [
    "LLMClient",
    "LLMCompletion",
    "LLMStreamDelta",
    "LLMError",
    "DEFAULT_SUGGESTIONS",
    "FALLBACK_CONTEXT",
    "build_classification_prompt",
    "build_sql_generation_prompt",
    "build_response_prompt",
    "parse_json",
    "clean_sql",
    "UsageLedger",
    "calculate_cost",
    "quantize_cost",
]
