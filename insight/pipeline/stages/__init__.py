"""
Pipeline stages (ordered execution flow)

1. prompt_classifier → Decide if the message asks for data
2. schema_introspector → Describe the relevant tables
3. sql_generator → Generate SQL
4. sql_validator → Validate SQL (read-only, known tables, EXPLAIN)
5. response_synthesizer → Stream the narrated answer

Execution itself lives in pipeline.sql.executor.
"""
from insight.pipeline.stages.prompt_classifier import (
    PromptClassifier,
    default_analysis,
    analysis_from_json
)
from insight.pipeline.stages.schema_introspector import (
    SchemaIntrospector,
    describe_schema,
    clear_schema_cache
)
from insight.pipeline.stages.sql_generator import SQLGenerator, SQLGenerationError
from insight.pipeline.stages.sql_validator import SQLValidator
from insight.pipeline.stages.response_synthesizer import (
    ResponseSynthesizer,
    ResponseStream,
    APOLOGY
)

__all__ = [
    # Stage 1: Classification
    "PromptClassifier",
    "default_analysis",
    "analysis_from_json",
    # Stage 2: Schema
    "SchemaIntrospector",
    "describe_schema",
    "clear_schema_cache",
    # Stage 3: SQL Generation
    "SQLGenerator",
    "SQLGenerationError",
    # Stage 4: Validation
    "SQLValidator",
    # Stage 5: Synthesis
    "ResponseSynthesizer",
    "ResponseStream",
    "APOLOGY",
]
