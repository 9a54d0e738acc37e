import pytest

from conftest import (
    DATA_ANALYSIS,
    TOP_PRODUCTS_SQL,
    FakeLLMClient,
    sql_answer,
)
from insight.dtos import PromptAnalysisResult, TokenUsage
from insight.pipeline.llm.client import LLMError
from insight.pipeline.llm.pricing import UsageLedger
from insight.pipeline.llm.prompts import DEFAULT_SUGGESTIONS
from insight.pipeline.stages import (
    APOLOGY,
    PromptClassifier,
    ResponseSynthesizer,
    SchemaIntrospector,
    SQLGenerationError,
    SQLGenerator,
)


# ============================================
# PROMPT CLASSIFIER
# ============================================

@pytest.mark.asyncio
async def test_classifier_parses_analysis():
    llm = FakeLLMClient(json_responses=[DATA_ANALYSIS])
    ledger = UsageLedger()

    analysis = await PromptClassifier(llm).analyze("What are our top 5 best-selling products this month?", ledger)

    assert analysis.is_data_related
    assert analysis.intent == "query"
    assert analysis.entities == ["products", "orders"]
    assert analysis.confidence == pytest.approx(0.92)
    assert ledger.total_tokens == 120
    assert llm.json_calls[0]["temperature"] == pytest.approx(0.3)


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    LLMError("LLM request failed: 503"),
    "this is not json",
    "[1, 2, 3]",
    "",
])
async def test_classifier_failure_returns_safe_default(response):
    llm = FakeLLMClient(json_responses=[response])

    analysis = await PromptClassifier(llm).analyze("hello there")

    assert not analysis.is_data_related
    assert analysis.intent == "general"
    assert analysis.confidence == 0.0
    assert analysis.suggested_queries == DEFAULT_SUGGESTIONS


@pytest.mark.asyncio
async def test_classifier_normalizes_odd_fields():
    llm = FakeLLMClient(json_responses=[{
        "isDataRelated": True,
        "intent": "forecast",
        "entities": "customers",
        "confidence": 7,
    }])

    analysis = await PromptClassifier(llm).analyze("Forecast churn")

    assert analysis.intent == "general"
    assert analysis.entities == []
    assert analysis.confidence == 1.0


# ============================================
# SQL GENERATOR
# ============================================

@pytest.mark.asyncio
async def test_generator_returns_clean_sql(catalog):
    schemas = await SchemaIntrospector(catalog).get_schema()
    llm = FakeLLMClient(json_responses=[sql_answer(f"```sql\n{TOP_PRODUCTS_SQL};\n```")])
    ledger = UsageLedger()

    result = await SQLGenerator(llm).generate(
        "What are our top 5 best-selling products this month?",
        schemas,
        PromptAnalysisResult(is_data_related=True, intent="query", confidence=0.9),
        ledger
    )

    assert result.sql_query == TOP_PRODUCTS_SQL
    assert result.tables == ["products", "order_items", "orders"]
    assert ledger.total_tokens == 120

    call = llm.json_calls[0]
    assert call["model"] == "gpt-4o"
    assert call["temperature"] == pytest.approx(0.1)
    assert "Table: order_items" in call["system"]
    assert "LIMIT clause (default 100, never more than 1000)" in call["system"]


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    LLMError("LLM request failed: timeout"),
    "not json at all",
    {"explanation": "no query here"},
    {"sqlQuery": "   "},
    {"sqlQuery": ["SELECT 1"]},
])
async def test_generator_failures_raise_generation_error(catalog, response):
    schemas = await SchemaIntrospector(catalog).get_schema()
    llm = FakeLLMClient(json_responses=[response])

    with pytest.raises(SQLGenerationError):
        await SQLGenerator(llm).generate("Revenue by month", schemas, PromptAnalysisResult())


# ============================================
# RESPONSE SYNTHESIZER
# ============================================

@pytest.mark.asyncio
async def test_synthesizer_streams_fragments_and_records_usage():
    usage = TokenUsage(prompt_tokens=300, completion_tokens=4, total_tokens=304)
    llm = FakeLLMClient(streams=[["# Top", " products", "\n", "| a |", usage]])
    ledger = UsageLedger()

    stream = ResponseSynthesizer(llm).stream("Top products?", "explained", [{"a": 1}], ledger)
    fragments = [f async for f in stream]

    assert "".join(fragments) == "# Top products\n| a |"
    assert ledger.prompt_tokens == 300
    assert ledger.completion_tokens == 4
    assert '"a": 1' in llm.stream_calls[0]["system"]
    assert llm.stream_calls[0]["temperature"] == pytest.approx(0.7)


@pytest.mark.asyncio
async def test_synthesizer_counts_fragments_without_reported_usage():
    llm = FakeLLMClient(streams=[["one", " two", " three"]])
    ledger = UsageLedger()

    _ = [f async for f in ResponseSynthesizer(llm).stream("q", ledger=ledger)]

    assert ledger.completion_tokens == 3
    assert ledger.total_tokens == 3


@pytest.mark.asyncio
async def test_synthesizer_error_ends_with_apology():
    llm = FakeLLMClient(streams=[["Partial", " answer", LLMError("LLM stream failed: reset")]])

    fragments = [f async for f in ResponseSynthesizer(llm).stream("q")]

    assert fragments == ["Partial", " answer", APOLOGY]


@pytest.mark.asyncio
async def test_synthesizer_stream_is_single_use():
    llm = FakeLLMClient(streams=[["only", " once"]])
    stream = ResponseSynthesizer(llm).stream("q")

    assert [f async for f in stream] == ["only", " once"]
    with pytest.raises(RuntimeError):
        async for _ in stream:
            pass


@pytest.mark.asyncio
async def test_synthesizer_is_lazy():
    llm = FakeLLMClient(streams=[["x"]])

    ResponseSynthesizer(llm).stream("q")

    assert llm.stream_calls == []


@pytest.mark.asyncio
async def test_closing_synthesizer_stream_closes_model_stream():
    class TrackingLLM(FakeLLMClient):
        closed = False

        async def stream(self, system, user, temperature, model=None):
            try:
                async for delta in super().stream(system, user, temperature, model=model):
                    yield delta
            finally:
                self.closed = True

    llm = TrackingLLM(streams=[["first", " second", " third"]])
    ledger = UsageLedger()
    stream = ResponseSynthesizer(llm).stream("q", ledger=ledger)

    fragments = aiter(stream)
    assert await anext(fragments) == "first"
    await stream.aclose()

    assert llm.closed
    assert ledger.completion_tokens == 1
