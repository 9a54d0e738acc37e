"""
Service for chat turn orchestration
Runs one user message through the insight pipeline and persists the exchange
"""
import asyncio
import enum
import logging
import time
import weakref
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import anyio

from insight.core.config import settings
from insight.dtos import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    PromptAnalysisResult,
    SQLGenerationResult,
    TableSchema,
)
from insight.models import Conversation, MessageRole, MessageType
from insight.repositories import ConversationRepository
from insight.pipeline.llm.pricing import UsageLedger
from insight.pipeline.llm.prompts import DEFAULT_SUGGESTIONS, FALLBACK_CONTEXT
from insight.pipeline.sql.executor import QueryExecutor, QueryExecutionError
from insight.pipeline.stages import (
    PromptClassifier,
    SchemaIntrospector,
    SQLGenerator,
    SQLGenerationError,
    SQLValidator,
    ResponseSynthesizer,
    ResponseStream,
)

logger = logging.getLogger(__name__)

NO_SCHEMA_MESSAGE = (
    "I apologize, but I don't have access to the database schema at the moment. "
    "Please try again later."
)
GENERATION_FAILED_MESSAGE = (
    "I apologize, but I couldn't turn your question into a data query. "
    "Please try rephrasing it."
)
VALIDATION_FAILED_MESSAGE = (
    "I encountered an issue generating the SQL query: {errors}. "
    "Let me try a different approach."
)
EXECUTION_FAILED_MESSAGE = (
    "I encountered an error while retrieving the data. "
    "Please try rephrasing your question."
)
UNEXPECTED_ERROR_MESSAGE = "I apologize, but I encountered an unexpected error. Please try again."

MIN_SUGGESTIONS = 3
TITLE_LENGTH = 50


class TurnStage(str, enum.Enum):
    CLASSIFYING = "classifying"
    NOT_DATA_RELATED = "not_data_related"
    SUGGESTING = "suggesting"
    SCHEMA_LOOKUP = "schema_lookup"
    GENERATING_SQL = "generating_sql"
    VALIDATING = "validating"
    INVALID = "invalid"
    FALLBACK_RESPONSE = "fallback_response"
    EXECUTING = "executing"
    EXEC_FAILED = "exec_failed"
    SYNTHESIZING = "synthesizing"
    FINALIZING = "finalizing"
    DONE = "done"


# One lock per conversation id, dropped once no turn holds a reference
_conversation_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def conversation_lock(conversation_id: str) -> asyncio.Lock:
    lock = _conversation_locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _conversation_locks[conversation_id] = lock
    return lock


def build_suggestions(analysis: PromptAnalysisResult) -> List[str]:
    """Classifier suggestions, padded with the defaults up to MIN_SUGGESTIONS"""
    suggestions = list(analysis.suggested_queries)
    for default in DEFAULT_SUGGESTIONS:
        if len(suggestions) >= MIN_SUGGESTIONS:
            break
        if default not in suggestions:
            suggestions.append(default)
    return suggestions


def build_suggestion_text(message: str, suggestions: List[str]) -> str:
    numbered = "\n".join(f"{i}. {s}" for i, s in enumerate(suggestions, start=1))
    return (
        f"I understand you're asking about \"{message}\", but I'm specifically designed "
        f"to help with business data insights and reports.\n\n"
        f"Here are some questions I can help you with:\n\n"
        f"{numbered}\n\n"
        f"Feel free to ask me anything about your business data, statistics, or reports!"
    )


async def collect_response(chunks: AsyncIterator[ChatStreamChunk]) -> ChatResponse:
    """Drain a chunk stream into the aggregated response for non-streaming callers"""
    collected = [chunk async for chunk in chunks]
    return ChatResponse.from_chunks(collected)


class _Turn:
    """Mutable state of one chat turn"""

    def __init__(self, request: ChatRequest):
        self.request = request
        self.started = time.monotonic()
        self.stage = TurnStage.CLASSIFYING
        self.conversation: Optional[Conversation] = None
        # Kept apart from the ORM object, which a rollback expires
        self.conversation_id: Optional[str] = None
        self.ledger = UsageLedger()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def finished_metadata(self) -> Dict[str, Any]:
        return {"conversationId": self.conversation_id}


class InsightService:
    """
    Orchestrates the insight pipeline for one chat turn

    classify → (suggest) | schema → generate → validate → (fallback) | execute → synthesize

    Every branch persists its assistant message before the single
    finished chunk is yielded. Turns on the same conversation run one at
    a time.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        classifier: PromptClassifier,
        introspector: SchemaIntrospector,
        generator: SQLGenerator,
        validator: SQLValidator,
        executor: QueryExecutor,
        synthesizer: ResponseSynthesizer,
        suggestion_delay: Optional[float] = None
    ):
        self.repository = repository
        self.classifier = classifier
        self.introspector = introspector
        self.generator = generator
        self.validator = validator
        self.executor = executor
        self.synthesizer = synthesizer
        self.suggestion_delay = (
            settings.SUGGESTION_CHUNK_DELAY if suggestion_delay is None else suggestion_delay
        )

    def _enter(self, turn: _Turn, stage: TurnStage) -> None:
        logger.info(f"[{turn.conversation_id}] {turn.stage.value} -> {stage.value}")
        turn.stage = stage

    async def process_chat_message(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """
        Main entry point for a chat turn

        Yields content chunks followed by exactly one chunk with
        finished=True. Never raises for pipeline failures; they become an
        apology message in the conversation.
        """
        turn = _Turn(request)

        try:
            turn.conversation = await self._resolve_conversation(request)
            turn.conversation_id = turn.conversation.id

            async with conversation_lock(turn.conversation_id):
                await self.repository.add_message(
                    turn.conversation_id,
                    role=MessageRole.USER,
                    type=MessageType.TEXT,
                    content=request.message
                )

                async with aclosing(self._run_pipeline(turn)) as chunks:
                    async for chunk in chunks:
                        yield chunk

        except Exception as e:
            logger.error(
                f"Error processing chat message in stage {turn.stage.value}: {e}",
                exc_info=True
            )
            if turn.conversation is not None:
                await self._save_unexpected_error(turn, e)
            self._enter(turn, TurnStage.DONE)
            yield ChatStreamChunk(
                content=UNEXPECTED_ERROR_MESSAGE,
                finished=True,
                metadata=turn.finished_metadata() if turn.conversation else None
            )

    async def _resolve_conversation(self, request: ChatRequest) -> Conversation:
        if request.conversation_id:
            conversation = await self.repository.get_conversation(request.conversation_id, request.user_id)
            logger.info(f"Loaded conversation {conversation.id}")
            return conversation

        return await self.repository.create_conversation(
            user_id=request.user_id,
            title=request.message[:TITLE_LENGTH]
        )

    async def _run_pipeline(self, turn: _Turn) -> AsyncIterator[ChatStreamChunk]:
        message = turn.request.message

        analysis = await self.classifier.analyze(message, ledger=turn.ledger)

        if not analysis.is_data_related:
            self._enter(turn, TurnStage.NOT_DATA_RELATED)
            async with aclosing(self._suggest(turn, analysis)) as chunks:
                async for chunk in chunks:
                    yield chunk
            return

        self._enter(turn, TurnStage.SCHEMA_LOOKUP)
        schemas = await self.introspector.get_schema()
        if not schemas:
            yield await self._fail(turn, NO_SCHEMA_MESSAGE, {"error": "No database schema available"})
            return

        self._enter(turn, TurnStage.GENERATING_SQL)
        try:
            generation = await self.generator.generate(message, schemas, analysis, ledger=turn.ledger)
        except SQLGenerationError as e:
            yield await self._fail(
                turn,
                GENERATION_FAILED_MESSAGE,
                {"error": "SQL generation failed", "errorDetails": str(e)}
            )
            return

        self._enter(turn, TurnStage.VALIDATING)
        validation = await self.validator.validate(generation.sql_query, schemas)
        if not validation.is_valid:
            self._enter(turn, TurnStage.INVALID)
            async with aclosing(self._fallback(turn, generation, validation.errors)) as chunks:
                async for chunk in chunks:
                    yield chunk
            return

        self._enter(turn, TurnStage.EXECUTING)
        try:
            rows = await self.executor.execute(generation.sql_query)
        except QueryExecutionError as e:
            self._enter(turn, TurnStage.EXEC_FAILED)
            yield await self._fail(
                turn,
                EXECUTION_FAILED_MESSAGE,
                {"error": "SQL execution failed", "errorDetails": str(e), "sqlQuery": e.sql},
                sql_query=generation.sql_query
            )
            return

        async with aclosing(self._answer(turn, analysis, generation, schemas, rows)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def _suggest(self, turn: _Turn, analysis: PromptAnalysisResult) -> AsyncIterator[ChatStreamChunk]:
        self._enter(turn, TurnStage.SUGGESTING)
        suggestions = build_suggestions(analysis)
        text = build_suggestion_text(turn.request.message, suggestions)

        metadata = {"suggestions": suggestions, "analysis": analysis.model_dump(mode="json")}

        words = text.split(" ")
        try:
            for i, word in enumerate(words):
                yield ChatStreamChunk(content=word if i == len(words) - 1 else word + " ")
                if self.suggestion_delay > 0:
                    await asyncio.sleep(self.suggestion_delay)
        except (GeneratorExit, asyncio.CancelledError):
            logger.warning(f"[{turn.conversation_id}] Client disconnected during {turn.stage.value}")
            with anyio.CancelScope(shield=True):
                await self._save_assistant(
                    turn, MessageType.SUGGESTION, text, turn.ledger,
                    metadata={**metadata, "interrupted": True}
                )
            raise

        await self._save_assistant(turn, MessageType.SUGGESTION, text, turn.ledger, metadata=metadata)
        self._enter(turn, TurnStage.DONE)
        yield ChatStreamChunk(finished=True, metadata=turn.finished_metadata())

    async def _fail(
        self,
        turn: _Turn,
        content: str,
        metadata: Dict[str, Any],
        sql_query: Optional[str] = None
    ) -> ChatStreamChunk:
        """Terminal error branch: persist the error message, return the finished chunk"""
        logger.warning(f"[{turn.conversation_id}] Turn failed in {turn.stage.value}: {metadata.get('error')}")
        await self._save_assistant(
            turn,
            MessageType.ERROR,
            content,
            turn.ledger,
            sql_query=sql_query,
            metadata=metadata
        )
        self._enter(turn, TurnStage.DONE)
        return ChatStreamChunk(content=content, finished=True, metadata=turn.finished_metadata())

    async def _fallback(
        self,
        turn: _Turn,
        generation: SQLGenerationResult,
        errors: List[str]
    ) -> AsyncIterator[ChatStreamChunk]:
        """Report the rejected query, then answer without data"""
        content = VALIDATION_FAILED_MESSAGE.format(errors=", ".join(errors))
        await self._save_assistant(
            turn,
            MessageType.ERROR,
            content,
            turn.ledger,
            metadata={
                "error": "SQL validation failed",
                "validationErrors": errors,
                "sqlQuery": generation.sql_query,
            }
        )
        yield ChatStreamChunk(content=content, metadata=turn.finished_metadata())

        self._enter(turn, TurnStage.FALLBACK_RESPONSE)
        ledger = UsageLedger()
        stream = self.synthesizer.stream(turn.request.message, FALLBACK_CONTEXT, ledger=ledger)

        parts: List[str] = []
        async with aclosing(self._relay(turn, stream, parts, MessageType.TEXT, ledger)) as fragments:
            async for fragment in fragments:
                yield ChatStreamChunk(content=fragment)

        await self._save_assistant(turn, MessageType.TEXT, "".join(parts), ledger)
        self._enter(turn, TurnStage.DONE)
        yield ChatStreamChunk(finished=True, metadata=turn.finished_metadata())

    async def _answer(
        self,
        turn: _Turn,
        analysis: PromptAnalysisResult,
        generation: SQLGenerationResult,
        schemas: List[TableSchema],
        rows: List[Dict[str, Any]]
    ) -> AsyncIterator[ChatStreamChunk]:
        self._enter(turn, TurnStage.SYNTHESIZING)
        stream = self.synthesizer.stream(
            turn.request.message,
            generation.explanation,
            rows,
            ledger=turn.ledger
        )

        parts: List[str] = []
        first = True
        relay = self._relay(
            turn, stream, parts, MessageType.DATA_RESULT, turn.ledger,
            sql_query=generation.sql_query, sql_result=rows
        )
        async with aclosing(relay) as fragments:
            async for fragment in fragments:
                # Query and rows ride along with the first fragment and the final chunk
                if first:
                    yield ChatStreamChunk(content=fragment, sql_query=generation.sql_query, sql_result=rows)
                    first = False
                else:
                    yield ChatStreamChunk(content=fragment)

        self._enter(turn, TurnStage.FINALIZING)
        processing_time = turn.elapsed_ms()
        await self._save_assistant(
            turn,
            MessageType.DATA_RESULT,
            "".join(parts),
            turn.ledger,
            sql_query=generation.sql_query,
            sql_result=rows,
            processing_time=processing_time,
            metadata={
                "analysis": analysis.model_dump(mode="json"),
                "sqlGeneration": generation.model_dump(mode="json"),
                "tables": [s.table_name for s in schemas],
            }
        )

        logger.info(
            f"Insight query completed: user={turn.request.user_id} "
            f"conversation={turn.conversation_id} rows={len(rows)} "
            f"processing_time={processing_time}ms cost={turn.ledger.cost} "
            f"sql={generation.sql_query}"
        )

        self._enter(turn, TurnStage.DONE)
        yield ChatStreamChunk(
            finished=True,
            usage=turn.ledger.usage,
            sql_query=generation.sql_query,
            sql_result=rows,
            metadata={
                "processingTime": processing_time,
                "cost": float(turn.ledger.cost),
                "conversationId": turn.conversation_id,
            }
        )

    async def _relay(
        self,
        turn: _Turn,
        stream: ResponseStream,
        parts: List[str],
        type: MessageType,
        ledger: UsageLedger,
        sql_query: Optional[str] = None,
        sql_result: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[str]:
        """
        Forward synthesized fragments, accumulating them into parts

        If the consumer goes away mid-stream, whatever was produced so far
        is saved as the assistant message before the cancellation propagates.
        """
        try:
            async for fragment in stream:
                parts.append(fragment)
                yield fragment
        except (GeneratorExit, asyncio.CancelledError):
            logger.warning(f"[{turn.conversation_id}] Client disconnected during {turn.stage.value}")
            # The task may already be cancelled: every await below must be shielded
            with anyio.CancelScope(shield=True):
                await stream.aclose()
                await self._save_assistant(
                    turn,
                    type,
                    "".join(parts),
                    ledger,
                    sql_query=sql_query,
                    sql_result=sql_result,
                    processing_time=turn.elapsed_ms(),
                    metadata={"interrupted": True}
                )
            raise

    async def _save_assistant(
        self,
        turn: _Turn,
        type: MessageType,
        content: str,
        ledger: UsageLedger,
        sql_query: Optional[str] = None,
        sql_result: Optional[List[Dict[str, Any]]] = None,
        processing_time: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.repository.add_message(
            turn.conversation_id,
            role=MessageRole.ASSISTANT,
            type=type,
            content=content,
            prompt_tokens=ledger.prompt_tokens,
            completion_tokens=ledger.completion_tokens,
            total_tokens=ledger.total_tokens,
            cost=ledger.cost,
            sql_query=sql_query,
            sql_result=sql_result,
            processing_time=processing_time if processing_time is not None else turn.elapsed_ms(),
            metadata=metadata
        )

    async def _save_unexpected_error(self, turn: _Turn, error: Exception) -> None:
        try:
            await self.repository.rollback()
            await self._save_assistant(
                turn,
                MessageType.ERROR,
                UNEXPECTED_ERROR_MESSAGE,
                turn.ledger,
                metadata={
                    "error": "Unexpected error",
                    "errorDetails": str(error),
                    "stage": turn.stage.value,
                }
            )
        except Exception as e:
            logger.error(f"Could not persist error message for {turn.conversation_id}: {e}", exc_info=True)
