"""
Insights Controller - Chat turns and conversation management
"""
import logging
from typing import List
from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from insight.core.config import settings
from insight.core.database import engine, get_db, SessionLocal
from insight.core.streaming import SSE_HEADERS, stream_chunks
from insight.dtos import ChatRequest, ChatResponse
from insight.pipeline.llm.client import LLMClient
from insight.pipeline.llm.prompts import EXAMPLE_QUERIES
from insight.pipeline.sql.catalog import Catalog, PostgresCatalog
from insight.pipeline.sql.executor import QueryExecutor
from insight.pipeline.stages import (
    PromptClassifier,
    SchemaIntrospector,
    SQLGenerator,
    SQLValidator,
    ResponseSynthesizer,
)
from insight.repositories import ConversationRepository
from insight.schemas import (
    CreateConversationRequest,
    RenameConversationRequest,
    ConversationResponse,
    ListConversationsResponse,
    MessageResponse,
    ConversationStatsResponse,
    ExampleQuery,
    ExamplesResponse,
)
from insight.services import InsightService, collect_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insights", tags=["Insights"])


def get_session_factory() -> async_sessionmaker:
    return SessionLocal


def get_llm_client() -> LLMClient:
    return LLMClient()


def get_catalog() -> Catalog:
    return PostgresCatalog(engine, schema=settings.CATALOG_SCHEMA)


def build_insight_service(session: AsyncSession, llm: LLMClient, catalog: Catalog) -> InsightService:
    """Wire the pipeline stages around one database session"""
    return InsightService(
        repository=ConversationRepository(session),
        classifier=PromptClassifier(llm),
        introspector=SchemaIntrospector(catalog),
        generator=SQLGenerator(llm),
        validator=SQLValidator(catalog),
        executor=QueryExecutor(catalog),
        synthesizer=ResponseSynthesizer(llm)
    )


@router.post("/chat")
async def chat(
    req: ChatRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: LLMClient = Depends(get_llm_client),
    catalog: Catalog = Depends(get_catalog)
):
    """
    Process one chat turn

    stream=true: text/event-stream of `data: <chunk>` lines ending with
    `data: [DONE]`. stream=false: the aggregated ChatResponse.

    The turn opens its own session: request-scoped dependencies are
    closed before a streaming body is sent.
    """
    logger.info(f"Chat turn for user {req.user_id} (conversation={req.conversation_id}, stream={req.stream})")

    if not req.stream:
        async with session_factory() as session:
            service = build_insight_service(session, llm, catalog)
            response = await collect_response(service.process_chat_message(req))
        return response.model_dump(by_alias=True, exclude_none=True, mode="json")

    async def event_generator():
        async with session_factory() as session:
            service = build_insight_service(session, llm, catalog)
            async for event in stream_chunks(service.process_chat_message(req)):
                yield event

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/conversations", response_model=ConversationResponse)
async def create_conversation(
    req: CreateConversationRequest,
    db: AsyncSession = Depends(get_db)
):
    conversation = await ConversationRepository(db).create_conversation(
        user_id=req.user_id,
        title=req.title or "New Conversation",
        metadata=req.metadata
    )
    return ConversationResponse.from_model(conversation)


@router.get("/conversations", response_model=ListConversationsResponse)
async def list_conversations(
    user_id: str = Query(..., alias="userId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """
    List user's conversations

    Pinned first, then most recently updated
    """
    conversations = await ConversationRepository(db).list_conversations(user_id, limit=limit, offset=offset)

    return ListConversationsResponse(
        conversations=[ConversationResponse.from_model(c) for c in conversations],
        total=len(conversations)
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db)
):
    conversation = await ConversationRepository(db).get_conversation(conversation_id, user_id)
    return ConversationResponse.from_model(conversation)


@router.patch("/conversations/{conversation_id}", response_model=ConversationResponse)
async def rename_conversation(
    conversation_id: str,
    req: RenameConversationRequest,
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db)
):
    conversation = await ConversationRepository(db).rename_conversation(conversation_id, user_id, req.title)
    return ConversationResponse.from_model(conversation)


@router.patch("/conversations/{conversation_id}/pin", response_model=ConversationResponse)
async def toggle_pin(
    conversation_id: str,
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db)
):
    conversation = await ConversationRepository(db).toggle_pin(conversation_id, user_id)
    return ConversationResponse.from_model(conversation)


@router.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete: the conversation disappears from every listing"""
    await ConversationRepository(db).delete_conversation(conversation_id, user_id)
    return Response(status_code=204)


@router.get("/conversations/{conversation_id}/stats", response_model=ConversationStatsResponse)
async def conversation_stats(
    conversation_id: str,
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db)
):
    stats = await ConversationRepository(db).get_stats(conversation_id, user_id)
    return ConversationStatsResponse(**stats)


@router.get("/messages/{conversation_id}", response_model=List[MessageResponse])
async def get_messages(
    conversation_id: str,
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db)
):
    """Messages of a conversation in creation order"""
    repo = ConversationRepository(db)
    # Ownership check
    await repo.get_conversation(conversation_id, user_id)
    messages = await repo.get_messages(conversation_id)
    return [MessageResponse.from_model(m) for m in messages]


@router.get("/examples", response_model=ExamplesResponse)
async def get_examples():
    """Example questions for the chat screen"""
    examples = [ExampleQuery(**example) for example in EXAMPLE_QUERIES]
    categories = list(dict.fromkeys(example.category for example in examples))
    return ExamplesResponse(categories=categories, examples=examples, total_count=len(examples))
