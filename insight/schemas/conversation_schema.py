from pydantic import Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from insight.dtos.chat import CamelModel


class CreateConversationRequest(CamelModel):
    """Request to create a new conversation"""
    user_id: str = Field(..., min_length=1)
    title: Optional[str] = None  # If None, "New Conversation"
    metadata: Optional[Dict[str, Any]] = None


class RenameConversationRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)


class ConversationResponse(CamelModel):
    """Conversation metadata"""
    id: str
    title: str
    user_id: str
    total_tokens: int
    total_cost: Decimal
    is_pinned: bool
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, conversation) -> "ConversationResponse":
        return cls(
            id=conversation.id,
            title=conversation.title,
            user_id=conversation.user_id,
            total_tokens=conversation.total_tokens,
            total_cost=conversation.total_cost,
            is_pinned=conversation.is_pinned,
            metadata=conversation.extra_metadata,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at
        )


class ListConversationsResponse(CamelModel):
    """Response for listing conversations"""
    conversations: List[ConversationResponse]
    total: int


class MessageResponse(CamelModel):
    """Individual message in conversation"""
    id: str
    conversation_id: str
    role: str  # "user", "assistant" or "system"
    type: str
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: Decimal = Decimal("0")
    sql_query: Optional[str] = None
    sql_result: Optional[Any] = None
    processing_time: Optional[int] = None  # milliseconds
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_model(cls, message) -> "MessageResponse":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            role=message.role.value,
            type=message.type.value,
            content=message.content,
            prompt_tokens=message.prompt_tokens,
            completion_tokens=message.completion_tokens,
            total_tokens=message.total_tokens,
            cost=message.cost,
            sql_query=message.sql_query,
            sql_result=message.sql_result,
            processing_time=message.processing_time,
            metadata=message.extra_metadata,
            created_at=message.created_at
        )


class ConversationStatsResponse(CamelModel):
    conversation_id: str
    message_count: int
    total_tokens: int
    total_cost: Decimal
    average_processing_time: Optional[float] = None
