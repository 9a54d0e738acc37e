"""
Conversation/message models

A Conversation owns its Messages. Running token/cost totals on the
conversation are kept equal to the sum over its messages by
ConversationRepository.add_message.
"""
import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any
from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageType(str, enum.Enum):
    TEXT = "text"
    SQL_QUERY = "sql_query"
    DATA_RESULT = "data_result"
    SUGGESTION = "suggestion"
    ERROR = "error"


class Conversation(SQLModel, table=True):
    """
    Persistent conversation thread between a user and the assistant

    Soft-deleted conversations keep their rows; deleted_at is set instead.
    """
    __tablename__ = "conversations"

    id: str = Field(default_factory=new_id, primary_key=True)  # UUID
    title: str
    user_id: str = Field(index=True)
    total_tokens: int = Field(default=0)
    total_cost: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=6)
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    extra_metadata: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )
    is_pinned: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    deleted_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class Message(SQLModel, table=True):
    """
    One user input or assistant reply within a conversation

    Created once per turn and never mutated afterwards.
    """
    __tablename__ = "messages"

    id: str = Field(default_factory=new_id, primary_key=True)  # UUID
    conversation_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("conversations.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    role: MessageRole = Field(default=MessageRole.USER)
    type: MessageType = Field(default=MessageType.TEXT)
    content: str = Field(sa_column=Column(Text, nullable=False))

    # Token/cost accounting
    prompt_tokens: int = Field(default=0)
    completion_tokens: int = Field(default=0)
    total_tokens: int = Field(default=0)
    cost: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=6)

    # Query details for assistant replies
    sql_query: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    sql_result: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
    processing_time: Optional[int] = None  # milliseconds
    extra_metadata: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
