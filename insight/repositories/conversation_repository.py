"""
Repository for Conversation data access
"""
import logging
from decimal import Decimal
from typing import List, Optional, Dict, Any
from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from insight.models import Conversation, Message, MessageRole, MessageType
from insight.models.conversation import utcnow
from insight.pipeline.llm.pricing import quantize_cost

logger = logging.getLogger(__name__)


class ConversationNotFoundError(Exception):
    """Conversation missing, soft-deleted, or owned by another user"""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class ConversationRepository:
    """Handles Conversation and Message CRUD operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_conversation(
        self,
        user_id: str,
        title: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Conversation:
        """
        Create a new conversation

        Args:
            user_id: Owning user ID
            title: Conversation title (derived from the first message)
            metadata: Optional free-form metadata

        Returns:
            Created Conversation
        """
        conversation = Conversation(user_id=user_id, title=title, extra_metadata=metadata)

        self.session.add(conversation)
        await self.session.commit()
        await self.session.refresh(conversation)

        logger.info(f"Created conversation {conversation.id} for user {user_id}")

        return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        """
        Get conversation by ID

        Raises:
            ConversationNotFoundError: If missing, soft-deleted or not owned by user_id
        """
        statement = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .where(Conversation.user_id == user_id)
            .where(Conversation.deleted_at.is_(None))
        )
        conversation = (await self.session.exec(statement)).first()

        if not conversation:
            raise ConversationNotFoundError(conversation_id)

        return conversation

    async def list_conversations(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Conversation]:
        """
        List user's conversations

        Pinned conversations first, then most recently updated.
        """
        statement = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .where(Conversation.deleted_at.is_(None))
            .order_by(Conversation.is_pinned.desc(), Conversation.updated_at.desc())
            .limit(limit)
            .offset(offset)
        )

        conversations = (await self.session.exec(statement)).all()

        logger.info(f"Listed {len(conversations)} conversations for user {user_id}")

        return list(conversations)

    async def rename_conversation(self, conversation_id: str, user_id: str, title: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id, user_id)
        conversation.title = title
        conversation.updated_at = utcnow()

        await self.session.commit()
        await self.session.refresh(conversation)

        return conversation

    async def toggle_pin(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id, user_id)
        conversation.is_pinned = not conversation.is_pinned

        await self.session.commit()
        await self.session.refresh(conversation)

        logger.info(f"Conversation {conversation_id} pinned={conversation.is_pinned}")

        return conversation

    async def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        """
        Soft delete a conversation

        Rows are kept; the conversation and its messages disappear from
        every read path.
        """
        conversation = await self.get_conversation(conversation_id, user_id)
        conversation.deleted_at = utcnow()

        await self.session.commit()

        logger.info(f"Deleted conversation {conversation_id}")

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        type: MessageType = MessageType.TEXT,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        total_tokens: int = 0,
        cost: Decimal = Decimal("0"),
        sql_query: Optional[str] = None,
        sql_result: Optional[List[Dict[str, Any]]] = None,
        processing_time: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        """
        Add message to conversation

        The conversation's total_tokens/total_cost are re-summed from its
        messages in the same transaction as the insert.
        """
        now = utcnow()
        message = Message(
            conversation_id=conversation_id,
            role=role,
            type=type,
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cost=quantize_cost(cost),
            sql_query=sql_query,
            sql_result=sql_result,
            processing_time=processing_time,
            extra_metadata=metadata,
            created_at=now,
            updated_at=now
        )

        self.session.add(message)
        await self.session.flush()

        statement = select(
            func.coalesce(func.sum(Message.total_tokens), 0),
            func.coalesce(func.sum(Message.cost), 0)
        ).where(Message.conversation_id == conversation_id)
        tokens, cost_sum = (await self.session.exec(statement)).one()

        conversation = await self.session.get(Conversation, conversation_id)
        if conversation:
            conversation.total_tokens = int(tokens)
            conversation.total_cost = quantize_cost(cost_sum)
            conversation.updated_at = now

        await self.session.commit()
        await self.session.refresh(message)

        logger.info(f"Added {role.value}/{type.value} message to conversation {conversation_id}")

        return message

    async def get_messages(
        self,
        conversation_id: str,
        limit: Optional[int] = None
    ) -> List[Message]:
        """
        Get conversation messages

        Returns:
            List of messages ordered by created_at asc
        """
        statement = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
        )

        if limit:
            statement = statement.limit(limit)

        messages = (await self.session.exec(statement)).all()

        return list(messages)

    async def rollback(self) -> None:
        """Discard a failed, uncommitted unit of work"""
        await self.session.rollback()

    async def get_stats(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        """Message count, token/cost totals and average processing time"""
        conversation = await self.get_conversation(conversation_id, user_id)

        statement = select(
            func.count(Message.id),
            func.avg(Message.processing_time)
        ).where(Message.conversation_id == conversation_id)
        message_count, avg_processing = (await self.session.exec(statement)).one()

        return {
            "conversation_id": conversation.id,
            "message_count": int(message_count or 0),
            "total_tokens": conversation.total_tokens,
            "total_cost": quantize_cost(conversation.total_cost),
            "average_processing_time": round(float(avg_processing), 2) if avg_processing is not None else None,
        }
