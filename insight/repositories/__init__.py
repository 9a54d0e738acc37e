"""
Repository layer for data access
"""
from insight.repositories.conversation_repository import (
    ConversationRepository,
    ConversationNotFoundError
)

__all__ = [
    "ConversationRepository",
    "ConversationNotFoundError",
]
