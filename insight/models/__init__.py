"""
Database models
"""
from insight.models.conversation import (
    Conversation,
    Message,
    MessageRole,
    MessageType,
)

__all__ = [
    "Conversation",
    "Message",
    "MessageRole",
    "MessageType",
]
