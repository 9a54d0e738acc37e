"""
Request/response schemas for the HTTP layer
"""
from insight.schemas.conversation_schema import (
    CreateConversationRequest,
    RenameConversationRequest,
    ConversationResponse,
    ListConversationsResponse,
    MessageResponse,
    ConversationStatsResponse,
)
from insight.schemas.example_schema import ExampleQuery, ExamplesResponse

__all__ = [
    "CreateConversationRequest",
    "RenameConversationRequest",
    "ConversationResponse",
    "ListConversationsResponse",
    "MessageResponse",
    "ConversationStatsResponse",
    "ExampleQuery",
    "ExamplesResponse",
]
