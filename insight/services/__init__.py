"""
Service layer for business logic
"""
from insight.services.insight_service import (
    InsightService,
    TurnStage,
    collect_response,
    conversation_lock,
)

__all__ = [
    "InsightService",
    "TurnStage",
    "collect_response",
    "conversation_lock",
]
