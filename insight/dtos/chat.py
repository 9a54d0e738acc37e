"""
Chat turn DTOs (inbound request, outbound stream chunks)

Serialized with camelCase keys for the web client.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenUsage(CamelModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatRequest(CamelModel):
    """One chat turn"""
    message: str = Field(..., min_length=1)
    conversation_id: Optional[str] = None
    user_id: str = Field(..., min_length=1)
    stream: bool = True


class ChatStreamChunk(CamelModel):
    """
    Incremental fragment of an assistant reply

    A turn ends with exactly one chunk where finished is True.
    """
    content: str = ""
    finished: bool = False
    usage: Optional[TokenUsage] = None
    sql_query: Optional[str] = None
    sql_result: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ChatResponse(CamelModel):
    """Aggregated reply for non-streaming callers"""
    content: str
    usage: Optional[TokenUsage] = None
    sql_query: Optional[str] = None
    sql_result: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_chunks(cls, chunks: List[ChatStreamChunk]) -> "ChatResponse":
        """Concatenate chunk contents; usage/sql/metadata come from the last chunk"""
        last = chunks[-1] if chunks else ChatStreamChunk(finished=True)
        return cls(
            content="".join(c.content for c in chunks),
            usage=last.usage,
            sql_query=last.sql_query,
            sql_result=last.sql_result,
            metadata=last.metadata,
        )
