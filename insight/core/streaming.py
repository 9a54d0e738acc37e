"""
Server-Sent Events (SSE) utilities for streaming responses
"""
import asyncio
import json
import logging
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator

from insight.dtos import ChatStreamChunk

logger = logging.getLogger(__name__)

DONE_MARKER = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no"  # Disable nginx buffering
}


def format_sse(chunk: ChatStreamChunk) -> str:
    """
    Format a chunk as an SSE message

    SSE format:
    data: <json>
    """
    return f"data: {chunk.to_json()}\n\n"


def format_sse_error(message: str) -> str:
    return f"data: {json.dumps({'error': message})}\n\n"


async def stream_chunks(
    chunks: AsyncIterator[ChatStreamChunk],
    heartbeat_interval: float = 15
) -> AsyncGenerator[str, None]:
    """
    Serialize chat chunks as SSE, ending with the [DONE] marker

    Sends an SSE comment when more than heartbeat_interval seconds passed
    since the last one, to keep proxies from closing an idle connection.
    """
    loop = asyncio.get_running_loop()
    last_heartbeat = loop.time()

    try:
        async with aclosing(chunks) as source:
            async for chunk in source:
                yield format_sse(chunk)

                now = loop.time()
                if now - last_heartbeat > heartbeat_interval:
                    yield ": heartbeat\n\n"
                    last_heartbeat = now
    except Exception as e:
        logger.error(f"Streaming error: {e}", exc_info=True)
        yield format_sse_error(str(e))

    yield DONE_MARKER
