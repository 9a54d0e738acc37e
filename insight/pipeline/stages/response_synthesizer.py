"""
Stage: Response Synthesis
Streams a markdown narrative over the (optional) query result
"""
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from insight.core.config import settings
from insight.dtos import TokenUsage
from insight.pipeline.llm.client import LLMClient
from insight.pipeline.llm.prompts import build_response_prompt
from insight.pipeline.llm.pricing import UsageLedger

logger = logging.getLogger(__name__)

APOLOGY = "I apologize, but I encountered an error while processing your request. Please try again."


class ResponseStream:
    """
    One-pass stream of text fragments

    Iterating a second time raises RuntimeError; the underlying model call
    only starts on first iteration.
    """

    def __init__(self, fragments: AsyncIterator[str]):
        self._fragments = fragments
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("Response stream can only be consumed once")
        self._consumed = True
        return self._fragments

    async def aclose(self) -> None:
        await self._fragments.aclose()


class ResponseSynthesizer:
    def __init__(self, llm: LLMClient, model: Optional[str] = None, temperature: Optional[float] = None):
        self.llm = llm
        self.model = model or settings.LLM_FAST_MODEL
        self.temperature = settings.RESPONSE_TEMPERATURE if temperature is None else temperature

    def stream(
        self,
        message: str,
        context: str = "",
        sql_result: Optional[List[Dict[str, Any]]] = None,
        ledger: Optional[UsageLedger] = None
    ) -> ResponseStream:
        """
        Narrate the answer as a stream of markdown fragments

        Never raises: a failure mid-stream yields one apology fragment and
        ends the stream.
        """
        return ResponseStream(self._fragments(message, context, sql_result, ledger))

    async def _fragments(
        self,
        message: str,
        context: str,
        sql_result: Optional[List[Dict[str, Any]]],
        ledger: Optional[UsageLedger]
    ) -> AsyncIterator[str]:
        system, user = build_response_prompt(message, context, sql_result)
        usage: Optional[TokenUsage] = None
        fragments = 0

        try:
            async with aclosing(self.llm.stream(system, user, self.temperature, model=self.model)) as deltas:
                async for delta in deltas:
                    if delta.usage is not None:
                        usage = delta.usage
                    if delta.content:
                        fragments += 1
                        yield delta.content
        except Exception as e:
            logger.error(f"Response streaming failed: {e}", exc_info=True)
            yield APOLOGY
        finally:
            if ledger is not None:
                # Providers without stream usage: count fragments as completion tokens
                if usage is None:
                    usage = TokenUsage(completion_tokens=fragments, total_tokens=fragments)
                ledger.record(usage, self.model)

        logger.info(f"Streamed response in {fragments} fragments")
