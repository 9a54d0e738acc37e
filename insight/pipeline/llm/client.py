"""
LLM client for OpenAI-compatible chat completions (OpenAI or Azure OpenAI)
"""
import json
import logging
from typing import AsyncIterator, Optional
import httpx
from pydantic import BaseModel

from insight.core.config import settings
from insight.dtos import TokenUsage

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Transport or response-shape failure when talking to the LLM provider"""


class LLMCompletion(BaseModel):
    content: str
    model: str
    usage: TokenUsage = TokenUsage()


class LLMStreamDelta(BaseModel):
    """One streamed fragment; the provider's last event carries usage only"""
    content: str = ""
    usage: Optional[TokenUsage] = None


def _chat_url(model: str) -> str:
    """Build chat completion URL (Azure deployments are named after the model)"""
    if settings.AZURE_OPENAI_ENDPOINT:
        return (
            f"{settings.AZURE_OPENAI_ENDPOINT}/openai/deployments/"
            f"{model}/chat/completions?"
            f"api-version={settings.AZURE_OPENAI_API_VERSION}"
        )
    return f"{settings.OPENAI_BASE_URL}/chat/completions"


def _headers() -> dict:
    if settings.AZURE_OPENAI_ENDPOINT:
        return {
            "Content-Type": "application/json",
            "api-key": settings.AZURE_OPENAI_API_KEY
        }
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.OPENAI_API_KEY}"
    }


def _usage_from(data: Optional[dict]) -> TokenUsage:
    if not data:
        return TokenUsage()
    prompt = int(data.get("prompt_tokens") or 0)
    completion = int(data.get("completion_tokens") or 0)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(data.get("total_tokens") or prompt + completion)
    )


class LLMClient:
    """
    Async chat-completions client

    Two call shapes are used by the pipeline:
    - complete_json: one-shot completion constrained to a JSON object
      (classifier, SQL generator)
    - stream: token-streamed completion (response synthesizer)

    Calls are never retried here; a failed call surfaces as LLMError.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _payload(self, system: str, user: str, temperature: float, model: str) -> dict:
        payload = {
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user}
            ],
            "temperature": temperature
        }
        if not settings.AZURE_OPENAI_ENDPOINT:
            payload["model"] = model
        return payload

    async def complete_json(
        self,
        system: str,
        user: str,
        temperature: float,
        model: Optional[str] = None
    ) -> LLMCompletion:
        """
        Call the provider in JSON mode

        Returns the raw content string plus token usage; parsing is left to
        the caller (see parsers.parse_json).
        """
        model = model or settings.LLM_FAST_MODEL
        payload = self._payload(system, user, temperature, model)
        payload["response_format"] = {"type": "json_object"}

        try:
            async with self._client() as client:
                response = await client.post(_chat_url(model), headers=_headers(), json=payload)
                response.raise_for_status()
                data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except httpx.HTTPError as e:
            logger.error(f"LLM call failed ({model}): {e}")
            raise LLMError(f"LLM request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Unexpected LLM response shape ({model}): {e}")
            raise LLMError("Unexpected LLM response shape") from e

        return LLMCompletion(
            content=content,
            model=data.get("model") or model,
            usage=_usage_from(data.get("usage"))
        )

    async def stream(
        self,
        system: str,
        user: str,
        temperature: float,
        model: Optional[str] = None
    ) -> AsyncIterator[LLMStreamDelta]:
        """
        Stream a completion as text deltas

        Parses the provider's SSE "data:" lines. Usage is requested via
        stream_options and yielded as a final content-less delta when the
        provider reports it.
        """
        model = model or settings.LLM_FAST_MODEL
        payload = self._payload(system, user, temperature, model)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", _chat_url(model), headers=_headers(), json=payload
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break

                        event = json.loads(data)
                        choices = event.get("choices") or []
                        if choices:
                            content = (choices[0].get("delta") or {}).get("content")
                            if content:
                                yield LLMStreamDelta(content=content)
                        if event.get("usage"):
                            yield LLMStreamDelta(usage=_usage_from(event["usage"]))
        except httpx.HTTPError as e:
            logger.error(f"LLM stream failed ({model}): {e}")
            raise LLMError(f"LLM stream failed: {e}") from e
        except (ValueError, AttributeError) as e:
            logger.error(f"Malformed LLM stream event ({model}): {e}")
            raise LLMError("Malformed LLM stream event") from e
