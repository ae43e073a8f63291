import asyncio
from typing import Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..config import settings
from ..errors import LLMConfigurationError, ProviderError


PERPLEXITY_BASE_URL = "https://api.perplexity.ai"


async def _pplx_chat(
    messages: List[Dict[str, str]],
    max_tokens: int,
    temperature: float,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    if not settings.PERPLEXITY_API_KEY:
        raise LLMConfigurationError(
            "PERPLEXITY_API_KEY is not set. Please configure PERPLEXITY_API_KEY in environment variables."
        )

    headers = {
        "Authorization": f"Bearer {settings.PERPLEXITY_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": settings.PERPLEXITY_MODEL,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }

    async with httpx.AsyncClient(base_url=PERPLEXITY_BASE_URL, timeout=httpx.Timeout(timeout),
                                 transport=transport) as client:
        try:
            resp = await client.post("/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderError("Perplexity request timed out", status=408) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Perplexity transport error: {e}") from e
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = resp.json()
            except ValueError:
                detail = {"text": resp.text}
            raise ProviderError(f"Perplexity API error: {detail}", status=resp.status_code) from e
    try:
        content = resp.json()["choices"][0]["message"].get("content")
    except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
        raise ProviderError("Perplexity returned a malformed response") from e
    return content or ""


async def _openai_chat(
    client: AsyncOpenAI,
    messages: List[Dict[str, str]],
    max_tokens: int,
    temperature: float,
    timeout: float,
) -> str:
    try:
        chat = await asyncio.wait_for(
            client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise ProviderError(f"Chat completion timed out after {timeout}s", status=408) from e
    except openai.APIStatusError as e:
        raise ProviderError(f"OpenAI chat error: {e.message}", status=e.status_code) from e
    except openai.OpenAIError as e:
        raise ProviderError(f"OpenAI chat error: {e}") from e
    try:
        return chat.choices[0].message.content or ""
    except (AttributeError, IndexError, TypeError) as e:
        raise ProviderError("OpenAI chat returned a malformed response") from e


class ChatProvider:
    """Chat completion against OpenAI, or Perplexity when LLM_PROVIDER=perplexity."""

    def __init__(self, provider: Optional[str] = None, client: Optional[AsyncOpenAI] = None,
                 timeout: Optional[float] = None, transport: httpx.AsyncBaseTransport | None = None):
        self.provider = (provider or settings.LLM_PROVIDER or "openai").lower()
        self._client = client
        self._transport = transport
        self.timeout = settings.PROVIDER_TIMEOUT_SEC if timeout is None else timeout

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            from .embedding import get_client
            self._client = get_client()
        return self._client

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Return the generated text for a system + user message pair."""
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        max_tokens = settings.LLM_MAX_TOKENS if max_tokens is None else max_tokens
        temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

        if self.provider == "perplexity":
            return await _pplx_chat(messages, max_tokens, temperature, self.timeout, self._transport)
        return await _openai_chat(self.client, messages, max_tokens, temperature, self.timeout)


def get_chat_provider() -> ChatProvider:
    """FastAPI dependency."""
    return ChatProvider()
