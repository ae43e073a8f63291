import asyncio
from typing import List, Optional

import openai
from openai import AsyncOpenAI
from ..config import settings
from ..errors import LLMConfigurationError, ProviderError

_client: AsyncOpenAI | None = None
def get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        if not settings.OPENAI_API_KEY:
            raise LLMConfigurationError("OPENAI_API_KEY is not set. Please configure OPENAI_API_KEY in environment variables.")
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


class EmbeddingProvider:
    """Maps a text to a fixed-length vector through the OpenAI embeddings API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, dim: Optional[int] = None):
        self._client = client
        self.model = model or settings.OPENAI_EMBED_MODEL
        self.timeout = settings.PROVIDER_TIMEOUT_SEC if timeout is None else timeout
        self.dim = settings.EMBED_DIM if dim is None else dim

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        try:
            resp = await asyncio.wait_for(
                self.client.embeddings.create(model=model or self.model, input=text),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Embedding request timed out after {self.timeout}s", status=408) from e
        except openai.APIStatusError as e:
            raise ProviderError(f"OpenAI embeddings error: {e.message}", status=e.status_code) from e
        except openai.OpenAIError as e:
            raise ProviderError(f"OpenAI embeddings error: {e}") from e
        try:
            vector = [float(x) for x in resp.data[0].embedding]
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            raise ProviderError("OpenAI embeddings returned a malformed response") from e
        if len(vector) != self.dim:
            raise ProviderError(f"Embedding has dimension {len(vector)}, expected {self.dim}")
        return vector


def get_embedder() -> EmbeddingProvider:
    """FastAPI dependency."""
    return EmbeddingProvider()
