"""Generate embeddings via an OpenAI-compatible ``/embeddings`` endpoint.

Uses httpx.AsyncClient for async HTTP with connection pooling.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from aide.embeddings.base import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_ENDPOINT = "https://api.openai.com/v1"

# Native output sizes, used when the config does not give dimensions
KNOWN_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "nomic-embed-text": 768,
    "nomic-embed-text-v1.5": 768,
}


class OpenAIEmbedder:
    """Async embedding generation against an external provider."""

    def __init__(
        self,
        model_name: str,
        dimensions: int,
        *,
        endpoint: str = DEFAULT_EMBEDDING_ENDPOINT,
        api_key: str | None = None,
        provider_type: str = "openai",
        send_dimensions: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model_name = model_name
        self.dimensions = dimensions
        self.provider_type = provider_type
        self._send_dimensions = send_dimensions
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = http_client or httpx.AsyncClient(
            base_url=endpoint.rstrip("/"),
            headers=headers,
            timeout=30.0,
        )

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts (single API call)."""
        if not texts:
            return []
        payload: dict[str, Any] = {"model": self.model_name, "input": list(texts)}
        if self._send_dimensions:
            payload["dimensions"] = self.dimensions
        try:
            response = await self._client.post("/embeddings", json=payload)
            response.raise_for_status()
            data = response.json()["data"]
            vectors = [list(item["embedding"]) for item in sorted(data, key=lambda x: x["index"])]
        except httpx.HTTPError as e:
            raise EmbeddingError(f"embedding request failed: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(f"malformed embedding response: {e!r}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(f"expected {len(texts)} embeddings, got {len(vectors)}")
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"model '{self.model_name}' returned {len(vector)} dims, expected {self.dimensions}"
                )
        return vectors

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()
