"""Built-in embedder backed by a sentence-transformers model.

Always available, so memory works without any external service. The
model is loaded on first use and encoding runs in a worker thread to
keep the event loop responsive.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from sentence_transformers import SentenceTransformer

from aide.embeddings.base import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"
DEFAULT_LOCAL_DIMENSIONS = 384


class LocalEmbedder:
    provider_type = "local"

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        dimensions: int = DEFAULT_LOCAL_DIMENSIONS,
    ) -> None:
        self.model_name = model_name
        self.dimensions = dimensions
        self._model: SentenceTransformer | None = None
        self._load_lock = asyncio.Lock()

    async def _get_model(self) -> SentenceTransformer:
        async with self._load_lock:
            if self._model is None:
                logger.info("Loading local embedding model %s", self.model_name)
                try:
                    self._model = await asyncio.to_thread(SentenceTransformer, self.model_name)
                except Exception as e:
                    raise EmbeddingError(f"failed to load model '{self.model_name}': {e}") from e
            return self._model

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        model = await self._get_model()
        try:
            vectors = await asyncio.to_thread(
                model.encode, list(texts), normalize_embeddings=True, convert_to_numpy=True
            )
        except Exception as e:
            raise EmbeddingError(f"encoding failed: {e}") from e
        if vectors.shape[1] != self.dimensions:
            raise EmbeddingError(
                f"model '{self.model_name}' produced {vectors.shape[1]} dims, expected {self.dimensions}"
            )
        return vectors.tolist()

    async def close(self) -> None:
        self._model = None
