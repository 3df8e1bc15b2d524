"""Embedder contract and health probe."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """The active embedder could not load or encode."""


class Embedder(Protocol):
    model_name: str
    dimensions: int
    provider_type: str

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class EmbedderHealth:
    healthy: bool
    model_name: str
    provider_type: str
    dimensions: int
    latency_ms: int | None = None
    error: str | None = None


async def check_embedder_health(embedder: Embedder, timeout: float = 5.0) -> EmbedderHealth:
    """Embed a probe string and verify the returned dimensions."""
    start = time.monotonic()
    error = None
    try:
        vectors = await asyncio.wait_for(embedder.embed_batch(["health check"]), timeout=timeout)
        if len(vectors) != 1 or len(vectors[0]) != embedder.dimensions:
            error = f"expected one {embedder.dimensions}-dim vector"
    except asyncio.TimeoutError:
        error = f"timed out after {timeout:.0f}s"
    except EmbeddingError as e:
        error = str(e)

    if error:
        logger.warning("Embedder %s unhealthy: %s", embedder.model_name, error)
    return EmbedderHealth(
        healthy=error is None,
        model_name=embedder.model_name,
        provider_type=embedder.provider_type,
        dimensions=embedder.dimensions,
        latency_ms=None if error else int((time.monotonic() - start) * 1000),
        error=error,
    )
