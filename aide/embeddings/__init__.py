"""Embedders: the built-in local model and external OpenAI-compatible services."""

from __future__ import annotations

from aide.config import ConfigError, ModelSlot
from aide.embeddings.base import Embedder, EmbedderHealth, EmbeddingError, check_embedder_health
from aide.embeddings.openai import DEFAULT_EMBEDDING_ENDPOINT, KNOWN_DIMENSIONS, OpenAIEmbedder

_LMSTUDIO_ENDPOINT = "http://localhost:1234/v1"


def create_embedder(slot: ModelSlot | None) -> Embedder:
    """Build the single active embedder.

    No embedding slot (or an empty one) selects the built-in local model.
    Only the first entry is used: embedders are never switched implicitly,
    so there is no fallback between them.
    """
    from aide.embeddings.local import DEFAULT_LOCAL_DIMENSIONS, DEFAULT_LOCAL_MODEL, LocalEmbedder

    if slot is None or not slot.providers:
        return LocalEmbedder()

    entry = slot.providers[0]
    if entry.type == "local":
        model = entry.model or DEFAULT_LOCAL_MODEL
        dims = entry.dimensions or (DEFAULT_LOCAL_DIMENSIONS if model == DEFAULT_LOCAL_MODEL else None)
        if dims is None:
            raise ConfigError(f"embedding model '{model}' needs an explicit 'dimensions'")
        return LocalEmbedder(model, dims)

    if entry.type not in ("openai", "lmstudio"):
        raise ConfigError(f"unsupported embedding provider type '{entry.type}'")

    dims = entry.dimensions or KNOWN_DIMENSIONS.get(entry.model)
    if dims is None:
        raise ConfigError(f"embedding model '{entry.model}' needs an explicit 'dimensions'")
    default_endpoint = _LMSTUDIO_ENDPOINT if entry.type == "lmstudio" else DEFAULT_EMBEDDING_ENDPOINT
    return OpenAIEmbedder(
        entry.model,
        dims,
        endpoint=entry.endpoint or default_endpoint,
        api_key=entry.resolve_api_key() if entry.type == "openai" else None,
        provider_type=entry.type,
        send_dimensions=entry.dimensions is not None and entry.model.startswith("text-embedding-3"),
    )


__all__ = [
    "Embedder",
    "EmbedderHealth",
    "EmbeddingError",
    "OpenAIEmbedder",
    "check_embedder_health",
    "create_embedder",
]
