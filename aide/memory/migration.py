"""Re-embed stored memories after the embedding model changes.

Migration is only ever run on request. Until it completes, the store
refuses searches rather than ranking vectors from two different models
against each other.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass

from aide.embeddings.base import Embedder, EmbeddingError
from aide.memory.vector_store import VectorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationReport:
    migrated: int
    model_name: str
    dimensions: int


async def check_migration(store: VectorStore, embedder: Embedder) -> bool:
    """Flag the store if its baseline differs from ``embedder``."""
    return await store.check_model(embedder.model_name, embedder.dimensions)


async def migrate(store: VectorStore, embedder: Embedder) -> MigrationReport:
    """Re-embed every entry's source text with ``embedder`` and swap atomically.

    Nothing is written unless every entry was re-embedded, so a failure
    leaves the old vectors (and the blocking flag) in place.
    """
    async with store.migrating():
        entries = await store.list_all()
        logger.info("Migrating %d memory entries to %s", len(entries), embedder.model_name)

        vectors = await embedder.embed_batch([entry.source_text for entry in entries])
        if len(vectors) != len(entries):
            raise EmbeddingError(f"expected {len(entries)} embeddings, got {len(vectors)}")

        migrated = [
            dataclasses.replace(
                entry,
                embedding=vector,
                model_name=embedder.model_name,
                dimensions=embedder.dimensions,
            )
            for entry, vector in zip(entries, vectors)
        ]
        await store.replace_all(migrated, embedder.model_name, embedder.dimensions)

    logger.info("Migration complete: %d entries now use %s", len(migrated), embedder.model_name)
    return MigrationReport(
        migrated=len(migrated),
        model_name=embedder.model_name,
        dimensions=embedder.dimensions,
    )
