"""Long-term memory skills: remember and recall."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from aide.embeddings.base import Embedder, EmbeddingError
from aide.memory.vector_store import MigrationRequiredError, VectorEntry, VectorStore, VectorStoreError
from aide.skills.base import (
    ExecutionFailedError,
    InvalidInputError,
    PermissionLevel,
    Skill,
    SkillContext,
    optional_str,
    require_str,
)

logger = logging.getLogger(__name__)

_DEFAULT_RECALL_LIMIT = 5
_MAX_RECALL_LIMIT = 50


class RememberSkill(Skill):
    name = "remember"
    description = (
        "Save a fact or preference to long-term memory so it can be recalled "
        "in later conversations."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "The information to remember"},
            "category": {
                "type": "string",
                "description": "Optional category, e.g. 'preference', 'fact', 'person'",
            },
        },
        "required": ["text"],
    }
    permission_level = PermissionLevel.MUTATING

    def __init__(self, embedder: Embedder, store: VectorStore) -> None:
        self.embedder = embedder
        self.store = store

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        text = require_str(arguments, "text").strip()
        if not text:
            raise InvalidInputError("text must not be empty")
        category = optional_str(arguments, "category")

        try:
            embedding = await self.embedder.embed(text)
        except EmbeddingError as e:
            raise ExecutionFailedError(f"embedding failed: {e}") from e

        metadata: dict[str, Any] = {
            "created_at": datetime.now(UTC).isoformat(),
            "conversation_id": context.conversation_id,
        }
        if category:
            metadata["category"] = category

        entry = VectorEntry(
            id=str(uuid.uuid4()),
            embedding=embedding,
            source_text=text,
            model_name=self.embedder.model_name,
            dimensions=self.embedder.dimensions,
            metadata=metadata,
        )
        try:
            await self.store.store(entry)
        except VectorStoreError as e:
            raise ExecutionFailedError(str(e)) from e
        return {"status": "ok", "id": entry.id, "message": "Memory saved successfully"}


class RecallSkill(Skill):
    name = "recall"
    description = "Search long-term memory for information related to a query."
    input_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "What to search for"},
            "limit": {
                "type": "integer",
                "description": f"Maximum number of results (default {_DEFAULT_RECALL_LIMIT})",
            },
        },
        "required": ["query"],
    }
    permission_level = PermissionLevel.READ_ONLY

    def __init__(self, embedder: Embedder, store: VectorStore) -> None:
        self.embedder = embedder
        self.store = store

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        query = require_str(arguments, "query")
        limit = arguments.get("limit", _DEFAULT_RECALL_LIMIT)
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
            raise InvalidInputError("limit must be a positive integer")
        limit = min(limit, _MAX_RECALL_LIMIT)

        try:
            embedding = await self.embedder.embed(query)
            results = await self.store.search(embedding, limit)
        except EmbeddingError as e:
            raise ExecutionFailedError(f"embedding failed: {e}") from e
        except MigrationRequiredError as e:
            raise ExecutionFailedError(f"{e}; memory search is unavailable until it is migrated") from e
        except VectorStoreError as e:
            raise ExecutionFailedError(str(e)) from e

        items = []
        for result in results:
            item: dict[str, Any] = {"text": result.source_text, "score": round(result.score, 4)}
            for key in ("category", "created_at"):
                if key in result.metadata:
                    item[key] = result.metadata[key]
            items.append(item)
        return {"results": items, "total_found": len(items)}
