"""Persistent vector store with brute-force cosine search.

Every stored vector comes from the same embedding model; the first entry
written into an empty store fixes that baseline. When the active embedder
no longer matches a non-empty store, searches are blocked with
MigrationRequiredError until ``aide.memory.migration.migrate`` has
re-embedded every entry from its retained source text.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aide.memory.database import Database
from aide.memory.models import StoreBaseline, VectorRow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class VectorStoreError(Exception):
    pass


class DimensionMismatchError(VectorStoreError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"dimension mismatch: store expects {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EntryNotFoundError(VectorStoreError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"entry not found: {entry_id}")
        self.entry_id = entry_id


class StorageError(VectorStoreError):
    pass


class MigrationRequiredError(VectorStoreError):
    def __init__(self, message: str = "embedding model changed; memory migration required") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass
class VectorEntry:
    id: str
    embedding: list[float]
    source_text: str
    model_name: str
    dimensions: int
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if len(self.embedding) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(self.embedding))


@dataclass(frozen=True)
class SearchResult:
    id: str
    source_text: str
    metadata: dict[str, Any]
    score: float


@dataclass(frozen=True)
class StoreMetadata:
    model_name: str | None
    dimensions: int | None
    entry_count: int


def _encode(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def _decode(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="<f4")


def cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of each row against ``query``; 0 where a norm is 0."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


def _to_entry(row: VectorRow) -> VectorEntry:
    return VectorEntry(
        id=row.id,
        embedding=_decode(row.embedding).tolist(),
        source_text=row.source_text,
        model_name=row.model_name,
        dimensions=row.dimensions,
        metadata=json.loads(row.metadata_json or "{}"),
        created_at=row.created_at,
    )


def _to_row(entry: VectorEntry) -> VectorRow:
    return VectorRow(
        id=entry.id,
        embedding=_encode(entry.embedding),
        source_text=entry.source_text,
        metadata_json=json.dumps(entry.metadata),
        model_name=entry.model_name,
        dimensions=entry.dimensions,
        created_at=entry.created_at,
    )


class VectorStore:
    """Writes are serialized; searches run without the write lock."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self._write_lock = asyncio.Lock()
        self._migration_required = False
        self._migrating = False

    @property
    def migration_required(self) -> bool:
        return self._migration_required or self._migrating

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store(self, entry: VectorEntry) -> None:
        """Insert or replace ``entry``.

        An empty store adopts the entry's model as its baseline; otherwise
        the entry must match the baseline exactly.
        """
        async with self._write_lock:
            try:
                async with self.db.session() as session:
                    baseline = await session.get(StoreBaseline, 1)
                    count = await self._count(session)
                    if baseline is None or count == 0:
                        await self._set_baseline(session, entry.model_name, entry.dimensions)
                    elif entry.dimensions != baseline.dimensions:
                        raise DimensionMismatchError(baseline.dimensions, entry.dimensions)
                    elif entry.model_name != baseline.model_name:
                        raise MigrationRequiredError(
                            f"store holds '{baseline.model_name}' vectors, got '{entry.model_name}'"
                        )

                    existing = await session.scalar(select(VectorRow).where(VectorRow.id == entry.id))
                    if existing is None:
                        session.add(_to_row(entry))
                    else:
                        existing.embedding = _encode(entry.embedding)
                        existing.source_text = entry.source_text
                        existing.metadata_json = json.dumps(entry.metadata)
                        existing.model_name = entry.model_name
                        existing.dimensions = entry.dimensions
                    await session.commit()
            except SQLAlchemyError as e:
                raise StorageError(f"store failed: {e}") from e

    async def delete(self, entry_id: str) -> None:
        async with self._write_lock:
            try:
                async with self.db.session() as session:
                    row = await session.scalar(select(VectorRow).where(VectorRow.id == entry_id))
                    if row is None:
                        raise EntryNotFoundError(entry_id)
                    await session.delete(row)
                    await session.commit()
                    if await self._count(session) == 0:
                        self._migration_required = False
            except SQLAlchemyError as e:
                raise StorageError(f"delete failed: {e}") from e

    async def clear(self) -> int:
        """Remove every entry and the baseline. Returns the number removed."""
        async with self._write_lock:
            try:
                async with self.db.session() as session:
                    removed = await self._count(session)
                    await session.execute(delete(VectorRow))
                    await session.execute(delete(StoreBaseline))
                    await session.commit()
            except SQLAlchemyError as e:
                raise StorageError(f"clear failed: {e}") from e
            self._migration_required = False
            logger.info("Cleared %d memory entries", removed)
            return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(self, query: Sequence[float], limit: int) -> list[SearchResult]:
        """Rank all entries by cosine similarity to ``query``, highest first.

        Equal scores keep insertion order.
        """
        if self.migration_required:
            raise MigrationRequiredError()
        if limit <= 0:
            return []
        try:
            async with self.db.session() as session:
                rows = (await session.scalars(select(VectorRow).order_by(VectorRow.seq))).all()
        except SQLAlchemyError as e:
            raise StorageError(f"search failed: {e}") from e
        if not rows:
            return []

        dims = rows[0].dimensions
        if len(query) != dims:
            raise DimensionMismatchError(dims, len(query))

        matrix = np.stack([_decode(row.embedding) for row in rows])
        scores = cosine_scores(matrix, np.asarray(query, dtype=np.float32))
        order = np.argsort(-scores, kind="stable")[:limit]
        return [
            SearchResult(
                id=rows[i].id,
                source_text=rows[i].source_text,
                metadata=json.loads(rows[i].metadata_json or "{}"),
                score=float(scores[i]),
            )
            for i in order
        ]

    async def count(self) -> int:
        async with self.db.session() as session:
            return await self._count(session)

    async def metadata(self) -> StoreMetadata:
        async with self.db.session() as session:
            baseline = await session.get(StoreBaseline, 1)
            count = await self._count(session)
        if baseline is None:
            return StoreMetadata(model_name=None, dimensions=None, entry_count=count)
        return StoreMetadata(model_name=baseline.model_name, dimensions=baseline.dimensions, entry_count=count)

    async def list_all(self) -> list[VectorEntry]:
        """All entries in insertion order."""
        try:
            async with self.db.session() as session:
                rows = (await session.scalars(select(VectorRow).order_by(VectorRow.seq))).all()
        except SQLAlchemyError as e:
            raise StorageError(f"list failed: {e}") from e
        return [_to_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Model drift
    # ------------------------------------------------------------------

    async def check_model(self, model_name: str, dimensions: int) -> bool:
        """Compare the active embedder with the baseline; set the blocking flag.

        Returns True when a migration is required.
        """
        meta = await self.metadata()
        required = meta.entry_count > 0 and (meta.model_name, meta.dimensions) != (model_name, dimensions)
        self._migration_required = required
        if required:
            logger.warning(
                "Memory holds %d entries from %s (%s dims), active embedder is %s (%s dims); "
                "search is blocked until migration",
                meta.entry_count, meta.model_name, meta.dimensions, model_name, dimensions,
            )
        return required

    @asynccontextmanager
    async def migrating(self) -> AsyncIterator[None]:
        """Hold the write lock and block searches for the duration."""
        async with self._write_lock:
            self._migrating = True
            try:
                yield
            finally:
                self._migrating = False

    async def replace_all(self, entries: Sequence[VectorEntry], model_name: str, dimensions: int) -> None:
        """Swap every row and the baseline in one transaction.

        Callers must be inside ``migrating()``.
        """
        for entry in entries:
            if (entry.model_name, entry.dimensions) != (model_name, dimensions):
                raise DimensionMismatchError(dimensions, entry.dimensions)
        try:
            async with self.db.session() as session:
                async with session.begin():
                    await session.execute(delete(VectorRow))
                    await session.flush()
                    session.add_all([_to_row(entry) for entry in entries])
                    await self._set_baseline(session, model_name, dimensions)
        except SQLAlchemyError as e:
            raise StorageError(f"migration write failed: {e}") from e
        self._migration_required = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _count(session: AsyncSession) -> int:
        return await session.scalar(select(func.count()).select_from(VectorRow)) or 0

    @staticmethod
    async def _set_baseline(session: AsyncSession, model_name: str, dimensions: int) -> None:
        baseline = await session.get(StoreBaseline, 1)
        now = datetime.now(UTC)
        if baseline is None:
            session.add(StoreBaseline(id=1, model_name=model_name, dimensions=dimensions, updated_at=now))
        else:
            baseline.model_name = model_name
            baseline.dimensions = dimensions
            baseline.updated_at = now
