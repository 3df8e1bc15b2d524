"""Long-term vector memory: SQLite-backed store and model migration."""

from aide.memory.database import Database
from aide.memory.migration import MigrationReport, check_migration, migrate
from aide.memory.vector_store import (
    DimensionMismatchError,
    EntryNotFoundError,
    MigrationRequiredError,
    SearchResult,
    StorageError,
    StoreMetadata,
    VectorEntry,
    VectorStore,
    VectorStoreError,
)

__all__ = [
    "Database",
    "DimensionMismatchError",
    "EntryNotFoundError",
    "MigrationReport",
    "MigrationRequiredError",
    "SearchResult",
    "StorageError",
    "StoreMetadata",
    "VectorEntry",
    "VectorStore",
    "VectorStoreError",
    "check_migration",
    "migrate",
]
