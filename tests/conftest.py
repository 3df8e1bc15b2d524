"""Shared fixtures: deterministic embedder, scripted providers, temp SQLite store."""

import hashlib
import random
from collections.abc import Sequence

import pytest
import pytest_asyncio

from aide.conversation import ConversationRegistry
from aide.memory import Database, VectorStore
from aide.providers.base import ProviderError, ToolDefinition
from aide.types import Message

# ---------------------------------------------------------------------------
# Mock embedder (PRNG-seeded, L2-normalized vectors)
# ---------------------------------------------------------------------------


class MockEmbedder:
    """Returns deterministic, L2-normalized embeddings seeded from text hash.

    Identical texts produce identical vectors; unrelated texts are close
    to orthogonal. Model name and dimensions are configurable so tests
    can simulate switching embedding models.
    """

    provider_type = "mock"

    def __init__(self, model_name: str = "mock-384", dimensions: int = 384) -> None:
        self.model_name = model_name
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        h = hashlib.sha256(f"{self.model_name}:{text}".encode()).hexdigest()
        rng = random.Random(h)
        vec = [rng.gauss(0, 1) for _ in range(self.dimensions)]
        norm = sum(x * x for x in vec) ** 0.5
        return [x / norm for x in vec]

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------


class ScriptedProvider:
    """Replays one scripted turn per ``complete()`` call.

    Each script item is a list of tokens, or a ProviderError instance to
    raise before any token. When the script runs out the last item repeats.
    """

    def __init__(self, name: str, turns: list) -> None:
        self.name = name
        self.turns = turns
        self.requests: list[list[Message]] = []
        self.tools: list[Sequence[ToolDefinition] | None] = []
        self.closed = 0
        self.client_closed = False

    async def complete(self, messages, tools=None):
        self.requests.append(list(messages))
        self.tools.append(tools)
        turn = self.turns[min(len(self.requests) - 1, len(self.turns) - 1)]
        try:
            if isinstance(turn, ProviderError):
                raise turn
            for token in turn:
                if isinstance(token, ProviderError):
                    raise token
                yield token
        finally:
            self.closed += 1

    async def close(self) -> None:
        self.client_closed = True


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db(tmp_path):
    """Function-scoped SQLite database in a temp directory."""
    database = Database(str(tmp_path / "memory.db"))
    await database.connect()
    yield database
    await database.disconnect()


@pytest_asyncio.fixture
async def store(db) -> VectorStore:
    return VectorStore(db)


@pytest.fixture
def mock_embedder() -> MockEmbedder:
    return MockEmbedder()


@pytest.fixture
def conversations() -> ConversationRegistry:
    return ConversationRegistry()
