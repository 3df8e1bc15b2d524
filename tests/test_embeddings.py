"""Tests for embedder construction, the HTTP embedder, and the health probe."""

import asyncio
import json

import httpx
import pytest

from aide.config import ConfigError, ModelSlot, ProviderEntry
from aide.embeddings import (
    EmbeddingError,
    OpenAIEmbedder,
    check_embedder_health,
    create_embedder,
)
from tests.conftest import MockEmbedder


def _embedder(handler, dims: int = 3, **kwargs) -> OpenAIEmbedder:
    client = httpx.AsyncClient(base_url="http://embed.test/v1", transport=httpx.MockTransport(handler))
    return OpenAIEmbedder("nomic-embed-text", dims, http_client=client, **kwargs)


class TestOpenAIEmbedder:
    @pytest.mark.asyncio
    async def test_batch_sorted_by_index(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [
                {"index": 1, "embedding": [0.0, 1.0, 0.0]},
                {"index": 0, "embedding": [1.0, 0.0, 0.0]},
            ]})

        vectors = await _embedder(handler).embed_batch(["a", "b"])

        assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        assert seen["path"] == "/v1/embeddings"
        assert seen["body"] == {"model": "nomic-embed-text", "input": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_send_dimensions(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5] * 3}]})

        await _embedder(handler, send_dimensions=True).embed("x")
        assert seen["body"]["dimensions"] == 3

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        assert await _embedder(handler).embed_batch([]) == []

    @pytest.mark.asyncio
    async def test_wrong_dimensions(self):
        embedder = _embedder(lambda r: httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]}))
        with pytest.raises(EmbeddingError, match="returned 1 dims"):
            await embedder.embed("x")

    @pytest.mark.asyncio
    async def test_http_error(self):
        embedder = _embedder(lambda r: httpx.Response(503, text="unavailable"))
        with pytest.raises(EmbeddingError, match="request failed"):
            await embedder.embed("x")

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        embedder = _embedder(lambda r: httpx.Response(200, json={"nope": []}))
        with pytest.raises(EmbeddingError, match="malformed"):
            await embedder.embed("x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"data": [{"embedding": [0.1, 0.2, 0.3]}]},
        {"data": [{"index": 0}]},
        {"data": "not a list"},
        {"data": [{"index": 0, "embedding": None}]},
    ])
    async def test_malformed_items(self, body):
        embedder = _embedder(lambda r: httpx.Response(200, json=body))
        with pytest.raises(EmbeddingError, match="malformed"):
            await embedder.embed("x")


class TestCreateEmbedder:
    def test_default_is_local_model(self):
        embedder = create_embedder(None)
        assert embedder.provider_type == "local"
        assert embedder.model_name == "all-MiniLM-L6-v2"
        assert embedder.dimensions == 384

    def test_local_custom_model_needs_dimensions(self):
        slot = ModelSlot(providers=[ProviderEntry(type="local", model="all-mpnet-base-v2")])
        with pytest.raises(ConfigError, match="dimensions"):
            create_embedder(slot)

    def test_known_openai_dimensions(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        slot = ModelSlot(providers=[ProviderEntry(
            type="openai", model="text-embedding-3-small", api_key_env="OPENAI_API_KEY",
        )])
        embedder = create_embedder(slot)
        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder.dimensions == 1536
        assert embedder.provider_type == "openai"

    def test_lmstudio_unknown_model_needs_dimensions(self):
        slot = ModelSlot(providers=[ProviderEntry(type="lmstudio", model="custom-embed")])
        with pytest.raises(ConfigError):
            create_embedder(slot)

    def test_unsupported_type(self):
        slot = ModelSlot(providers=[ProviderEntry(type="anthropic", model="x")])
        with pytest.raises(ConfigError, match="unsupported"):
            create_embedder(slot)


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self):
        health = await check_embedder_health(MockEmbedder())
        assert health.healthy
        assert health.dimensions == 384
        assert health.latency_ms is not None

    @pytest.mark.asyncio
    async def test_embedding_error(self):
        class Broken(MockEmbedder):
            async def embed_batch(self, texts):
                raise EmbeddingError("connection refused")

        health = await check_embedder_health(Broken())
        assert not health.healthy
        assert health.error == "connection refused"

    @pytest.mark.asyncio
    async def test_timeout(self):
        class Slow(MockEmbedder):
            async def embed_batch(self, texts):
                await asyncio.sleep(5)
                return []

        health = await check_embedder_health(Slow(), timeout=0.01)
        assert not health.healthy
        assert "timed out" in health.error
