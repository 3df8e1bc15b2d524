"""Tests for the Anthropic Messages streaming client."""

import json

import httpx
import pytest

from aide.providers.anthropic import (
    AnthropicProvider,
    _parse_sse_event,
    build_anthropic_request,
)
from aide.providers.base import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderRateLimitError,
    TextToken,
    ToolCallToken,
)
from aide.types import Message


def _sse(*events: dict) -> bytes:
    return "".join(
        f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events
    ).encode()


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _collect(stream) -> list:
    return [token async for token in stream]


class TestParseSSEEvent:
    def test_text_delta(self):
        event = _parse_sse_event({
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Hello"},
        })
        assert event.type == "text_delta"
        assert event.text == "Hello"

    def test_tool_use_start(self):
        event = _parse_sse_event({
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "recall", "input": {}},
        })
        assert event.type == "tool_start"
        assert event.tool_id == "toolu_1"
        assert event.tool_name == "recall"
        assert event.block_index == 1

    def test_error_event(self):
        event = _parse_sse_event({
            "type": "error",
            "error": {"type": "overloaded_error", "message": "Overloaded"},
        })
        assert event.type == "error"
        assert event.error_type == "overloaded_error"

    def test_ping_ignored(self):
        assert _parse_sse_event({"type": "ping"}) is None


class TestBuildRequest:
    def test_system_split_and_tool_blocks(self):
        system, messages = build_anthropic_request([
            Message.system("memories"),
            Message.user("read it"),
            Message.tool_call("toolu_1", "read_file", '{"path": "/a"}'),
            Message.tool_result("toolu_1", '{"content": "A"}'),
        ])
        assert system == ["memories"]
        assert messages[0] == {"role": "user", "content": [{"type": "text", "text": "read it"}]}
        assert messages[1]["content"][0] == {
            "type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {"path": "/a"},
        }
        assert messages[2]["content"][0] == {
            "type": "tool_result", "tool_use_id": "toolu_1", "content": '{"content": "A"}',
        }


class TestAnthropicStreaming:
    @pytest.mark.asyncio
    async def test_text_then_tool_use(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=_sse(
                {"type": "message_start", "message": {"id": "msg_1"}},
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me look."}},
                {"type": "content_block_stop", "index": 0},
                {"type": "content_block_start", "index": 1,
                 "content_block": {"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {}}},
                {"type": "content_block_delta", "index": 1,
                 "delta": {"type": "input_json_delta", "partial_json": '{"path": '}},
                {"type": "content_block_delta", "index": 1,
                 "delta": {"type": "input_json_delta", "partial_json": '"/a"}'}},
                {"type": "content_block_stop", "index": 1},
                {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
                {"type": "message_stop"},
            ))

        provider = AnthropicProvider(
            "claude-sonnet", api_key="a-key", system_prompt="sys", http_client=_client(handler)
        )
        tokens = await _collect(provider.complete([Message.user("read /a")]))

        assert tokens == [
            TextToken("Let me look."),
            ToolCallToken(id="toolu_1", name="read_file", arguments='{"path": "/a"}'),
        ]
        assert seen["headers"]["x-api-key"] == "a-key"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["system"] == "sys"
        assert seen["body"]["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_unclosed_tool_block_flushed_at_message_end(self):
        provider = AnthropicProvider("m", http_client=_client(lambda r: httpx.Response(200, content=_sse(
            {"type": "content_block_start", "index": 0,
             "content_block": {"type": "tool_use", "id": "toolu_9", "name": "recall", "input": {}}},
            {"type": "content_block_delta", "index": 0,
             "delta": {"type": "input_json_delta", "partial_json": '{"query": "cats"}'}},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
            {"type": "message_stop"},
        ))))
        tokens = await _collect(provider.complete([Message.user("x")]))
        assert tokens == [ToolCallToken(id="toolu_9", name="recall", arguments='{"query": "cats"}')]

    @pytest.mark.asyncio
    async def test_closed_block_not_repeated_at_message_end(self):
        provider = AnthropicProvider("m", http_client=_client(lambda r: httpx.Response(200, content=_sse(
            {"type": "content_block_start", "index": 0,
             "content_block": {"type": "tool_use", "id": "toolu_1", "name": "recall", "input": {}}},
            {"type": "content_block_stop", "index": 0},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
        ))))
        tokens = await _collect(provider.complete([Message.user("x")]))
        assert tokens == [ToolCallToken(id="toolu_1", name="recall", arguments="{}")]

    @pytest.mark.asyncio
    async def test_wrongly_shaped_event_is_malformed(self):
        provider = AnthropicProvider("m", http_client=_client(lambda r: httpx.Response(200, content=_sse(
            {"type": "content_block_delta", "index": 0, "delta": "text"},
        ))))
        with pytest.raises(MalformedResponseError):
            await _collect(provider.complete([Message.user("x")]))

    @pytest.mark.asyncio
    async def test_overloaded_in_stream_is_rate_limit(self):
        provider = AnthropicProvider("m", http_client=_client(lambda r: httpx.Response(200, content=_sse(
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        ))))
        with pytest.raises(ProviderRateLimitError):
            await _collect(provider.complete([Message.user("x")]))

    @pytest.mark.asyncio
    async def test_529_is_rate_limit(self):
        provider = AnthropicProvider("m", http_client=_client(
            lambda r: httpx.Response(529, json={"type": "error", "error": {"message": "Overloaded"}})
        ))
        with pytest.raises(ProviderRateLimitError, match="Overloaded"):
            await _collect(provider.complete([Message.user("x")]))

    @pytest.mark.asyncio
    async def test_401_is_auth(self):
        provider = AnthropicProvider("m", http_client=_client(
            lambda r: httpx.Response(401, json={"error": {"message": "invalid x-api-key"}})
        ))
        with pytest.raises(ProviderAuthError):
            await _collect(provider.complete([Message.user("x")]))
