"""Anthropic Messages API client over SSE.

Tool input arrives as ``input_json_delta`` fragments per content block;
they are joined on ``content_block_stop`` into a single ToolCallToken.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from aide.providers.base import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    TextToken,
    Token,
    ToolCallToken,
    ToolDefinition,
    build_http_client,
    error_message,
    iter_sse_data,
    read_error_body,
    transport_error,
)
from aide.types import Message, ToolCallContent, ToolResultContent

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_ENDPOINT = "https://api.anthropic.com"
_API_VERSION = "2023-06-01"
_RATE_LIMIT_TYPES = frozenset({"rate_limit_error", "overloaded_error"})


@dataclass
class StreamEvent:
    """A single event from the streaming API response."""

    type: str  # text_delta, tool_start, tool_input_delta, block_stop, done, error
    text: str = ""
    tool_name: str = ""
    tool_id: str = ""
    error_type: str = ""
    stop_reason: str = ""
    block_index: int = 0


def _parse_sse_event(data: dict[str, Any]) -> StreamEvent | None:
    """Parse an Anthropic SSE payload into a StreamEvent.

    Pings and unknown event types return None. Errors can arrive in the
    body of an HTTP 200 stream.
    """
    event_type = data.get("type")

    if event_type == "error":
        error = data.get("error", {})
        return StreamEvent(
            type="error",
            error_type=error.get("type", "unknown"),
            text=error.get("message", ""),
        )

    if event_type == "content_block_start":
        block = data.get("content_block", {})
        if block.get("type") == "tool_use":
            return StreamEvent(
                type="tool_start",
                tool_name=block.get("name", ""),
                tool_id=block.get("id", ""),
                block_index=data.get("index", 0),
            )
        return None

    if event_type == "content_block_delta":
        delta = data.get("delta", {})
        block_index = data.get("index", 0)
        if delta.get("type") == "text_delta":
            return StreamEvent(type="text_delta", text=delta.get("text", ""), block_index=block_index)
        if delta.get("type") == "input_json_delta":
            return StreamEvent(
                type="tool_input_delta",
                text=delta.get("partial_json", ""),
                block_index=block_index,
            )
        return None

    if event_type == "content_block_stop":
        return StreamEvent(type="block_stop", block_index=data.get("index", 0))

    if event_type == "message_delta":
        return StreamEvent(type="done", stop_reason=data.get("delta", {}).get("stop_reason", ""))

    return None


def build_anthropic_request(
    messages: Sequence[Message],
) -> tuple[list[str], list[dict[str, Any]]]:
    """Split canonical messages into (system texts, API messages).

    Tool results travel as ``tool_result`` blocks in a user turn, and
    adjacent turns with the same role are merged into one block list.
    """
    system: list[str] = []
    out: list[dict[str, Any]] = []
    for message in messages:
        content = message.content
        if message.role == "system":
            if message.text:
                system.append(message.text)
            continue

        if isinstance(content, ToolCallContent):
            block = {
                "type": "tool_use",
                "id": content.id,
                "name": content.name,
                "input": content.parsed_arguments(),
            }
        elif isinstance(content, ToolResultContent):
            block = {"type": "tool_result", "tool_use_id": content.id, "content": content.content}
        else:
            block = {"type": "text", "text": content.text}

        if out and out[-1]["role"] == message.role:
            out[-1]["content"].append(block)
        else:
            out.append({"role": message.role, "content": [block]})
    return system, out


def _tool_call(acc: dict[str, Any]) -> ToolCallToken:
    return ToolCallToken(id=acc["id"], name=acc["name"], arguments="".join(acc["input_parts"]) or "{}")


def status_error(status: int, body: str) -> ProviderError:
    message = error_message(body)
    if status in (401, 403):
        return ProviderAuthError(f"HTTP {status}: {message}")
    if status in (429, 529):
        return ProviderRateLimitError(f"HTTP {status}: {message}")
    return ProviderError(f"HTTP {status}: {message}")


class AnthropicProvider:
    def __init__(
        self,
        model: str,
        *,
        endpoint: str = DEFAULT_ANTHROPIC_ENDPOINT,
        api_key: str | None = None,
        system_prompt: str = "",
        max_tokens: int = 4096,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.name = model
        self.endpoint = endpoint.rstrip("/")
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._http = http_client or build_http_client()

    def _headers(self) -> dict[str, str]:
        headers = {"anthropic-version": _API_VERSION, "content-type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def build_payload(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        system, api_messages = build_anthropic_request(messages)
        if self.system_prompt:
            system.insert(0, self.system_prompt)
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": api_messages,
            "stream": True,
        }
        if system:
            payload["system"] = "\n\n".join(system)
        if tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]
        return payload

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncGenerator[Token, None]:
        url = f"{self.endpoint}/v1/messages"
        payload = self.build_payload(messages, tools)
        try:
            async with self._http.stream("POST", url, json=payload, headers=self._headers()) as response:
                if response.status_code != 200:
                    raise status_error(response.status_code, await read_error_body(response))

                blocks: dict[int, dict[str, Any]] = {}
                async for data in iter_sse_data(response):
                    try:
                        event = _parse_sse_event(data)
                    except AttributeError as e:
                        raise MalformedResponseError(f"unexpected event shape: {e}") from e
                    if event is None:
                        continue

                    if event.type == "error":
                        message = f"{event.error_type}: {event.text}"
                        if event.error_type in _RATE_LIMIT_TYPES:
                            raise ProviderRateLimitError(message)
                        if event.error_type == "authentication_error":
                            raise ProviderAuthError(message)
                        raise ProviderError(message)

                    elif event.type == "text_delta":
                        if event.text:
                            yield TextToken(event.text)

                    elif event.type == "tool_start":
                        blocks[event.block_index] = {
                            "id": event.tool_id,
                            "name": event.tool_name,
                            "input_parts": [],
                        }

                    elif event.type == "tool_input_delta":
                        acc = blocks.get(event.block_index)
                        if acc:
                            acc["input_parts"].append(event.text)

                    elif event.type == "block_stop":
                        acc = blocks.pop(event.block_index, None)
                        if acc:
                            yield _tool_call(acc)

                    elif event.type == "done":
                        if event.stop_reason == "max_tokens":
                            logger.warning("%s stopped at max_tokens (%d)", self.name, self.max_tokens)
                        # Tool blocks the server never closed
                        for index in sorted(blocks):
                            yield _tool_call(blocks[index])
                        blocks.clear()
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s", self.name, e)
            raise transport_error(e) from e

    async def close(self) -> None:
        await self._http.aclose()
