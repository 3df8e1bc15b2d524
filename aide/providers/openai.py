"""OpenAI-compatible chat completions client (OpenAI, LM Studio, Mistral).

Streams ``/chat/completions`` over SSE. Tool-call fragments arrive as
deltas keyed by ``index``; they are accumulated and only emitted as
complete ToolCallTokens once the backend reports ``finish_reason ==
"tool_calls"`` or the stream ends.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Sequence
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

DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_LMSTUDIO_ENDPOINT = "http://localhost:1234/v1"
DEFAULT_MISTRAL_ENDPOINT = "https://api.mistral.ai"


def build_openai_messages(system_prompt: str, messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Serialize canonical messages to the chat completions ``messages`` array.

    Consecutive tool calls collapse into one assistant message carrying a
    ``tool_calls`` array, which is what the API expects when the model
    asked for several tools in one turn.
    """
    out: list[dict[str, Any]] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    pending_calls: list[dict[str, Any]] = []

    def flush_calls() -> None:
        if pending_calls:
            out.append({"role": "assistant", "content": None, "tool_calls": list(pending_calls)})
            pending_calls.clear()

    for message in messages:
        content = message.content
        if isinstance(content, ToolCallContent):
            pending_calls.append({
                "id": content.id,
                "type": "function",
                "function": {"name": content.name, "arguments": content.arguments},
            })
            continue
        flush_calls()
        if isinstance(content, ToolResultContent):
            out.append({"role": "tool", "tool_call_id": content.id, "content": content.content})
        else:
            out.append({"role": message.role, "content": content.text})
    flush_calls()
    return out


def build_openai_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def _drain_tool_calls(calls: dict[int, dict[str, Any]]) -> list[ToolCallToken]:
    tokens = []
    for index in sorted(calls):
        acc = calls[index]
        if not acc["name"]:
            raise MalformedResponseError(f"tool call at index {index} has no function name")
        tokens.append(ToolCallToken(
            id=acc["id"] or f"call_{index}",
            name=acc["name"],
            arguments="".join(acc["arguments"]) or "{}",
        ))
    calls.clear()
    return tokens


def error_message_from(chunk: dict[str, Any]) -> str:
    err = chunk.get("error")
    if isinstance(err, dict):
        return str(err.get("message", err))
    return str(err)


def _parse_chunk(chunk: dict[str, Any], calls: dict[int, dict[str, Any]]) -> list[Token]:
    """Turn one streamed chunk into tokens, updating the tool-call accumulators."""
    if "error" in chunk:
        raise ProviderError(f"stream error: {error_message_from(chunk)}")

    tokens: list[Token] = []
    for choice in chunk.get("choices") or []:
        delta = choice.get("delta") or {}
        text = delta.get("content")
        if text:
            tokens.append(TextToken(text))

        for fragment in delta.get("tool_calls") or []:
            acc = calls.setdefault(fragment.get("index", 0), {"id": "", "name": "", "arguments": []})
            if fragment.get("id"):
                acc["id"] = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                acc["name"] = function["name"]
            if function.get("arguments"):
                acc["arguments"].append(function["arguments"])

        if choice.get("finish_reason") == "tool_calls":
            tokens.extend(_drain_tool_calls(calls))
    return tokens


def status_error(status: int, body: str) -> ProviderError:
    message = error_message(body)
    if status in (401, 403):
        return ProviderAuthError(f"HTTP {status}: {message}")
    if status == 429:
        return ProviderRateLimitError(f"HTTP {status}: {message}")
    return ProviderError(f"HTTP {status}: {message}")


class OpenAIProvider:
    """Streaming client for any OpenAI-compatible chat completions endpoint."""

    completions_path = "/chat/completions"

    def __init__(
        self,
        model: str,
        *,
        endpoint: str = DEFAULT_OPENAI_ENDPOINT,
        api_key: str | None = None,
        system_prompt: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.name = model
        self.endpoint = endpoint.rstrip("/")
        self.system_prompt = system_prompt
        self._api_key = api_key
        self._http = http_client or build_http_client()

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_payload(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": build_openai_messages(self.system_prompt, messages),
            "stream": True,
        }
        if tools:
            payload["tools"] = build_openai_tools(tools)
        return payload

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncGenerator[Token, None]:
        url = f"{self.endpoint}{self.completions_path}"
        payload = self.build_payload(messages, tools)
        try:
            async with self._http.stream("POST", url, json=payload, headers=self._headers()) as response:
                if response.status_code != 200:
                    raise status_error(response.status_code, await read_error_body(response))

                calls: dict[int, dict[str, Any]] = {}
                async for chunk in iter_sse_data(response):
                    try:
                        tokens = _parse_chunk(chunk, calls)
                    except (AttributeError, TypeError) as e:
                        raise MalformedResponseError(f"unexpected chunk shape: {e}") from e
                    for token in tokens:
                        yield token
                # Some servers close the stream without a finish_reason
                for token in _drain_tool_calls(calls):
                    yield token
        except httpx.HTTPError as e:
            logger.warning("%s request to %s failed: %s", self.name, url, e)
            raise transport_error(e) from e

    async def close(self) -> None:
        await self._http.aclose()


class LMStudioProvider(OpenAIProvider):
    """Local LM Studio server; no credential is sent."""

    def __init__(self, model: str, *, endpoint: str = DEFAULT_LMSTUDIO_ENDPOINT, **kwargs: Any) -> None:
        kwargs.pop("api_key", None)
        super().__init__(model, endpoint=endpoint, api_key=None, **kwargs)


class MistralProvider(OpenAIProvider):
    completions_path = "/v1/chat/completions"

    def __init__(self, model: str, *, endpoint: str = DEFAULT_MISTRAL_ENDPOINT, **kwargs: Any) -> None:
        super().__init__(model, endpoint=endpoint, **kwargs)
