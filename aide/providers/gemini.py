"""Google Gemini client using ``streamGenerateContent`` over SSE."""

from __future__ import annotations

import json
import logging
import uuid
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

DEFAULT_GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com"

_ROLES = {"user": "user", "assistant": "model"}


def _json_or_text(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def build_gemini_request(
    system_prompt: str,
    messages: Sequence[Message],
    tools: Sequence[ToolDefinition] | None = None,
) -> dict[str, Any]:
    """Build the request body.

    System text (prompt plus any system messages) goes to
    ``systemInstruction``; consecutive same-role turns are merged since
    Gemini rejects two adjacent entries with the same role.
    """
    system_parts = [system_prompt] if system_prompt else []
    call_names: dict[str, str] = {}
    contents: list[dict[str, Any]] = []

    for message in messages:
        if message.role == "system":
            if message.text:
                system_parts.append(message.text)
            continue

        content = message.content
        if isinstance(content, ToolCallContent):
            call_names[content.id] = content.name
            part = {"functionCall": {"name": content.name, "args": content.parsed_arguments()}}
        elif isinstance(content, ToolResultContent):
            part = {
                "functionResponse": {
                    "name": call_names.get(content.id, "tool_result"),
                    "response": {"content": _json_or_text(content.content)},
                }
            }
        else:
            part = {"text": content.text}

        role = _ROLES[message.role]
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append(part)
        else:
            contents.append({"role": role, "parts": [part]})

    body: dict[str, Any] = {"contents": contents}
    if system_parts:
        body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
    if tools:
        body["tools"] = [{
            "functionDeclarations": [
                {"name": t.name, "description": t.description, "parameters": t.input_schema}
                for t in tools
            ]
        }]
    return body


def _parse_chunk(chunk: dict[str, Any]) -> list[Token]:
    if "error" in chunk:
        raise ProviderError(f"stream error: {error_message(json.dumps(chunk))}")

    tokens: list[Token] = []
    candidates = chunk.get("candidates")
    if not candidates:
        reason = (chunk.get("promptFeedback") or {}).get("blockReason")
        if reason:
            raise ProviderError(f"prompt blocked: {reason}")
        return tokens

    for candidate in candidates:
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "text" in part and part["text"]:
                tokens.append(TextToken(part["text"]))
            elif "functionCall" in part:
                call = part["functionCall"]
                if not call.get("name"):
                    raise MalformedResponseError("functionCall without a name")
                tokens.append(ToolCallToken(
                    id=f"call_{uuid.uuid4().hex}",
                    name=call["name"],
                    arguments=json.dumps(call.get("args") or {}),
                ))
    return tokens


def status_error(status: int, body: str) -> ProviderError:
    message = error_message(body)
    if status in (400, 401, 403):
        if "API key" in body or "authentication" in body.lower():
            return ProviderAuthError(f"HTTP {status}: {message}")
        return MalformedResponseError(f"HTTP {status}: {message}")
    if status == 429:
        return ProviderRateLimitError(f"HTTP {status}: {message}")
    return ProviderError(f"HTTP {status}: {message}")


class GeminiProvider:
    def __init__(
        self,
        model: str,
        *,
        endpoint: str = DEFAULT_GEMINI_ENDPOINT,
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

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncGenerator[Token, None]:
        url = f"{self.endpoint}/v1beta/models/{self.model}:streamGenerateContent"
        params = {"alt": "sse"}
        if self._api_key:
            params["key"] = self._api_key
        body = build_gemini_request(self.system_prompt, messages, tools)
        try:
            async with self._http.stream("POST", url, params=params, json=body) as response:
                if response.status_code != 200:
                    raise status_error(response.status_code, await read_error_body(response))
                async for chunk in iter_sse_data(response):
                    try:
                        tokens = _parse_chunk(chunk)
                    except (AttributeError, TypeError) as e:
                        raise MalformedResponseError(f"unexpected chunk shape: {e}") from e
                    for token in tokens:
                        yield token
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s", self.name, e)
            raise transport_error(e) from e

    async def close(self) -> None:
        await self._http.aclose()
