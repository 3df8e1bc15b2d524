"""Provider contract: normalized tokens, the error taxonomy, shared SSE helpers."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from aide.types import Message

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextToken:
    text: str


@dataclass(frozen=True)
class ToolCallToken:
    """A fully assembled tool call. ``arguments`` is JSON text."""

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class FallbackToken:
    """Emitted by a chain before the first token of a non-primary provider."""

    provider: str
    message: str


Token = TextToken | ToolCallToken | FallbackToken


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Backend failure. Raised directly for anything not covered below."""

    retryable = False


class ProviderNetworkError(ProviderError):
    retryable = True


class ProviderAuthError(ProviderError):
    pass


class ProviderRateLimitError(ProviderError):
    retryable = True


class MalformedResponseError(ProviderError):
    pass


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class Provider(Protocol):
    name: str

    def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncGenerator[Token, None]: ...

    async def close(self) -> None: ...


def build_http_client(
    *,
    timeout_connect: float = 10.0,
    timeout_read: float = 120.0,
    max_connections: int = 10,
    headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """Create the shared httpx client used by a provider."""
    timeout = httpx.Timeout(
        connect=timeout_connect,
        read=timeout_read,
        write=10.0,
        pool=10.0,
    )
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max(1, max_connections // 2),
    )
    return httpx.AsyncClient(headers=headers or {}, timeout=timeout, limits=limits)


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded JSON objects of ``data:`` lines; stops at ``[DONE]``."""
    async for line in response.aiter_lines():
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload:
            continue
        if payload == "[DONE]":
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"invalid JSON in stream: {e}") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"expected a JSON object in stream, got {type(data).__name__}")
        yield data


def transport_error(exc: httpx.HTTPError) -> ProviderError:
    """Map an httpx transport exception onto the provider taxonomy."""
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return ProviderNetworkError(str(exc) or exc.__class__.__name__)
    return ProviderError(str(exc))


async def read_error_body(response: httpx.Response) -> str:
    body = await response.aread()
    return body.decode("utf-8", errors="replace")[:2000]


def error_message(body: str) -> str:
    """Pull ``error.message`` out of a JSON error body, falling back to the raw text."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return body
