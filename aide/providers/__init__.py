"""LLM provider clients and the fallback chain.

Public API:
    create_provider  - Build a client from a ProviderEntry
    ProviderChain    - Ordered fallback over several clients
    Token types      - TextToken, ToolCallToken, FallbackToken
    Errors           - ProviderError and its subclasses
"""

from __future__ import annotations

import httpx

from aide.config import ConfigError, ProviderEntry, Settings
from aide.providers.anthropic import AnthropicProvider
from aide.providers.base import (
    FallbackToken,
    MalformedResponseError,
    Provider,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
    TextToken,
    Token,
    ToolCallToken,
    ToolDefinition,
    build_http_client,
)
from aide.providers.chain import ProviderChain
from aide.providers.gemini import GeminiProvider
from aide.providers.openai import LMStudioProvider, MistralProvider, OpenAIProvider

_PROVIDER_TYPES = {
    "openai": OpenAIProvider,
    "lmstudio": LMStudioProvider,
    "mistral": MistralProvider,
    "gemini": GeminiProvider,
    "anthropic": AnthropicProvider,
}


def create_provider(
    entry: ProviderEntry,
    *,
    system_prompt: str = "",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    """Instantiate the client class registered for ``entry.type``."""
    cls = _PROVIDER_TYPES.get(entry.type)
    if cls is None:
        raise ConfigError(
            f"unknown provider type '{entry.type}' for model '{entry.model}' "
            f"(expected one of: {', '.join(sorted(_PROVIDER_TYPES))})"
        )
    api_key = entry.resolve_api_key()
    if http_client is None:
        settings = settings or Settings()
        http_client = build_http_client(
            timeout_connect=settings.http_timeout_connect,
            timeout_read=settings.http_timeout_read,
            max_connections=settings.http_max_connections,
        )
    kwargs = {"system_prompt": system_prompt, "http_client": http_client}
    if entry.endpoint:
        kwargs["endpoint"] = entry.endpoint
    if api_key:
        kwargs["api_key"] = api_key
    return cls(entry.model, **kwargs)


__all__ = [
    "AnthropicProvider",
    "FallbackToken",
    "GeminiProvider",
    "LMStudioProvider",
    "MalformedResponseError",
    "MistralProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderAuthError",
    "ProviderChain",
    "ProviderError",
    "ProviderNetworkError",
    "ProviderRateLimitError",
    "TextToken",
    "Token",
    "ToolCallToken",
    "ToolDefinition",
    "create_provider",
]
