"""Ordered provider fallback for one model role.

A chain tries its providers in order. Network and rate-limit failures
that happen before the first token move on to the next provider; any
other error is a configuration problem and is raised immediately. The
chain remembers the provider that last succeeded and starts there next
time, so a dead primary does not cost a timeout on every turn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Sequence

from aide.providers.base import FallbackToken, Provider, ProviderError, Token, ToolDefinition
from aide.types import Message

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Primary model unavailable, using fallback: {name}"


class ProviderChain:
    def __init__(self, providers: Sequence[Provider]) -> None:
        if not providers:
            raise ValueError("ProviderChain requires at least one provider")
        self._providers = tuple(providers)
        self._last_ok = 0

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> tuple[Provider, ...]:
        return self._providers

    def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncGenerator[Token, None]:
        """Stream tokens from the first provider that accepts the request.

        With a single provider this returns that provider's own stream.
        """
        if len(self._providers) == 1:
            return self._providers[0].complete(messages, tools)
        return self._complete_with_fallback(messages, tools)

    def _attempt_order(self) -> list[int]:
        start = self._last_ok
        return [start] + [i for i in range(len(self._providers)) if i != start]

    async def _complete_with_fallback(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None,
    ) -> AsyncGenerator[Token, None]:
        last_error: ProviderError | None = None

        for index in self._attempt_order():
            provider = self._providers[index]
            stream = provider.complete(messages, tools)
            try:
                try:
                    first = await anext(stream)
                except StopAsyncIteration:
                    first = None
                except ProviderError as e:
                    if not e.retryable:
                        raise
                    logger.warning("Provider %d (%s) failed: %s, trying next", index, provider.name, e)
                    last_error = e
                    continue

                self._last_ok = index
                if index > 0:
                    message = FALLBACK_MESSAGE.format(name=provider.name)
                    logger.warning("%s", message)
                    yield FallbackToken(provider=provider.name, message=message)
                if first is None:
                    return
                yield first
                async for token in stream:
                    yield token
                return
            finally:
                await stream.aclose()

        assert last_error is not None
        raise last_error

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()
