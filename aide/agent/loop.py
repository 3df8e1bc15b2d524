"""Tool-call orchestration loop.

One ``run()`` drives a single user turn: call the provider chain, stream
text to the caller, and for each requested tool call go through the
approval gate, execute the skill, and feed the result back. The loop
stops on a turn that requests no tools, or after ``max_iterations``
provider calls that all requested tools.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from typing import Any

from aide.agent.gate import ApprovalGate, Decision
from aide.config import MemoryConfig
from aide.conversation import ConversationRegistry, ConversationState
from aide.embeddings.base import Embedder, EmbeddingError
from aide.events import (
    ApprovalRequestEvent,
    ChatEvent,
    DoneEvent,
    ErrorEvent,
    MemoryContextEvent,
    MemorySnippet,
    TokenDeltaEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    WarningEvent,
    WarningsEvent,
)
from aide.memory.vector_store import SearchResult, VectorStore, VectorStoreError
from aide.providers.base import FallbackToken, Provider, ProviderError, TextToken, ToolCallToken
from aide.skills.base import Skill, SkillContext, SkillError, SkillRegistry
from aide.types import Message, last_user_text, validate_history
from aide.warning import ConfigWarning

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 10

MessageSink = Callable[[str, Message], Awaitable[None]]


def format_recalled_memories(results: Sequence[SearchResult]) -> str:
    lines = ["## Recalled Memories", "Relevant memories from previous conversations:"]
    for result in results:
        category = result.metadata.get("category") or "general"
        lines.append(f'- "{result.source_text}" ({category}, relevance: {result.score:.2f})')
    return "\n".join(lines)


class AgentLoop:
    """Runs turns against one captured set of components.

    Build a new AgentLoop per turn from the current runtime snapshot; a
    config reload mid-turn does not affect a loop that already exists.
    """

    def __init__(
        self,
        *,
        provider: Provider,
        registry: SkillRegistry,
        gate: ApprovalGate,
        conversations: ConversationRegistry,
        embedder: Embedder | None = None,
        vector_store: VectorStore | None = None,
        memory: MemoryConfig | None = None,
        warnings: Sequence[ConfigWarning] = (),
        max_iterations: int = MAX_TOOL_ITERATIONS,
        sink: MessageSink | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.gate = gate
        self.conversations = conversations
        self.embedder = embedder
        self.vector_store = vector_store
        self.memory = memory or MemoryConfig()
        self.warnings = list(warnings)
        self.max_iterations = max_iterations
        self.sink = sink

    async def run(self, conversation_id: str, history: list[Message]) -> AsyncGenerator[ChatEvent, None]:
        """Run one turn, yielding chat events.

        New messages (tool calls, tool results, the final answer) are
        appended to ``history``; existing entries are never touched.
        Turns for the same conversation are serialized.
        """
        validate_history(history)
        conversation = self.conversations.get(conversation_id)
        async with conversation.lock:
            events = self._run(conversation, history)
            try:
                async for event in events:
                    yield event
            finally:
                await events.aclose()

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def _run(self, conversation: ConversationState, history: list[Message]) -> AsyncGenerator[ChatEvent, None]:
        conversation_id = conversation.conversation_id
        yield WarningsEvent(list(self.warnings))

        context: list[Message] = []
        recalled = await self._recall(history)
        if recalled:
            yield MemoryContextEvent([
                MemorySnippet(text=r.source_text, score=r.score, category=r.metadata.get("category"))
                for r in recalled
            ])
            context.append(Message.system(format_recalled_memories(recalled)))

        working_memory = conversation.working_memory
        if not working_memory.is_empty():
            context.append(Message.system(f"[Working Memory]\n{working_memory.to_context_string()}"))

        tools = self.registry.tool_definitions() or None

        for iteration in range(1, self.max_iterations + 1):
            text_parts: list[str] = []
            tool_calls: list[ToolCallToken] = []

            try:
                stream = self.provider.complete(context + history, tools)
                try:
                    async for token in stream:
                        if isinstance(token, TextToken):
                            text_parts.append(token.text)
                            yield TokenDeltaEvent(token.text)
                        elif isinstance(token, ToolCallToken):
                            tool_calls.append(token)
                        elif isinstance(token, FallbackToken):
                            yield WarningEvent(token.message)
                finally:
                    await stream.aclose()
            except ProviderError as e:
                logger.error("Provider failed in conversation %s: %s", conversation_id, e)
                yield ErrorEvent(f"Provider error: {e}")
                yield DoneEvent(conversation_id)
                return

            if not tool_calls:
                await self._append(conversation_id, history, Message.assistant("".join(text_parts)))
                yield DoneEvent(conversation_id)
                return

            if text_parts:
                await self._append(conversation_id, history, Message.assistant("".join(text_parts)))

            # Several calls in one turn run one after another, each gated on its own
            for call in tool_calls:
                events = self._handle_tool_call(conversation, call, history)
                try:
                    async for event in events:
                        yield event
                finally:
                    await events.aclose()
            logger.debug("Conversation %s finished tool iteration %d", conversation_id, iteration)

        message = f"Tool call loop exceeded maximum of {self.max_iterations} iterations"
        logger.warning("Conversation %s: %s", conversation_id, message)
        yield ErrorEvent(message)
        yield DoneEvent(conversation_id)

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def _handle_tool_call(
        self,
        conversation: ConversationState,
        call: ToolCallToken,
        history: list[Message],
    ) -> AsyncGenerator[ChatEvent, None]:
        conversation_id = conversation.conversation_id
        yield ToolCallStartEvent(id=call.id, name=call.name, arguments=call.arguments)
        await self._append(conversation_id, history, Message.tool_call(call.id, call.name, call.arguments))

        result: dict[str, Any]
        skill = self.registry.get(call.name)
        arguments = _parse_arguments(call.arguments)
        if skill is None:
            logger.warning("Model requested unknown tool '%s'", call.name)
            result = {"error": f"unknown tool '{call.name}'"}
        elif arguments is None:
            result = {"error": "invalid input: arguments are not a JSON object"}
        else:
            decision = self.gate.evaluate(conversation, skill.name, skill.permission_level)
            if decision is None:
                pending = self.gate.request(conversation, skill.name, arguments, skill.permission_level)
                try:
                    yield ApprovalRequestEvent(
                        id=pending.id,
                        skill_name=skill.name,
                        arguments=arguments,
                        permission_level=skill.permission_level.value,
                    )
                    decision = await self.gate.wait(pending, conversation)
                finally:
                    # Also reached when the consumer drops the stream at the request
                    self.gate.broker.discard(pending.id)

            if decision == Decision.DENIED:
                result = {"error": f"User denied execution of {skill.name}"}
            else:
                result = await self._execute(skill, arguments, conversation_id)

        content = json.dumps(result)
        await self._append(conversation_id, history, Message.tool_result(call.id, content))
        yield ToolCallResultEvent(id=call.id, content=content)

    async def _execute(self, skill: Skill, arguments: dict[str, Any], conversation_id: str) -> dict[str, Any]:
        try:
            return await skill.execute(arguments, SkillContext(conversation_id=conversation_id))
        except SkillError as e:
            logger.info("Skill %s returned error: %s", skill.name, e)
            return {"error": str(e)}
        except Exception as e:
            logger.exception("Skill %s raised unexpectedly", skill.name)
            return {"error": f"execution failed: {e}"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _recall(self, history: Sequence[Message]) -> list[SearchResult]:
        """Search long-term memory with the latest user message."""
        if not self.memory.auto_retrieve or self.embedder is None or self.vector_store is None:
            return []
        query = last_user_text(history)
        if not query:
            return []
        try:
            if await self.vector_store.count() == 0:
                return []
            vector = await self.embedder.embed(query)
            results = await self.vector_store.search(vector, self.memory.auto_retrieve_limit)
        except (EmbeddingError, VectorStoreError) as e:
            logger.warning("Memory auto-retrieval skipped: %s", e)
            return []
        return [r for r in results if r.score >= self.memory.similarity_threshold]

    async def _append(self, conversation_id: str, history: list[Message], message: Message) -> None:
        history.append(message)
        if self.sink is None:
            return
        try:
            await self.sink(conversation_id, message)
        except Exception:
            logger.exception("Failed to persist message for conversation %s", conversation_id)


def _parse_arguments(raw: str) -> dict[str, Any] | None:
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
