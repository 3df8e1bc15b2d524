"""Per-conversation volatile state: working memory, Once approvals, the turn lock.

Each conversation gets its own ``ConversationState``; unrelated
conversations never share a lock. State lives only in process memory and
is dropped with ``ConversationRegistry.remove``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class WorkingMemory:
    """Key-value scratchpad plus an ordered list of notes."""

    def __init__(self) -> None:
        self.entries: dict[str, str] = {}
        self.notes: list[str] = []

    def set(self, key: str, value: str) -> None:
        self.entries[key] = value

    def get(self, key: str) -> str | None:
        return self.entries.get(key)

    def delete(self, key: str) -> bool:
        return self.entries.pop(key, None) is not None

    def add_note(self, note: str) -> None:
        self.notes.append(note)

    def clear(self) -> None:
        self.entries.clear()
        self.notes.clear()

    def is_empty(self) -> bool:
        return not self.entries and not self.notes

    def to_context_string(self) -> str:
        """Render for injection into the prompt; keys are sorted."""
        parts = []
        if self.entries:
            parts.append("Key-value pairs:")
            parts.extend(f"  {key}: {self.entries[key]}" for key in sorted(self.entries))
        if self.notes:
            parts.append("Notes:")
            parts.extend(f"  - {note}" for note in self.notes)
        return "\n".join(parts)


@dataclass
class ConversationState:
    conversation_id: str
    working_memory: WorkingMemory = field(default_factory=WorkingMemory)
    approved_skills: set[str] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationRegistry:
    """Map of conversation id to its state."""

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}

    def get(self, conversation_id: str) -> ConversationState:
        """Return the state for ``conversation_id``, creating it on first use."""
        state = self._states.get(conversation_id)
        if state is None:
            state = ConversationState(conversation_id)
            self._states[conversation_id] = state
        return state

    def peek(self, conversation_id: str) -> ConversationState | None:
        return self._states.get(conversation_id)

    def remove(self, conversation_id: str) -> bool:
        removed = self._states.pop(conversation_id, None) is not None
        if removed:
            logger.debug("Dropped volatile state for conversation %s", conversation_id)
        return removed

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._states

    def __len__(self) -> int:
        return len(self._states)
