"""Working-memory skills: a per-conversation scratchpad that is never persisted."""

from __future__ import annotations

import json
from typing import Any

from aide.conversation import ConversationRegistry
from aide.skills.base import (
    InvalidInputError,
    PermissionLevel,
    Skill,
    SkillContext,
    optional_str,
    require_str,
)


def _value_arg(arguments: dict[str, Any], action: str) -> str:
    value = arguments.get("value")
    if value is None:
        raise InvalidInputError(f"{action} requires 'value'")
    return value if isinstance(value, str) else json.dumps(value)


class MemoryWriteSkill(Skill):
    name = "memory_write"
    description = (
        "Write to the conversation's working memory scratchpad. Supports set (key-value), "
        "note (free-form), delete (remove key), and clear (wipe all)."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["set", "note", "delete", "clear"],
                "description": "The action to perform",
            },
            "key": {"type": "string", "description": "Key name (required for set and delete)"},
            "value": {"type": "string", "description": "Value to store (required for set and note)"},
        },
        "required": ["action"],
    }
    permission_level = PermissionLevel.MUTATING

    def __init__(self, conversations: ConversationRegistry) -> None:
        self.conversations = conversations

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        action = require_str(arguments, "action")
        memory = self.conversations.get(context.conversation_id).working_memory

        if action == "set":
            key = optional_str(arguments, "key")
            if not key:
                raise InvalidInputError("set requires 'key'")
            value = _value_arg(arguments, "set")
            memory.set(key, value)
            return {"status": "ok", "action": "set", "key": key, "value": value}

        if action == "note":
            memory.add_note(_value_arg(arguments, "note"))
            return {"status": "ok", "action": "note"}

        if action == "delete":
            key = optional_str(arguments, "key")
            if not key:
                raise InvalidInputError("delete requires 'key'")
            return {"status": "ok", "action": "delete", "key": key, "existed": memory.delete(key)}

        if action == "clear":
            memory.clear()
            return {"status": "ok", "action": "clear"}

        raise InvalidInputError(f"unknown action '{action}' (expected set, note, delete or clear)")


class MemoryReadSkill(Skill):
    name = "memory_read"
    description = (
        "Read the conversation's working memory. Pass a key to read one value, "
        "or omit it to list all entries and notes."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "key": {"type": "string", "description": "Key to read; omit to read everything"},
        },
    }
    permission_level = PermissionLevel.READ_ONLY

    def __init__(self, conversations: ConversationRegistry) -> None:
        self.conversations = conversations

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        key = optional_str(arguments, "key")
        state = self.conversations.peek(context.conversation_id)

        if key is not None:
            value = state.working_memory.get(key) if state else None
            if value is None:
                return {"key": key, "value": None, "message": "not found"}
            return {"key": key, "value": value}

        if state is None:
            return {"entries": {}, "notes": []}
        memory = state.working_memory
        return {"entries": dict(memory.entries), "notes": list(memory.notes)}
