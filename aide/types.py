"""Canonical conversation model shared by providers, skills and the loop.

Messages are immutable once built. Content is a closed union keyed on
``type``: plain text, a tool call requested by the model, or the result
fed back for that call.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCallContent(BaseModel):
    """A tool invocation requested by the model.

    ``arguments`` is the JSON text exactly as the provider produced it.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode arguments, treating empty, invalid or non-object JSON as {}."""
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


class ToolResultContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    id: str
    content: str  # JSON text


MessageContent = Annotated[
    TextContent | ToolCallContent | ToolResultContent,
    Field(discriminator="type"),
]


class Message(BaseModel):
    """A single message in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: MessageContent
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=TextContent(text=text))

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role="assistant", content=TextContent(text=text))

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role="system", content=TextContent(text=text))

    @classmethod
    def tool_call(cls, call_id: str, name: str, arguments: str) -> Message:
        return cls(
            role="assistant",
            content=ToolCallContent(id=call_id, name=name, arguments=arguments),
        )

    @classmethod
    def tool_result(cls, call_id: str, content: dict[str, Any] | str) -> Message:
        if not isinstance(content, str):
            content = json.dumps(content)
        return cls(role="user", content=ToolResultContent(id=call_id, content=content))

    @property
    def text(self) -> str | None:
        """Text payload, or None for tool call/result messages."""
        if isinstance(self.content, TextContent):
            return self.content.text
        return None


def validate_history(messages: Iterable[Message]) -> None:
    """Check that every tool result answers an earlier tool call.

    Raises ValueError naming the first orphaned result id.
    """
    seen: set[str] = set()
    for message in messages:
        content = message.content
        if isinstance(content, ToolCallContent):
            seen.add(content.id)
        elif isinstance(content, ToolResultContent) and content.id not in seen:
            raise ValueError(f"tool result '{content.id}' has no preceding tool call")


def last_user_text(messages: Iterable[Message]) -> str | None:
    """Return the text of the most recent user text message."""
    found = None
    for message in messages:
        if message.role == "user" and isinstance(message.content, TextContent):
            found = message.content.text
    return found
