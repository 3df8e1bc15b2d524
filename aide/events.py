"""Canonical chat event stream.

Every transport (console, web SSE, bot adapters) consumes the same
ordered events produced by the agent loop and maps them onto its own
wire format via ``to_dict()``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar

from aide.warning import ConfigWarning


@dataclass(frozen=True)
class ChatEvent:
    """Base class for events emitted by the agent loop."""

    type: ClassVar[str] = "event"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **asdict(self)}


@dataclass(frozen=True)
class WarningsEvent(ChatEvent):
    type: ClassVar[str] = "warnings"
    warnings: list[ConfigWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "warnings": [w.to_dict() for w in self.warnings]}


@dataclass(frozen=True)
class MemorySnippet:
    text: str
    score: float
    category: str | None = None


@dataclass(frozen=True)
class MemoryContextEvent(ChatEvent):
    type: ClassVar[str] = "memory_context"
    memories: list[MemorySnippet] = field(default_factory=list)


@dataclass(frozen=True)
class TokenDeltaEvent(ChatEvent):
    type: ClassVar[str] = "token_delta"
    content: str = ""


@dataclass(frozen=True)
class WarningEvent(ChatEvent):
    """A one-off notice for this turn, e.g. a provider fallback."""

    type: ClassVar[str] = "warning"
    message: str = ""


@dataclass(frozen=True)
class ToolCallStartEvent(ChatEvent):
    type: ClassVar[str] = "tool_call_start"
    id: str = ""
    name: str = ""
    arguments: str = "{}"


@dataclass(frozen=True)
class ApprovalRequestEvent(ChatEvent):
    type: ClassVar[str] = "approval_request"
    id: str = ""
    skill_name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)
    permission_level: str = ""


@dataclass(frozen=True)
class ToolCallResultEvent(ChatEvent):
    type: ClassVar[str] = "tool_call_result"
    id: str = ""
    content: str = ""


@dataclass(frozen=True)
class ErrorEvent(ChatEvent):
    type: ClassVar[str] = "error"
    message: str = ""


@dataclass(frozen=True)
class DoneEvent(ChatEvent):
    type: ClassVar[str] = "done"
    conversation_id: str = ""
