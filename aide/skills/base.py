"""Skill contract and registry.

A skill consumes a JSON object matching its ``input_schema`` and returns a
JSON object, or raises a SkillError. Skills hold only their sandbox rules;
per-conversation data reaches them through ``SkillContext``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from aide.providers.base import ToolDefinition

logger = logging.getLogger(__name__)


class PermissionLevel(str, Enum):
    READ_ONLY = "read_only"
    MUTATING = "mutating"
    NETWORK = "network"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SkillError(Exception):
    """Recoverable skill failure; reported back to the model, never fatal."""

    kind = "error"

    def __str__(self) -> str:
        return f"{self.kind}: {super().__str__()}"


class InvalidInputError(SkillError):
    kind = "invalid input"


class ForbiddenError(SkillError):
    kind = "forbidden"


class ExecutionFailedError(SkillError):
    kind = "execution failed"


@dataclass(frozen=True)
class SkillContext:
    conversation_id: str


def require_str(arguments: dict[str, Any], name: str) -> str:
    """Fetch a required string argument or raise InvalidInputError."""
    value = arguments.get(name)
    if not isinstance(value, str):
        raise InvalidInputError(f"missing required string field '{name}'")
    return value


def optional_str(arguments: dict[str, Any], name: str) -> str | None:
    value = arguments.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"field '{name}' must be a string")
    return value


class Skill(ABC):
    name: str
    description: str
    input_schema: dict[str, Any]
    permission_level: PermissionLevel = PermissionLevel.READ_ONLY

    @abstractmethod
    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        """Run the skill. Raise SkillError subclasses for expected failures."""

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, input_schema=self.input_schema)

    async def close(self) -> None:
        """Release resources the skill owns. Most skills own none."""


# ---------------------------------------------------------------------------
# SkillRegistry
# ---------------------------------------------------------------------------


class SkillRegistry:
    """Catalog of skills, looked up by name."""

    def __init__(self) -> None:
        self._skills: dict[str, Skill] = {}

    def register(self, skill: Skill) -> None:
        if skill.name in self._skills:
            logger.warning("Replacing already registered skill '%s'", skill.name)
        self._skills[skill.name] = skill

    def get(self, name: str) -> Skill | None:
        return self._skills.get(name)

    def names(self) -> list[str]:
        return list(self._skills)

    def tool_definitions(self) -> list[ToolDefinition]:
        return [skill.definition() for skill in self._skills.values()]

    async def close(self) -> None:
        for skill in self._skills.values():
            await skill.close()

    def __contains__(self, name: object) -> bool:
        return name in self._skills

    def __len__(self) -> int:
        return len(self._skills)
