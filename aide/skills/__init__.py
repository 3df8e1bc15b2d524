"""Built-in skills and the registry that exposes them to the model."""

from aide.skills.base import (
    ExecutionFailedError,
    ForbiddenError,
    InvalidInputError,
    PermissionLevel,
    Skill,
    SkillContext,
    SkillError,
    SkillRegistry,
)
from aide.skills.fetch_url import FetchUrlSkill
from aide.skills.files import ReadFileSkill, WriteFileSkill
from aide.skills.memory import RecallSkill, RememberSkill
from aide.skills.working_memory import MemoryReadSkill, MemoryWriteSkill

__all__ = [
    "ExecutionFailedError",
    "FetchUrlSkill",
    "ForbiddenError",
    "InvalidInputError",
    "MemoryReadSkill",
    "MemoryWriteSkill",
    "PermissionLevel",
    "ReadFileSkill",
    "RecallSkill",
    "RememberSkill",
    "Skill",
    "SkillContext",
    "SkillError",
    "SkillRegistry",
    "WriteFileSkill",
]
