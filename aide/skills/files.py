"""File skills: read_file and write_file, confined to allow-listed directories.

Paths are checked twice: once after lexical normalization (so ``..``
cannot climb out) and again after resolving symlinks (so a link inside
the sandbox cannot point outside it).
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from aide.skills.base import (
    ExecutionFailedError,
    ForbiddenError,
    InvalidInputError,
    PermissionLevel,
    Skill,
    SkillContext,
    require_str,
)

logger = logging.getLogger(__name__)

_MAX_FILE_SIZE = 1 * 1024 * 1024  # 1MB


class PathSandbox:
    """Decides whether a requested path lies inside the allowed directories."""

    def __init__(self, allowed_directories: Sequence[str]) -> None:
        self.allowed = [str(d) for d in allowed_directories]
        self._lexical_roots = [Path(os.path.normpath(os.path.abspath(d))) for d in self.allowed]
        self._resolved_roots = [Path(d).resolve() for d in self.allowed]

    def _inside(self, path: Path, roots: Sequence[Path]) -> bool:
        return any(path == root or path.is_relative_to(root) for root in roots)

    def normalize(self, path_str: str) -> Path:
        """Lexically normalize ``path_str`` and check it against the allow-list.

        Relative paths are taken relative to the first allowed directory.
        Raises ForbiddenError if the path escapes every allowed directory.
        """
        if not path_str.strip():
            raise InvalidInputError("path must not be empty")
        if not self._lexical_roots:
            raise ForbiddenError("no directories are allowed")
        raw = Path(path_str).expanduser()
        if not raw.is_absolute():
            raw = self._lexical_roots[0] / raw
        normalized = Path(os.path.normpath(raw))
        if not (self._inside(normalized, self._lexical_roots) or self._inside(normalized, self._resolved_roots)):
            raise ForbiddenError(f"path '{path_str}' is outside the allowed directories")
        return normalized

    def check_resolved(self, path: Path, original: str) -> Path:
        """Resolve symlinks and re-check; returns the resolved path."""
        resolved = path.resolve()
        if not self._inside(resolved, self._resolved_roots):
            raise ForbiddenError(f"path '{original}' resolves outside the allowed directories")
        return resolved


class ReadFileSkill(Skill):
    name = "read_file"
    description = "Read the contents of a text file inside the allowed directories."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute path of the file to read"},
        },
        "required": ["path"],
    }
    permission_level = PermissionLevel.READ_ONLY

    def __init__(self, allowed_directories: Sequence[str]) -> None:
        self.sandbox = PathSandbox(allowed_directories)

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        path_str = require_str(arguments, "path")
        target = self.sandbox.check_resolved(self.sandbox.normalize(path_str), path_str)
        if not target.is_file():
            raise ExecutionFailedError(f"file not found: {path_str}")
        if target.stat().st_size > _MAX_FILE_SIZE:
            raise ExecutionFailedError(f"file is larger than {_MAX_FILE_SIZE} bytes: {path_str}")
        try:
            content = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            raise ExecutionFailedError(f"failed to read '{path_str}': {e}") from e
        return {"content": content}


class WriteFileSkill(Skill):
    name = "write_file"
    description = "Write text to a file inside the allowed directories, creating parent directories."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute path of the file to write"},
            "content": {"type": "string", "description": "Text to write"},
        },
        "required": ["path", "content"],
    }
    permission_level = PermissionLevel.MUTATING

    def __init__(self, allowed_directories: Sequence[str]) -> None:
        self.sandbox = PathSandbox(allowed_directories)

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        path_str = require_str(arguments, "path")
        content = require_str(arguments, "content")
        target = self.sandbox.normalize(path_str)
        # Existing parents (and the file itself, if it is a symlink) must stay inside
        self.sandbox.check_resolved(target.parent, path_str)
        resolved = self.sandbox.check_resolved(target, path_str)

        data = content.encode("utf-8")
        try:
            await asyncio.to_thread(resolved.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(resolved.write_bytes, data)
        except OSError as e:
            raise ExecutionFailedError(f"failed to write '{path_str}': {e}") from e
        logger.info("write_file wrote %d bytes to %s", len(data), resolved)
        return {"bytes_written": len(data)}
