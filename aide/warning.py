"""Configuration warnings surfaced at the start of every chat turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

logger = logging.getLogger(__name__)

Severity = Literal["info", "warning"]

# Known warning codes
NO_EMBEDDING_MODEL = "no_embedding_model"
SINGLE_CHAT_PROVIDER = "single_chat_provider"
EMBEDDING_FAILED = "embedding_failed"
MIGRATION_REQUIRED = "migration_required"


@dataclass(frozen=True)
class ConfigWarning:
    code: str
    message: str
    severity: Severity = "warning"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "severity": self.severity}


class WarningCollector:
    """Holds at most one warning per code, in insertion order."""

    def __init__(self) -> None:
        self._warnings: dict[str, ConfigWarning] = {}

    def add(self, warning: ConfigWarning) -> None:
        if warning.code not in self._warnings:
            logger.info("Runtime warning [%s]: %s", warning.code, warning.message)
        self._warnings[warning.code] = warning

    def clear(self, code: str) -> None:
        self._warnings.pop(code, None)

    def current(self) -> list[ConfigWarning]:
        return list(self._warnings.values())

    def __len__(self) -> int:
        return len(self._warnings)
