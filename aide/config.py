"""Configuration: process settings from the environment, runtime config from TOML.

``Settings`` uses pydantic-settings with the AIDE_ env prefix and only
covers process-level knobs (where the config file lives, log level, HTTP
timeouts). Everything that can change while the process runs (providers,
skills, memory, approval) lives in the TOML file and is validated into a
``RuntimeConfig`` so it can be reloaded without a restart.
"""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = "You are a helpful, friendly AI assistant."


class ConfigError(Exception):
    """Raised when the runtime config cannot be read or is invalid."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AIDE_", env_file=".env", extra="ignore")

    config_path: str = "aide.toml"
    log_level: str = "info"

    # Provider HTTP clients
    http_timeout_connect: float = 10.0  # seconds
    http_timeout_read: float = 120.0  # seconds
    http_max_connections: int = 10


class ApprovalPolicy(str, Enum):
    """How often a human must approve a non-read-only skill."""

    ALWAYS = "always"
    ONCE = "once"
    TRUST = "trust"


# ---------------------------------------------------------------------------
# [models]
# ---------------------------------------------------------------------------


class ProviderEntry(BaseModel):
    type: str = "openai"
    model: str
    endpoint: str | None = None
    api_key: str | None = None
    api_key_env: str | None = None
    dimensions: int | None = None  # embedding providers only

    def resolve_api_key(self) -> str | None:
        """Inline key wins over api_key_env; None when neither is set."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            value = os.environ.get(self.api_key_env)
            if not value:
                raise ConfigError(
                    f"environment variable '{self.api_key_env}' is not set "
                    f"(required by api_key_env for model '{self.model}')"
                )
            return value
        return None


class ModelSlot(BaseModel):
    providers: list[ProviderEntry] = []


class ModelsConfig(BaseModel):
    chat: ModelSlot
    embedding: ModelSlot | None = None


# ---------------------------------------------------------------------------
# [chat], [skills], [memory], [approval], [storage]
# ---------------------------------------------------------------------------


class ChatConfig(BaseModel):
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tool_iterations: int = Field(10, ge=1)


class DirectorySkillConfig(BaseModel):
    allowed_directories: list[str]
    approval: ApprovalPolicy | None = None


class FetchUrlConfig(BaseModel):
    allowed_domains: list[str]
    approval: ApprovalPolicy | None = None


class SkillsConfig(BaseModel):
    read_file: DirectorySkillConfig | None = None
    write_file: DirectorySkillConfig | None = None
    fetch_url: FetchUrlConfig | None = None
    # Per-skill overrides for skills without their own section (remember, memory_write, ...)
    approval: dict[str, ApprovalPolicy] = {}


class MemoryConfig(BaseModel):
    auto_retrieve: bool = True
    auto_retrieve_limit: int = Field(3, ge=1)
    similarity_threshold: float = 0.5


class ApprovalConfig(BaseModel):
    timeout_seconds: float = Field(60.0, gt=0)


class StorageConfig(BaseModel):
    database: str = "aide.db"


class RuntimeConfig(BaseModel):
    models: ModelsConfig
    chat: ChatConfig = ChatConfig()
    skills: SkillsConfig = SkillsConfig()
    memory: MemoryConfig = MemoryConfig()
    approval: ApprovalConfig = ApprovalConfig()
    storage: StorageConfig = StorageConfig()

    @model_validator(mode="after")
    def _require_chat_provider(self) -> RuntimeConfig:
        if not self.models.chat.providers:
            raise ValueError("models.chat.providers must not be empty")
        return self

    def approval_overrides(self) -> dict[str, ApprovalPolicy]:
        """Collect explicit approval policies keyed by skill name."""
        overrides = dict(self.skills.approval)
        for name in ("read_file", "write_file", "fetch_url"):
            section = getattr(self.skills, name)
            if section is not None and section.approval is not None:
                overrides[name] = section.approval
        return overrides


def parse_config(text: str) -> RuntimeConfig:
    """Parse and validate TOML text."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML: {e}") from e
    if "models" not in data or "chat" not in data.get("models", {}):
        raise ConfigError("invalid config: [models.chat] section is required")
    try:
        return RuntimeConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config: {e}") from e


def load_config(path: str | Path) -> RuntimeConfig:
    """Read and validate a TOML config file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to read config file '{path}': {e}") from e
    return parse_config(text)
