"""Configuration management for Actuarius."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .agents import VARIANTS
from .orchestrator import WorktreeCleanupPolicy
from .workspace.git import DEFAULT_REMOTE_URL_TEMPLATE


class ActuariusSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    repos_root_path: Path = Field(default=Path("./data/repos"), validation_alias="REPOS_ROOT_PATH")
    ask_concurrency_per_guild: int = Field(default=1, validation_alias="ASK_CONCURRENCY_PER_GUILD")
    ask_execution_timeout_seconds: float = Field(
        default=600.0, validation_alias="ASK_EXECUTION_TIMEOUT_SECONDS"
    )
    git_timeout_seconds: float = Field(default=120.0, validation_alias="GIT_TIMEOUT_SECONDS")
    git_remote_url_template: str = Field(
        default=DEFAULT_REMOTE_URL_TEMPLATE, validation_alias="GIT_REMOTE_URL_TEMPLATE"
    )
    worktree_cleanup_policy: WorktreeCleanupPolicy = Field(
        default=WorktreeCleanupPolicy.PER_SESSION, validation_alias="WORKTREE_CLEANUP_POLICY"
    )
    history_turn_limit: int = Field(default=20, validation_alias="HISTORY_TURN_LIMIT")
    default_provider: str = Field(default="claude", validation_alias="DEFAULT_AI_PROVIDER")
    claude_enabled: bool = Field(default=True, validation_alias="CLAUDE_ENABLED")
    codex_enabled: bool = Field(default=False, validation_alias="CODEX_ENABLED")
    gemini_enabled: bool = Field(default=False, validation_alias="GEMINI_ENABLED")
    guild_model_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("guild_models"),), validation_alias="GUILD_MODEL_PATHS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    storage_backend: Literal["memory", "chroma"] = Field(
        default="memory", validation_alias="ACTUARIUS_STORAGE"
    )
    log_level: str = Field(default="INFO", validation_alias="ACTUARIUS_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "ACTUARIUS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("ask_concurrency_per_guild")
    @classmethod
    def _clamp_concurrency(cls, value: int) -> int:
        return max(1, value)

    @field_validator("ask_execution_timeout_seconds", "git_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts must be greater than zero")
        return value

    @field_validator("history_turn_limit")
    @classmethod
    def _validate_history_turn_limit(cls, value: int) -> int:
        if value < 0:
            raise ValueError("HISTORY_TURN_LIMIT must be >= 0")
        return value

    @field_validator("git_remote_url_template")
    @classmethod
    def _validate_remote_template(cls, value: str) -> str:
        if "{owner}" not in value or "{repo}" not in value:
            raise ValueError("GIT_REMOTE_URL_TEMPLATE must contain {owner} and {repo}")
        return value

    @field_validator("default_provider")
    @classmethod
    def _validate_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in VARIANTS:
            raise ValueError(f"DEFAULT_AI_PROVIDER must be one of {sorted(VARIANTS)}")
        return normalized

    @field_validator("worktree_cleanup_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value):
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _normalize_storage_backend(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("guild_model_paths", mode="before")
    @classmethod
    def _parse_guild_model_paths(cls, value):
        if value is None or value == "":
            return (Path("guild_models"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("guild_models"),)
        raise TypeError("GUILD_MODEL_PATHS must be a list of paths or a path-separated string")

    @property
    def enabled_providers(self) -> dict[str, bool]:
        return {
            "claude": self.claude_enabled,
            "codex": self.codex_enabled,
            "gemini": self.gemini_enabled,
        }


@lru_cache(maxsize=1)
def get_settings() -> ActuariusSettings:
    """Return cached settings instance."""

    settings = ActuariusSettings()
    settings.repos_root_path = settings.repos_root_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.guild_model_paths = tuple(path.expanduser().resolve() for path in settings.guild_model_paths)
    return settings


__all__ = ["ActuariusSettings", "get_settings"]
