"""Per-guild AI provider and model defaults."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .agents import get_variant


class GuildModelLoadError(RuntimeError):
    """Raised when one or more guild model files cannot be parsed."""


class GuildModelConfig(BaseModel):
    """Which agent variant, and optionally which model, a guild runs requests with."""

    guild_id: str = Field(..., description="Tenant identifier the configuration applies to.")
    provider: str = Field(..., description="Agent variant name, e.g. 'claude' or 'codex'.")
    model: str | None = Field(default=None, description="Model passed to the agent CLI, if any.")
    updated_by_user_id: str = Field(default="config", description="Who last changed the setting.")

    @field_validator("guild_id")
    @classmethod
    def _normalize_guild_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Guild id must not be empty")
        return normalized

    @field_validator("provider")
    @classmethod
    def _validate_provider(cls, value: str) -> str:
        return get_variant(value).name

    @field_validator("model", mode="before")
    @classmethod
    def _blank_model_is_none(cls, value: Any):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class GuildModelLoader:
    """Loads guild model defaults from YAML files on disk.

    Each file holds either a single mapping or a list of mappings.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, GuildModelConfig]:
        """Later search paths override earlier ones when guild ids collide."""

        if not self._search_paths:
            return {}

        configs: dict[str, GuildModelConfig] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue
                entries = document if isinstance(document, list) else [document]

                for entry in entries:
                    try:
                        config = GuildModelConfig.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Guild model validation error in {path}: {exc}")
                        continue
                    configs[config.guild_id] = config

        if errors:
            raise GuildModelLoadError("; ".join(errors))

        return configs


__all__ = ["GuildModelConfig", "GuildModelLoadError", "GuildModelLoader"]
