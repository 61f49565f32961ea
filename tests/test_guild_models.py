from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from actuarius.guild_models import GuildModelConfig, GuildModelLoadError, GuildModelLoader


def write_config(path: Path, body: str) -> None:
    path.write_text(textwrap.dedent(body).strip(), encoding="utf-8")


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_config(
        base / "guilds.yaml",
        """
        - guild_id: "100"
          provider: claude
          model: sonnet
        - guild_id: "200"
          provider: codex
        """,
    )
    write_config(
        override / "guild-100.yml",
        """
        guild_id: "100"
        provider: Gemini
        model: ""
        """,
    )

    configs = GuildModelLoader([base, override]).load_all()

    assert configs["100"].provider == "gemini"
    assert configs["100"].model is None
    assert configs["200"].provider == "codex"
    assert configs["200"].updated_by_user_id == "config"


def test_loader_handles_missing_paths(tmp_path: Path) -> None:
    loader = GuildModelLoader([tmp_path / "absent"])

    assert loader.search_paths == []
    assert loader.load_all() == {}


def test_loader_skips_empty_files(tmp_path: Path) -> None:
    (tmp_path / "empty.yaml").write_text("", encoding="utf-8")

    assert GuildModelLoader([tmp_path]).load_all() == {}


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    write_config(
        tmp_path / "broken.yaml",
        """
        guild_id: "100"
        provider: copilot
        """,
    )

    with pytest.raises(GuildModelLoadError) as excinfo:
        GuildModelLoader([tmp_path]).load_all()

    assert "broken.yaml" in str(excinfo.value)


def test_config_rejects_blank_guild() -> None:
    with pytest.raises(ValidationError):
        GuildModelConfig(guild_id="  ", provider="claude")


def test_config_normalizes_known_provider_and_rejects_others() -> None:
    assert GuildModelConfig(guild_id="g1", provider=" Gemini ").provider == "gemini"

    with pytest.raises(ValidationError) as excinfo:
        GuildModelConfig(guild_id="g1", provider="copilot")

    assert "Unknown provider 'copilot'" in str(excinfo.value)
