from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from actuarius.config import ActuariusSettings, get_settings
from actuarius.orchestrator import WorktreeCleanupPolicy


def test_defaults() -> None:
    settings = ActuariusSettings(_env_file=None)

    assert settings.ask_concurrency_per_guild >= 1
    assert settings.git_remote_url_template == "https://github.com/{owner}/{repo}.git"
    assert settings.storage_backend in {"memory", "chroma"}


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("REPOS_ROOT_PATH", str(tmp_path / "repos"))
    monkeypatch.setenv("ASK_CONCURRENCY_PER_GUILD", "0")
    monkeypatch.setenv("ASK_EXECUTION_TIMEOUT_SECONDS", "90")
    monkeypatch.setenv("WORKTREE_CLEANUP_POLICY", "Per-Request")
    monkeypatch.setenv("DEFAULT_AI_PROVIDER", " Codex ")
    monkeypatch.setenv("CODEX_ENABLED", "true")
    monkeypatch.setenv("GEMINI_ENABLED", "false")
    monkeypatch.setenv("GUILD_MODEL_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]))
    monkeypatch.setenv("ACTUARIUS_LOG_LEVEL", "debug")
    monkeypatch.setenv("ACTUARIUS_STORAGE", "Chroma")

    settings = ActuariusSettings(_env_file=None)

    assert settings.repos_root_path == tmp_path / "repos"
    assert settings.ask_concurrency_per_guild == 1
    assert settings.ask_execution_timeout_seconds == 90
    assert settings.worktree_cleanup_policy is WorktreeCleanupPolicy.PER_REQUEST
    assert settings.default_provider == "codex"
    assert settings.enabled_providers["codex"] is True
    assert settings.enabled_providers["gemini"] is False
    assert settings.guild_model_paths == (tmp_path / "a", tmp_path / "b")
    assert settings.log_level == "DEBUG"
    assert settings.storage_backend == "chroma"


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("ask_execution_timeout_seconds", 0),
        ("git_timeout_seconds", -1),
        ("history_turn_limit", -1),
        ("git_remote_url_template", "https://example.com/repo.git"),
        ("default_provider", "copilot"),
        ("log_level", "chatty"),
        ("worktree_cleanup_policy", "never"),
    ],
)
def test_invalid_values_are_rejected(field: str, value) -> None:
    with pytest.raises(ValidationError):
        ActuariusSettings(_env_file=None, **{field: value})


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("REPOS_ROOT_PATH", "relative/repos")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.repos_root_path == (tmp_path / "relative" / "repos").resolve()
        assert all(path.is_absolute() for path in settings.guild_model_paths)
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
