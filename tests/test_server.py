from __future__ import annotations

import asyncio
from pathlib import Path
import textwrap

from actuarius.config import ActuariusSettings
from actuarius.guild_models import GuildModelConfig
from actuarius.process import FakeProcessRunner
from actuarius.scheduler import TenantScheduler
from actuarius.server import create_server, scheduler_lifespan
from actuarius.storage import InMemoryRequestStore


def _settings(tmp_path: Path, **overrides) -> ActuariusSettings:
    return ActuariusSettings(
        _env_file=None,
        repos_root_path=tmp_path / "repos",
        chroma_persist_path=tmp_path / "chroma",
        guild_model_paths=(tmp_path / "guild_models",),
        **overrides,
    )


def test_create_server_wires_pipeline(tmp_path: Path) -> None:
    settings = _settings(tmp_path, ask_concurrency_per_guild=3, codex_enabled=True)

    server = create_server(settings, runner=FakeProcessRunner())

    assert isinstance(server.request_store, InMemoryRequestStore)
    assert server.storage_metadata["backend"] == "memory"
    assert server.scheduler.max_concurrency == 3
    assert server.adapters["codex"].enabled
    assert server.tool_handles.ask is not None


def test_create_server_seeds_guild_models(tmp_path: Path) -> None:
    models = tmp_path / "guild_models"
    models.mkdir()
    (models / "guilds.yaml").write_text(
        textwrap.dedent(
            """
            - guild_id: "g1"
              provider: codex
              model: gpt-5
            """
        ).strip(),
        encoding="utf-8",
    )
    store = InMemoryRequestStore()

    server = create_server(_settings(tmp_path), store=store, runner=FakeProcessRunner())

    assert server.request_store is store
    assert store.get_guild_model_config("g1").model == "gpt-5"


def test_runtime_guild_model_wins_over_files(tmp_path: Path) -> None:
    models = tmp_path / "guild_models"
    models.mkdir()
    (models / "guilds.yaml").write_text('guild_id: "g1"\nprovider: codex\n', encoding="utf-8")
    store = InMemoryRequestStore(guild_models=[GuildModelConfig(guild_id="g1", provider="gemini")])

    create_server(_settings(tmp_path), store=store, runner=FakeProcessRunner())

    assert store.get_guild_model_config("g1").provider == "gemini"


def test_lifespan_exit_cancels_scheduled_requests() -> None:
    started: list[str] = []
    cancelled: list[str] = []

    async def scenario() -> None:
        scheduler = TenantScheduler(1)

        async def forever() -> None:
            started.append("running")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append("running")
                raise

        async with scheduler_lifespan(scheduler)(None):
            scheduler.enqueue("g1", forever)
            scheduler.enqueue("g1", forever)
            await asyncio.sleep(0)
        assert scheduler.snapshot() == {}

    asyncio.run(scenario())

    assert started == ["running"]
    assert cancelled == ["running"]
