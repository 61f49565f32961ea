"""FastMCP server bootstrap for Actuarius."""

import json
import logging
import shutil
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .agents import build_adapters
from .channel import InMemoryThreadChannel
from .config import ActuariusSettings, get_settings
from .guild_models import GuildModelLoadError, GuildModelLoader
from .orchestrator import RequestOrchestrator
from .process import ProcessRunner
from .scheduler import TenantScheduler
from .storage import ChromaRequestStore, ChromaUnavailableError, InMemoryRequestStore, RequestStore
from .tools import register_tools
from .workspace import GitWorkspace, KeyedLock, WorktreeManager

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Actuarius server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _build_store(settings: ActuariusSettings, storage_metadata: dict) -> RequestStore:
    if settings.storage_backend == "chroma":
        try:
            store = ChromaRequestStore(settings.chroma_persist_path)
            store.ping()
            storage_metadata["available"] = True
            return store
        except ChromaUnavailableError as exc:
            storage_metadata["error"] = str(exc)
            logger.warning(
                "Chroma unavailable, falling back to in-memory storage",
                extra={"path": str(settings.chroma_persist_path), "error": str(exc)},
            )
    storage_metadata["backend"] = "memory"
    storage_metadata["available"] = True
    return InMemoryRequestStore()


def scheduler_lifespan(scheduler: TenantScheduler):
    """Server lifespan that cancels queued requests when the server stops."""

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[dict]:
        try:
            yield {}
        finally:
            logger.info("Stopping request scheduler", extra={"tenants": scheduler.snapshot()})
            await scheduler.shutdown()

    return lifespan


def _seed_guild_models(store: RequestStore, loader: GuildModelLoader) -> tuple[int, str | None]:
    try:
        configs = loader.load_all()
    except GuildModelLoadError as exc:
        logger.error("Failed to load guild model files", extra={"error": str(exc)})
        return 0, str(exc)

    seeded = 0
    for config in configs.values():
        # Operator changes made at runtime win over the files.
        if store.get_guild_model_config(config.guild_id) is None:
            store.set_guild_model_config(config)
            seeded += 1
    return seeded, None


def create_server(
    settings: Optional[ActuariusSettings] = None,
    *,
    store: RequestStore | None = None,
    runner: ProcessRunner | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server and wire the request pipeline."""

    settings = settings or get_settings()
    runner = runner or ProcessRunner()

    storage_metadata = {
        "backend": settings.storage_backend,
        "available": store is not None,
        "path": str(settings.chroma_persist_path),
        "error": None,
    }
    if store is None:
        store = _build_store(settings, storage_metadata)
    else:
        storage_metadata["backend"] = type(store).__name__

    guild_model_loader = GuildModelLoader(settings.guild_model_paths)
    seeded, guild_model_error = _seed_guild_models(store, guild_model_loader)

    channel = InMemoryThreadChannel()
    locks = KeyedLock()
    workspace = GitWorkspace(
        settings.repos_root_path,
        runner=runner,
        git_timeout=settings.git_timeout_seconds,
        remote_url_template=settings.git_remote_url_template,
        locks=locks,
    )
    worktrees = WorktreeManager(
        settings.repos_root_path,
        runner=runner,
        git_timeout=settings.git_timeout_seconds,
        locks=locks,
    )
    adapters = build_adapters(settings.enabled_providers, runner=runner)
    orchestrator = RequestOrchestrator(
        store=store,
        channel=channel,
        workspace=workspace,
        worktrees=worktrees,
        adapters=adapters,
        execution_timeout=settings.ask_execution_timeout_seconds,
        cleanup_policy=settings.worktree_cleanup_policy,
        default_provider=settings.default_provider,
        history_turn_limit=settings.history_turn_limit,
    )
    scheduler = TenantScheduler(settings.ask_concurrency_per_guild)

    server = FastMCP(
        name="Actuarius MCP",
        instructions=(
            "Actuarius runs coding-agent CLIs against connected GitHub repositories. "
            "Connect a repo to a guild, then ask questions; each request runs in its own "
            "git worktree and posts progress to its session thread."
        ),
        lifespan=scheduler_lifespan(scheduler),
    )

    handles = register_tools(
        server,
        settings=settings,
        store=store,
        channel=channel,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )

    @server.resource(
        "resource://actuarius/status",
        name="actuarius_status",
        title="Actuarius MCP Status",
        description="Provides the current runtime status for the Actuarius MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        status_counts: dict[str, int] = {}
        storage_error = None
        try:
            for record in store.list_requests():
                status_counts[record.status.value] = status_counts.get(record.status.value, 0) + 1
        except Exception as exc:
            storage_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "adapters": {
                name: {
                    "enabled": adapter.enabled,
                    "executable": adapter.executable,
                    "on_path": shutil.which(adapter.executable) is not None,
                }
                for name, adapter in adapters.items()
            },
            "queue": {
                "max_concurrency": scheduler.max_concurrency,
                "tenants": scheduler.snapshot(),
            },
            "requests": {"status_counts": status_counts, "error": storage_error},
            "storage": storage_metadata,
            "guild_models": {"seeded": seeded, "error": guild_model_error},
            "settings": {
                "repos_root_path": str(settings.repos_root_path),
                "default_provider": settings.default_provider,
                "worktree_cleanup_policy": settings.worktree_cleanup_policy.value,
                "ask_execution_timeout_seconds": settings.ask_execution_timeout_seconds,
                "git_timeout_seconds": settings.git_timeout_seconds,
                "history_turn_limit": settings.history_turn_limit,
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "request_store", store)
    setattr(server, "storage_metadata", storage_metadata)
    setattr(server, "thread_channel", channel)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "scheduler", scheduler)
    setattr(server, "adapters", adapters)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Actuarius MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Actuarius MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "storage": getattr(server, "storage_metadata", {}).get("backend"),
            "providers": sorted(name for name, enabled in settings.enabled_providers.items() if enabled),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
