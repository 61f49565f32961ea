"""Tool registration for Actuarius MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..channel import InMemoryThreadChannel, build_thread_name
from ..config import ActuariusSettings
from ..guild_models import GuildModelConfig
from ..orchestrator import RequestJob, RequestOrchestrator
from ..scheduler import TenantScheduler
from ..storage import RepoRecord, RequestRecord, RequestStore
from ..workspace import RepoIdentity

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    connect_repo: Any
    list_repos: Any
    ask: Any
    follow_up: Any
    request_status: Any
    thread_messages: Any
    close_session: Any
    set_guild_model: Any


def _repo_summary(record: RepoRecord) -> dict[str, Any]:
    return {
        "repo_id": record.id,
        "guild_id": record.guild_id,
        "full_name": record.full_name,
        "channel_id": record.channel_id,
        "linked_by": record.linked_by_user_id,
        "created_at": record.created_at.isoformat(),
    }


def _request_summary(record: RequestRecord) -> dict[str, Any]:
    return {
        "request_id": record.id,
        "guild_id": record.guild_id,
        "repo_id": record.repo_id,
        "thread_id": record.thread_id,
        "status": record.status.value,
        "worktree_path": record.worktree_path,
        "created_at": record.created_at.isoformat(),
    }


def register_tools(
    server: FastMCP,
    *,
    settings: ActuariusSettings,
    store: RequestStore,
    channel: InMemoryThreadChannel,
    orchestrator: RequestOrchestrator,
    scheduler: TenantScheduler,
) -> ToolHandles:
    """Register Actuarius's MCP tools on the server."""

    def _require_repo(guild_id: str, reference: str) -> RepoRecord:
        identity = RepoIdentity.parse(reference)
        if identity is None:
            raise ValueError(f"'{reference}' is not an owner/repo reference or GitHub URL")
        record = store.get_repo(guild_id, identity.full_name)
        if record is None:
            raise ValueError(f"{identity.full_name} is not connected to guild {guild_id}; use connect_repo first")
        return record

    def _thread_repo(guild_id: str, thread_id: str) -> RepoRecord:
        for request in reversed(store.list_requests(guild_id)):
            if request.thread_id == thread_id:
                return store.get_repo_by_id(request.repo_id)
        raise ValueError(f"Thread '{thread_id}' has no requests in guild {guild_id}")

    def _submit(record: RequestRecord, repo: RepoRecord, *, follow_up: bool) -> None:
        job = RequestJob(
            request_id=record.id,
            guild_id=record.guild_id,
            thread_id=record.thread_id,
            repo=repo.identity,
            prompt=record.prompt,
            follow_up=follow_up,
        )
        scheduler.enqueue(record.guild_id, lambda: orchestrator.run(job))

    def _connect_repo(
        guild_id: str,
        repo: str,
        user_id: str = "operator",
        channel_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Link a repository to a guild so requests can target it."""

        identity = RepoIdentity.parse(repo)
        if identity is None:
            raise ValueError(f"'{repo}' is not an owner/repo reference or GitHub URL")
        record = store.create_repo(
            guild_id=guild_id,
            identity=identity,
            channel_id=channel_id or f"repo-{identity.full_name.replace('/', '-')}",
            linked_by_user_id=user_id,
        )
        _emit_log(context, "info", "Connected repo", extra={"guild_id": guild_id, "repo": record.full_name})
        return _repo_summary(record)

    def _list_repos(guild_id: str, context: Context | None = None) -> list[dict[str, Any]]:
        """List repositories connected to a guild."""

        repos = [_repo_summary(record) for record in store.list_repos(guild_id)]
        _emit_log(context, "debug", "Listing repos", extra={"guild_id": guild_id, "count": len(repos)})
        return repos

    async def _ask(
        guild_id: str,
        repo: str,
        prompt: str,
        user_id: str = "operator",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Open a new session thread and queue the prompt against a connected repo."""

        text = prompt.strip()
        if not text:
            raise ValueError("Prompt must not be empty")
        repo_record = _require_repo(guild_id, repo)
        thread_id = build_thread_name(text)
        channel.record_user(thread_id, text)
        request = store.create_request(
            guild_id=guild_id,
            repo_id=repo_record.id,
            thread_id=thread_id,
            user_id=user_id,
            prompt=text,
        )
        _submit(request, repo_record, follow_up=False)
        _emit_log(
            context,
            "info",
            "Queued request",
            extra={"guild_id": guild_id, "request_id": request.id, "thread_id": thread_id},
        )
        return {**_request_summary(request), "queue": scheduler.snapshot().get(guild_id, {})}

    async def _follow_up(
        guild_id: str,
        thread_id: str,
        prompt: str,
        user_id: str = "operator",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Queue a follow-up turn in an existing session thread."""

        text = prompt.strip()
        if not text:
            raise ValueError("Prompt must not be empty")
        repo_record = _thread_repo(guild_id, thread_id)
        channel.record_user(thread_id, text)
        request = store.create_request(
            guild_id=guild_id,
            repo_id=repo_record.id,
            thread_id=thread_id,
            user_id=user_id,
            prompt=text,
        )
        _submit(request, repo_record, follow_up=True)
        _emit_log(
            context,
            "info",
            "Queued follow-up",
            extra={"guild_id": guild_id, "request_id": request.id, "thread_id": thread_id},
        )
        return {**_request_summary(request), "queue": scheduler.snapshot().get(guild_id, {})}

    def _request_status(request_id: int, context: Context | None = None) -> dict[str, Any]:
        """Fetch the latest status for a request."""

        record = store.get_request(request_id)
        _emit_log(context, "debug", "Request status", extra={"request_id": request_id, "status": record.status.value})
        return _request_summary(record)

    def _thread_messages(thread_id: str, context: Context | None = None) -> list[dict[str, Any]]:
        """Return everything posted to a session thread, oldest first."""

        return [
            {"author": message.author, "text": message.text, "created_at": message.created_at.isoformat()}
            for message in channel.messages(thread_id)
        ]

    async def _close_session(guild_id: str, thread_id: str, context: Context | None = None) -> dict[str, Any]:
        """Remove the worktree kept for a session thread."""

        repo_record = _thread_repo(guild_id, thread_id)
        removed = await orchestrator.close_session(guild_id, thread_id, repo_record.identity)
        _emit_log(
            context,
            "info" if removed else "warning",
            "Close session",
            extra={"guild_id": guild_id, "thread_id": thread_id, "removed": removed},
        )
        return {"thread_id": thread_id, "removed": removed}

    def _set_guild_model(
        guild_id: str,
        provider: str,
        model: str | None = None,
        user_id: str = "operator",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Choose the agent provider and model a guild's requests run with."""

        config = store.set_guild_model_config(
            GuildModelConfig(guild_id=guild_id, provider=provider, model=model, updated_by_user_id=user_id)
        )
        enabled = settings.enabled_providers.get(config.provider, False)
        _emit_log(
            context,
            "info",
            "Guild model updated",
            extra={"guild_id": guild_id, "provider": config.provider, "model": config.model},
        )
        return {**config.model_dump(), "provider_enabled": enabled}

    tool_connect = server.tool(
        name="connect_repo",
        description="Link a GitHub repository (owner/name or URL) to a guild.",
    )(_connect_repo)

    tool_list = server.tool(
        name="list_repos",
        description="List repositories connected to a guild.",
    )(_list_repos)

    tool_ask = server.tool(
        name="ask",
        description=(
            "Open a new session thread for a connected repo and queue the prompt for the "
            "guild's coding agent. Returns the request id and thread id."
        ),
    )(_ask)

    tool_follow_up = server.tool(
        name="follow_up",
        description="Queue a follow-up prompt in an existing session thread, reusing its worktree.",
    )(_follow_up)

    tool_status = server.tool(
        name="request_status",
        description="Fetch the status and worktree path of a request.",
    )(_request_status)

    tool_messages = server.tool(
        name="thread_messages",
        description="Read progress and result messages posted to a session thread.",
    )(_thread_messages)

    tool_close = server.tool(
        name="close_session",
        description="Remove the worktree kept for a session thread.",
    )(_close_session)

    tool_model = server.tool(
        name="set_guild_model",
        description="Set the agent provider (claude, codex, gemini) and optional model for a guild.",
    )(_set_guild_model)

    return ToolHandles(
        connect_repo=tool_connect,
        list_repos=tool_list,
        ask=tool_ask,
        follow_up=tool_follow_up,
        request_status=tool_status,
        thread_messages=tool_messages,
        close_session=tool_close,
        set_guild_model=tool_model,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
