"""Sequencing for one accepted request: sync, worktree, agent run, report."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Literal, Mapping, Protocol

from .agents import AgentExecutionError, AgentExecutor, UnknownProviderError
from .storage import RequestStatus, RequestStore
from .workspace import (
    GitWorkspace,
    GitWorkspaceError,
    KeyedLock,
    RepoIdentity,
    WorktreeError,
    WorktreeManager,
)

logger = logging.getLogger(__name__)

HISTORY_HEADER = (
    "This is an ongoing code assistance session. The conversation history is below.",
    "Respond to the final [User] message.",
)


class WorktreeCleanupPolicy(str, Enum):
    """When request worktrees are removed.

    ``per_request`` removes the worktree as soon as its request finishes, so
    every request starts from a fresh checkout. ``per_session`` keeps it for
    follow-up turns in the same thread until the session is closed.
    """

    PER_REQUEST = "per_request"
    PER_SESSION = "per_session"


class Stage(str, Enum):
    INIT = "init"
    SYNC_REPO = "sync-repo"
    CREATE_WORKTREE = "create-worktree"
    RUN_AGENT = "run-agent"
    REPORT = "report"


@dataclass(slots=True, frozen=True)
class HistoryTurn:
    role: Literal["user", "assistant"]
    text: str


class ThreadChannel(Protocol):
    """Presentation collaborator: where progress and results are posted."""

    async def send(self, thread_id: str, text: str) -> None:
        ...

    async def history(self, thread_id: str, limit: int) -> list[HistoryTurn]:
        ...


@dataclass(slots=True, frozen=True)
class RequestJob:
    request_id: int
    guild_id: str
    thread_id: str
    repo: RepoIdentity
    prompt: str
    follow_up: bool = False


def compose_prompt_with_history(history: Iterable[HistoryTurn], prompt: str, limit: int) -> str:
    """Prefix ``prompt`` with the most recent ``limit`` turns of the conversation.

    Channels that already list the new message as the final user turn do not
    get it repeated.
    """

    turns = list(history)
    if turns and turns[-1] == HistoryTurn(role="user", text=prompt.strip()):
        turns.pop()
    turns = turns[-limit:] if limit > 0 else []
    if not turns:
        return prompt

    lines = [*HISTORY_HEADER, ""]
    for turn in [*turns, HistoryTurn(role="user", text=prompt.strip())]:
        lines.append(f"[{'User' if turn.role == 'user' else 'Assistant'}]: {turn.text}")
        lines.append("")
    return "\n".join(lines).strip()


def describe_failure(stage: Stage, error: BaseException) -> str:
    """Plain-language message for the requester; never a traceback."""

    if isinstance(error, (AgentExecutionError, UnknownProviderError)):
        return str(error)
    if isinstance(error, WorktreeError):
        return f"Worktree operation failed: {error}"
    if isinstance(error, GitWorkspaceError):
        return f"Repository sync failed: {error}"
    return f"Unexpected error during {stage.value}: {error}"


class _StatusTracker:
    """Write terminal statuses at most once."""

    def __init__(self, store: RequestStore, request_id: int) -> None:
        self._store = store
        self._request_id = request_id
        self.current: RequestStatus | None = None

    @property
    def finalized(self) -> bool:
        return self.current is not None and self.current.terminal

    def mark(self, status: RequestStatus) -> bool:
        if self.finalized:
            return False
        self._store.update_request_status(self._request_id, status)
        self.current = status
        return True


class RequestOrchestrator:
    """Run accepted requests end to end and report the outcome to the thread."""

    def __init__(
        self,
        *,
        store: RequestStore,
        channel: ThreadChannel,
        workspace: GitWorkspace,
        worktrees: WorktreeManager,
        adapters: Mapping[str, AgentExecutor],
        execution_timeout: float,
        cleanup_policy: WorktreeCleanupPolicy = WorktreeCleanupPolicy.PER_SESSION,
        default_provider: str = "claude",
        history_turn_limit: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._channel = channel
        self._workspace = workspace
        self._worktrees = worktrees
        self._adapters = dict(adapters)
        self._execution_timeout = execution_timeout
        self._cleanup_policy = WorktreeCleanupPolicy(cleanup_policy)
        self._default_provider = default_provider
        self._history_turn_limit = history_turn_limit
        self._clock = clock
        self._sessions = KeyedLock()

    @property
    def cleanup_policy(self) -> WorktreeCleanupPolicy:
        return self._cleanup_policy

    def select_adapter(self, guild_id: str) -> tuple[AgentExecutor, str | None]:
        config = self._store.get_guild_model_config(guild_id)
        provider = config.provider if config else self._default_provider
        model = config.model if config else None
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnknownProviderError(f"No adapter registered for provider '{provider}'")
        return adapter, model

    async def run(self, job: RequestJob) -> RequestStatus | None:
        """Execute ``job``; every failure ends as one ``failed`` status and one message."""

        started_at = self._clock()
        status = _StatusTracker(self._store, job.request_id)
        stage = Stage.INIT
        label = "Agent"
        created_path: Path | None = None
        context = {"request_id": job.request_id, "guild_id": job.guild_id, "repo": job.repo.full_name}

        try:
            status.mark(RequestStatus.RUNNING)
            logger.info("Queued request started", extra=context)

            adapter, model = self.select_adapter(job.guild_id)
            label = adapter.display_name
            await self._post(job.thread_id, f"{label} execution started.")

            if self._cleanup_policy is WorktreeCleanupPolicy.PER_SESSION:
                # Turns of one thread queued before its worktree exists must still share it.
                async with self._sessions.hold(job.thread_id):
                    existing = self._store.get_worktree_for_thread(job.thread_id)
                    if existing:
                        worktree_path = Path(existing)
                        logger.info("Reusing session worktree", extra={**context, "path": existing})
                    else:
                        stage = Stage.SYNC_REPO
                        await self._workspace.ensure_checkout(job.repo)
                        stage = Stage.CREATE_WORKTREE
                        worktree_path = (await self._worktrees.create(job.repo, job.request_id)).path
                    self._store.update_request_worktree_path(job.request_id, str(worktree_path))
            else:
                stage = Stage.SYNC_REPO
                await self._workspace.ensure_checkout(job.repo)
                stage = Stage.CREATE_WORKTREE
                handle = await self._worktrees.create(job.repo, job.request_id)
                worktree_path = created_path = handle.path
                self._store.update_request_worktree_path(job.request_id, str(worktree_path))

            stage = Stage.RUN_AGENT
            prompt = job.prompt
            if job.follow_up:
                history = await self._channel.history(job.thread_id, self._history_turn_limit + 1)
                prompt = compose_prompt_with_history(history, job.prompt, self._history_turn_limit)

            logger.info(
                "Starting agent execution",
                extra={**context, "provider": adapter.name, "timeout": self._execution_timeout, "prompt_length": len(prompt)},
            )
            result = await adapter.run(prompt, worktree_path, self._execution_timeout, model)

            status.mark(RequestStatus.SUCCEEDED)
            stage = Stage.REPORT
            logger.info(
                "Queued request succeeded",
                extra={**context, "output_length": len(result.text), "duration": self._clock() - started_at},
            )
            await self._post(job.thread_id, f"**{label} execution completed**\n\n```text\n{result.text}\n```")
        except asyncio.CancelledError:
            status.mark(RequestStatus.FAILED)
            raise
        except Exception as exc:
            status.mark(RequestStatus.FAILED)
            logger.error(
                "Queued request failed",
                exc_info=True,
                extra={**context, "stage": stage.value, "duration": self._clock() - started_at},
            )
            await self._post(job.thread_id, f"**{label} execution failed**\n\n{describe_failure(stage, exc)}")
        finally:
            if created_path is not None and self._cleanup_policy is WorktreeCleanupPolicy.PER_REQUEST:
                if await self._cleanup(job.repo, job.thread_id, created_path):
                    self._forget_worktree(job.request_id)

        return status.current

    async def close_session(self, guild_id: str, thread_id: str, repo: RepoIdentity) -> bool:
        """Remove every worktree recorded for ``thread_id``. Returns ``False`` when nothing was removed."""

        async with self._sessions.hold(thread_id):
            records = [
                record
                for record in self._store.list_requests(guild_id)
                if record.thread_id == thread_id and record.worktree_path
            ]
            removed = False
            for path in dict.fromkeys(record.worktree_path for record in records):
                if not await self._cleanup(repo, thread_id, Path(path)):
                    continue
                removed = True
                for record in records:
                    if record.worktree_path == path:
                        self._forget_worktree(record.id)
            return removed

    async def _cleanup(self, repo: RepoIdentity, thread_id: str, path: Path) -> bool:
        # Cleanup never changes the request's terminal status.
        try:
            await self._worktrees.cleanup(repo, path)
        except Exception as exc:
            logger.warning(
                "Worktree cleanup failed",
                exc_info=True,
                extra={"repo": repo.full_name, "thread_id": thread_id, "path": str(path)},
            )
            await self._post(thread_id, f"Warning: worktree cleanup failed: {exc}")
            return False
        return True

    def _forget_worktree(self, request_id: int) -> None:
        self._store.update_request_worktree_path(request_id, None)

    async def _post(self, thread_id: str, text: str) -> None:
        try:
            await self._channel.send(thread_id, text)
        except Exception:
            logger.warning("Could not post to thread", exc_info=True, extra={"thread_id": thread_id})


__all__ = [
    "HistoryTurn",
    "RequestJob",
    "RequestOrchestrator",
    "Stage",
    "ThreadChannel",
    "WorktreeCleanupPolicy",
    "compose_prompt_with_history",
    "describe_failure",
]
