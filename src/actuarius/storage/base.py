"""Storage collaborator contract."""

from __future__ import annotations

from typing import Protocol

from ..guild_models import GuildModelConfig
from ..workspace import RepoIdentity
from .models import RepoRecord, RequestRecord, RequestStatus


class RecordNotFoundError(LookupError):
    """Raised when a repo or request id is unknown to the store."""


class DuplicateRecordError(ValueError):
    """Raised when a repo is linked twice to the same guild."""


class RequestStore(Protocol):
    """Repo, request and guild model records consumed by the orchestrator."""

    def create_repo(
        self,
        *,
        guild_id: str,
        identity: RepoIdentity,
        channel_id: str,
        linked_by_user_id: str,
    ) -> RepoRecord:
        ...

    def get_repo(self, guild_id: str, full_name: str) -> RepoRecord | None:
        ...

    def get_repo_by_id(self, repo_id: int) -> RepoRecord:
        ...

    def list_repos(self, guild_id: str) -> list[RepoRecord]:
        ...

    def create_request(
        self,
        *,
        guild_id: str,
        repo_id: int,
        thread_id: str,
        user_id: str,
        prompt: str,
        status: RequestStatus = RequestStatus.QUEUED,
    ) -> RequestRecord:
        ...

    def get_request(self, request_id: int) -> RequestRecord:
        ...

    def list_requests(self, guild_id: str | None = None) -> list[RequestRecord]:
        ...

    def update_request_status(self, request_id: int, status: RequestStatus) -> None:
        ...

    def update_request_worktree_path(self, request_id: int, worktree_path: str | None) -> None:
        ...

    def get_worktree_for_thread(self, thread_id: str) -> str | None:
        """Most recent non-empty worktree path recorded for the thread."""
        ...

    def get_guild_model_config(self, guild_id: str) -> GuildModelConfig | None:
        ...

    def set_guild_model_config(self, config: GuildModelConfig) -> GuildModelConfig:
        ...


__all__ = ["DuplicateRecordError", "RecordNotFoundError", "RequestStore"]
