"""Process-local store used by default and in tests."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..guild_models import GuildModelConfig
from ..workspace import RepoIdentity
from .base import DuplicateRecordError, RecordNotFoundError
from .models import RepoRecord, RequestRecord, RequestStatus


class InMemoryRequestStore:
    """Dictionary-backed ``RequestStore``; ids are assigned monotonically from 1."""

    def __init__(
        self,
        *,
        guild_models: Iterable[GuildModelConfig] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._repo_ids = itertools.count(1)
        self._request_ids = itertools.count(1)
        self._repos: dict[int, RepoRecord] = {}
        self._requests: dict[int, RequestRecord] = {}
        self._guild_models: dict[str, GuildModelConfig] = {
            config.guild_id: config for config in guild_models
        }

    def create_repo(
        self,
        *,
        guild_id: str,
        identity: RepoIdentity,
        channel_id: str,
        linked_by_user_id: str,
    ) -> RepoRecord:
        if self.get_repo(guild_id, identity.full_name) is not None:
            raise DuplicateRecordError(f"{identity.full_name} is already linked to guild {guild_id}")

        record = RepoRecord(
            id=next(self._repo_ids),
            guild_id=guild_id,
            owner=identity.owner,
            repo=identity.repo,
            full_name=identity.full_name,
            channel_id=channel_id,
            linked_by_user_id=linked_by_user_id,
            created_at=self._clock(),
        )
        self._repos[record.id] = record
        return replace(record)

    def get_repo(self, guild_id: str, full_name: str) -> RepoRecord | None:
        needle = full_name.strip().lower()
        for record in self._repos.values():
            if record.guild_id == guild_id and record.full_name == needle:
                return replace(record)
        return None

    def get_repo_by_id(self, repo_id: int) -> RepoRecord:
        try:
            return replace(self._repos[repo_id])
        except KeyError as exc:
            raise RecordNotFoundError(f"Repo {repo_id} not found") from exc

    def list_repos(self, guild_id: str) -> list[RepoRecord]:
        records = [record for record in self._repos.values() if record.guild_id == guild_id]
        return [replace(record) for record in sorted(records, key=lambda record: record.id)]

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
        self.get_repo_by_id(repo_id)
        record = RequestRecord(
            id=next(self._request_ids),
            guild_id=guild_id,
            repo_id=repo_id,
            thread_id=thread_id,
            user_id=user_id,
            prompt=prompt,
            status=RequestStatus(status),
            created_at=self._clock(),
        )
        self._requests[record.id] = record
        return replace(record)

    def get_request(self, request_id: int) -> RequestRecord:
        return replace(self._require_request(request_id))

    def list_requests(self, guild_id: str | None = None) -> list[RequestRecord]:
        return [
            replace(record)
            for record in sorted(self._requests.values(), key=lambda record: record.id)
            if guild_id is None or record.guild_id == guild_id
        ]

    def update_request_status(self, request_id: int, status: RequestStatus) -> None:
        self._require_request(request_id).status = RequestStatus(status)

    def update_request_worktree_path(self, request_id: int, worktree_path: str | None) -> None:
        self._require_request(request_id).worktree_path = worktree_path

    def get_worktree_for_thread(self, thread_id: str) -> str | None:
        for record in sorted(self._requests.values(), key=lambda record: record.id, reverse=True):
            if record.thread_id == thread_id and record.worktree_path:
                return record.worktree_path
        return None

    def get_guild_model_config(self, guild_id: str) -> GuildModelConfig | None:
        return self._guild_models.get(guild_id)

    def set_guild_model_config(self, config: GuildModelConfig) -> GuildModelConfig:
        self._guild_models[config.guild_id] = config
        return config

    def _require_request(self, request_id: int) -> RequestRecord:
        try:
            return self._requests[request_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Request {request_id} not found") from exc


__all__ = ["InMemoryRequestStore"]
