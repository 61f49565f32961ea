"""Data models for persistent tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ..workspace import RepoIdentity


class RequestStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {RequestStatus.SUCCEEDED, RequestStatus.FAILED}


@dataclass(slots=True)
class RepoRecord:
    id: int
    guild_id: str
    owner: str
    repo: str
    full_name: str
    channel_id: str
    linked_by_user_id: str
    created_at: datetime

    @property
    def identity(self) -> RepoIdentity:
        return RepoIdentity(owner=self.owner, repo=self.repo)


@dataclass(slots=True)
class RequestRecord:
    id: int
    guild_id: str
    repo_id: int
    thread_id: str
    user_id: str
    prompt: str
    status: RequestStatus
    created_at: datetime
    worktree_path: str | None = None


__all__ = ["RepoRecord", "RequestRecord", "RequestStatus"]
