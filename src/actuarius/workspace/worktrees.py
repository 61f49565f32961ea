"""Per-request worktrees carved out of the canonical checkout."""

from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from ..process import ProcessError, ProcessRunner, ProcessUnavailableError
from .git import (
    CANONICAL_BRANCH,
    DEFAULT_GIT_TIMEOUT,
    build_checkout_path,
    describe_git_failure,
    run_git,
)
from .locks import KeyedLock
from .models import RepoIdentity, WorktreeHandle, sanitize_path_part

logger = logging.getLogger(__name__)

WORKTREES_DIRNAME = ".worktrees"


class WorktreeErrorCode(str, Enum):
    CREATE_FAILED = "CREATE_FAILED"
    CLEANUP_FAILED = "CLEANUP_FAILED"
    GIT_UNAVAILABLE = "GIT_UNAVAILABLE"


class WorktreeError(RuntimeError):
    """Raised when a request worktree cannot be created or removed."""

    def __init__(self, code: WorktreeErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


def build_worktree_path(repos_root: Path | str, identity: RepoIdentity, request_id: int) -> Path:
    return (
        Path(repos_root)
        / WORKTREES_DIRNAME
        / sanitize_path_part(identity.owner)
        / sanitize_path_part(identity.repo)
        / str(request_id)
    )


def build_worktree_branch_name(request_id: int, *, now: Callable[[], float] = time.time) -> str:
    """Branch names carry a millisecond stamp so retries of one id never collide."""

    return f"ask/{request_id}-{int(now() * 1000)}"


class WorktreeManager:
    """Create and remove request worktrees; never mutates the canonical checkout itself."""

    def __init__(
        self,
        repos_root: Path | str,
        *,
        runner: ProcessRunner | None = None,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
        locks: KeyedLock | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repos_root = Path(repos_root)
        self._runner = runner or ProcessRunner()
        self._git_timeout = git_timeout
        self._locks = locks or KeyedLock()
        self._clock = clock

    def worktree_path(self, identity: RepoIdentity, request_id: int) -> Path:
        return build_worktree_path(self._repos_root, identity, request_id)

    async def create(self, identity: RepoIdentity, request_id: int) -> WorktreeHandle:
        path = self.worktree_path(identity, request_id)
        branch_name = build_worktree_branch_name(request_id, now=self._clock)
        base = build_checkout_path(self._repos_root, identity.owner, identity.repo)

        if not (base / ".git").exists():
            raise WorktreeError(
                WorktreeErrorCode.CREATE_FAILED,
                f"Canonical checkout for {identity.full_name} is missing at {base}.",
            )

        path.parent.mkdir(parents=True, exist_ok=True)
        async with self._locks.hold(identity.full_name):
            await self._git(
                ["worktree", "add", "-B", branch_name, str(path), CANONICAL_BRANCH],
                cwd=base,
                code=WorktreeErrorCode.CREATE_FAILED,
            )

        logger.info(
            "Request worktree created",
            extra={"repo": identity.full_name, "request_id": request_id, "path": str(path), "branch": branch_name},
        )
        return WorktreeHandle(path=path, branch_name=branch_name)

    async def cleanup(self, identity: RepoIdentity, path: Path | str) -> None:
        """Force-remove the worktree and prune stale metadata.

        ``--force`` tolerates whatever uncommitted state the agent left behind.
        """

        base = build_checkout_path(self._repos_root, identity.owner, identity.repo)
        async with self._locks.hold(identity.full_name):
            await self._git(
                ["worktree", "remove", "--force", str(path)],
                cwd=base,
                code=WorktreeErrorCode.CLEANUP_FAILED,
            )
            await self._git(["worktree", "prune"], cwd=base, code=WorktreeErrorCode.CLEANUP_FAILED)

        logger.info("Request worktree removed", extra={"repo": identity.full_name, "path": str(path)})

    async def _git(self, args: Sequence[str], *, cwd: Path, code: WorktreeErrorCode) -> None:
        try:
            await run_git(self._runner, args, cwd=cwd, timeout=self._git_timeout)
        except ProcessUnavailableError as exc:
            raise WorktreeError(
                WorktreeErrorCode.GIT_UNAVAILABLE,
                "Git is not installed or not available in PATH.",
            ) from exc
        except ProcessError as exc:
            raise WorktreeError(code, describe_git_failure(exc)) from exc


__all__ = [
    "WORKTREES_DIRNAME",
    "WorktreeError",
    "WorktreeErrorCode",
    "WorktreeManager",
    "build_worktree_branch_name",
    "build_worktree_path",
]
