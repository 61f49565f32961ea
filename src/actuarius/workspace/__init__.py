"""Git workspace management: canonical checkouts and request worktrees."""

from .git import (
    GitWorkspace,
    GitWorkspaceError,
    GitWorkspaceErrorCode,
    build_checkout_path,
)
from .locks import KeyedLock
from .models import RepoIdentity, WorktreeHandle, sanitize_path_part
from .worktrees import (
    WorktreeError,
    WorktreeErrorCode,
    WorktreeManager,
    build_worktree_branch_name,
    build_worktree_path,
)

__all__ = [
    "GitWorkspace",
    "GitWorkspaceError",
    "GitWorkspaceErrorCode",
    "KeyedLock",
    "RepoIdentity",
    "WorktreeError",
    "WorktreeErrorCode",
    "WorktreeHandle",
    "WorktreeManager",
    "build_checkout_path",
    "build_worktree_branch_name",
    "build_worktree_path",
    "sanitize_path_part",
]
