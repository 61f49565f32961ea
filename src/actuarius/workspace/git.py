"""Canonical checkout synchronization against the remote default branch."""

from __future__ import annotations

import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Sequence

from ..process import (
    ProcessError,
    ProcessFailedError,
    ProcessResult,
    ProcessRunner,
    ProcessUnavailableError,
)
from .locks import KeyedLock
from .models import RepoIdentity, sanitize_path_part

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_URL_TEMPLATE = "https://github.com/{owner}/{repo}.git"
DEFAULT_GIT_TIMEOUT = 120.0
CANONICAL_BRANCH = "master"
# Order is preference: master wins when both exist.
REMOTE_BRANCH_CANDIDATES = ("master", "main")
# `git ls-remote --exit-code` returns 2 when no ref matched the patterns.
LS_REMOTE_NO_MATCH = 2
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class GitWorkspaceErrorCode(str, Enum):
    GIT_UNAVAILABLE = "GIT_UNAVAILABLE"
    CLONE_FAILED = "CLONE_FAILED"
    MASTER_BRANCH_MISSING = "MASTER_BRANCH_MISSING"
    CHECKOUT_FAILED = "CHECKOUT_FAILED"


class GitWorkspaceError(RuntimeError):
    """Raised when the canonical checkout cannot be brought up to date."""

    def __init__(self, code: GitWorkspaceErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


def build_checkout_path(repos_root: Path | str, owner: str, repo: str) -> Path:
    """Return the deterministic canonical checkout path for ``owner/repo``."""

    return Path(repos_root) / sanitize_path_part(owner) / sanitize_path_part(repo)


def describe_git_failure(exc: ProcessError) -> str:
    """Prefer git's own stderr over the generic exit message."""

    detail = exc.stderr.strip()
    return f"{exc} ({detail})" if detail else str(exc)


def parse_remote_heads(output: str) -> set[str]:
    """Parse ``git ls-remote --heads`` output into bare branch names."""

    heads: set[str] = set()
    for line in output.splitlines():
        _, _, ref = line.partition("\t")
        ref = ref.strip()
        if ref.startswith("refs/heads/"):
            heads.add(ref[len("refs/heads/") :])
    return heads


async def run_git(
    runner: ProcessRunner,
    args: Sequence[str],
    *,
    cwd: Path,
    timeout: float,
) -> ProcessResult:
    """Run a git command with interactive credential prompts disabled."""

    return await runner.run("git", args, cwd=cwd, timeout=timeout, env=_GIT_ENV)


class GitWorkspace:
    """Owns one canonical checkout per repository and keeps it on ``master``."""

    def __init__(
        self,
        repos_root: Path | str,
        *,
        runner: ProcessRunner | None = None,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
        remote_url_template: str = DEFAULT_REMOTE_URL_TEMPLATE,
        locks: KeyedLock | None = None,
    ) -> None:
        self._repos_root = Path(repos_root)
        self._runner = runner or ProcessRunner()
        self._git_timeout = git_timeout
        self._remote_url_template = remote_url_template
        self._locks = locks or KeyedLock()

    @property
    def repos_root(self) -> Path:
        return self._repos_root

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def checkout_path(self, identity: RepoIdentity) -> Path:
        return build_checkout_path(self._repos_root, identity.owner, identity.repo)

    def remote_url(self, identity: RepoIdentity) -> str:
        return self._remote_url_template.format(owner=identity.owner, repo=identity.repo)

    async def ensure_checkout(self, identity: RepoIdentity) -> Path:
        """Clone or refresh the canonical checkout and return its path.

        The whole clone/fetch/checkout sequence runs under the repository's
        lock so concurrent requests never interleave on the same checkout.
        """

        async with self._locks.hold(identity.full_name):
            return await self._synchronize(identity)

    async def _synchronize(self, identity: RepoIdentity) -> Path:
        path = self.checkout_path(identity)
        remote = self.remote_url(identity)
        path.parent.mkdir(parents=True, exist_ok=True)

        if not (path / ".git").exists():
            await self._clone(identity, remote, path)

        await self._git(
            ["remote", "set-url", "origin", remote],
            cwd=path,
            code=GitWorkspaceErrorCode.CHECKOUT_FAILED,
        )
        source = await self._resolve_remote_branch(identity, path)
        await self._git(
            ["fetch", "origin", source, "--prune"],
            cwd=path,
            code=GitWorkspaceErrorCode.CHECKOUT_FAILED,
        )
        await self._git(
            ["checkout", "-B", CANONICAL_BRANCH, f"origin/{source}"],
            cwd=path,
            code=GitWorkspaceErrorCode.CHECKOUT_FAILED,
        )

        logger.info(
            "Canonical checkout synchronized",
            extra={"repo": identity.full_name, "path": str(path), "source_ref": f"origin/{source}"},
        )
        return path

    async def _clone(self, identity: RepoIdentity, remote: str, path: Path) -> None:
        existed = path.exists()
        logger.info("Cloning repository", extra={"repo": identity.full_name, "path": str(path)})
        try:
            await self._git(
                ["clone", remote, str(path)],
                cwd=path.parent,
                code=GitWorkspaceErrorCode.CLONE_FAILED,
            )
        except GitWorkspaceError:
            if not existed and path.exists() and not (path / ".git").exists():
                shutil.rmtree(path, ignore_errors=True)
            raise

    async def _resolve_remote_branch(self, identity: RepoIdentity, path: Path) -> str:
        try:
            result = await run_git(
                self._runner,
                ["ls-remote", "--exit-code", "--heads", "origin", *REMOTE_BRANCH_CANDIDATES],
                cwd=path,
                timeout=self._git_timeout,
            )
        except ProcessUnavailableError as exc:
            raise _git_unavailable() from exc
        except ProcessFailedError as exc:
            if exc.returncode == LS_REMOTE_NO_MATCH:
                raise _branch_missing(identity) from exc
            raise GitWorkspaceError(
                GitWorkspaceErrorCode.CHECKOUT_FAILED, describe_git_failure(exc)
            ) from exc
        except ProcessError as exc:
            raise GitWorkspaceError(
                GitWorkspaceErrorCode.CHECKOUT_FAILED, describe_git_failure(exc)
            ) from exc

        heads = parse_remote_heads(result.stdout)
        for candidate in REMOTE_BRANCH_CANDIDATES:
            if candidate in heads:
                return candidate
        raise _branch_missing(identity)

    async def _git(self, args: Sequence[str], *, cwd: Path, code: GitWorkspaceErrorCode) -> ProcessResult:
        try:
            return await run_git(self._runner, args, cwd=cwd, timeout=self._git_timeout)
        except ProcessUnavailableError as exc:
            raise _git_unavailable() from exc
        except ProcessError as exc:
            raise GitWorkspaceError(code, describe_git_failure(exc)) from exc


def _git_unavailable() -> GitWorkspaceError:
    return GitWorkspaceError(
        GitWorkspaceErrorCode.GIT_UNAVAILABLE,
        "Git is not installed or not available in PATH.",
    )


def _branch_missing(identity: RepoIdentity) -> GitWorkspaceError:
    return GitWorkspaceError(
        GitWorkspaceErrorCode.MASTER_BRANCH_MISSING,
        f"Could not fetch origin/master or origin/main for {identity.full_name}.",
    )


__all__ = [
    "CANONICAL_BRANCH",
    "DEFAULT_REMOTE_URL_TEMPLATE",
    "GitWorkspace",
    "GitWorkspaceError",
    "GitWorkspaceErrorCode",
    "build_checkout_path",
    "describe_git_failure",
    "parse_remote_heads",
    "run_git",
]
