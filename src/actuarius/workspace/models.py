"""Repository and worktree identity models."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

_REFERENCE_PATTERN = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)$")
_PATH_PART_PATTERN = re.compile(r"[^a-z0-9._-]")


def sanitize_path_part(value: str) -> str:
    """Lowercase ``value`` and replace anything outside ``[a-z0-9._-]`` with ``_``."""

    return _PATH_PART_PATTERN.sub("_", value.strip().lower())


def _clean_token(value: str) -> str:
    token = value.strip()
    if token.endswith(".git"):
        token = token[:-4]
    return token.rstrip("/")


class RepoIdentity(BaseModel):
    """Owner/name pair identifying one remote repository."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., description="Repository owner (user or organisation).")
    repo: str = Field(..., description="Repository name.")

    @field_validator("owner", "repo")
    @classmethod
    def _strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Repository owner and name must not be empty")
        return normalized

    @property
    def full_name(self) -> str:
        """Case-normalized ``owner/repo`` key used for lookups and locks."""

        return f"{self.owner}/{self.repo}".lower()

    @classmethod
    def parse(cls, reference: str) -> "RepoIdentity | None":
        """Parse ``owner/repo`` or a github.com URL; return ``None`` when unrecognized."""

        token = _clean_token(reference)
        if not token:
            return None

        if token.startswith(("https://", "http://")):
            parsed = urlparse(token)
            if parsed.hostname != "github.com":
                return None
            parts = [part for part in parsed.path.split("/") if part]
            if len(parts) < 2:
                return None
            repo = _clean_token(parts[1])
            if not repo:
                return None
            return cls(owner=parts[0], repo=repo)

        match = _REFERENCE_PATTERN.match(token)
        if match is None:
            return None
        return cls(owner=match.group(1), repo=match.group(2))

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(slots=True, frozen=True)
class WorktreeHandle:
    """A request worktree created from the canonical checkout."""

    path: Path
    branch_name: str


__all__ = ["RepoIdentity", "WorktreeHandle", "sanitize_path_part"]
