"""Utility helpers for the process runner."""

from __future__ import annotations

import os
from typing import Iterable, Mapping

# Interpreter settings of the server itself must not leak into agent CLIs.
DEFAULT_STRIPPED_VARS = frozenset(
    {
        "PYTHONHOME",
        "PYTHONPATH",
        "VIRTUAL_ENV",
        "PIP_RESPECT_VIRTUALENV",
    }
)


def sanitize_environment(
    additional: Mapping[str, str] | None = None,
    *,
    strip: Iterable[str] = DEFAULT_STRIPPED_VARS,
) -> dict[str, str]:
    """Copy ``os.environ`` without the ``strip`` names, then apply ``additional``."""

    stripped = frozenset(strip)
    env = {key: value for key, value in os.environ.items() if key not in stripped}
    if additional:
        env.update(additional)
    return env


def clip_output(value: str, limit: int = 500) -> str:
    """Trim captured output for log records."""

    text = value.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"
