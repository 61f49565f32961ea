"""In-process presentation channel for request threads."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal

from .orchestrator import HistoryTurn

_COMPLETED_BLOCK = re.compile(r"^\*\*\w+ execution completed\*\*\n\n```text\n(.*?)\n```", re.DOTALL)
_COMPLETED_PLAIN = re.compile(r"^\*\*\w+ execution completed\*\*\n\n(.+)", re.DOTALL)
_TOKEN_INVALID = re.compile(r"[^a-z0-9-]")
_DASH_RUN = re.compile(r"-+")


@dataclass(slots=True, frozen=True)
class ThreadMessage:
    author: Literal["user", "bot"]
    text: str
    created_at: datetime


def _sanitize_token(raw: str) -> str:
    token = _DASH_RUN.sub("-", _TOKEN_INVALID.sub("-", raw.lower())).strip("-")
    return token or "x"


def build_thread_name(prompt: str, *, now: datetime | None = None) -> str:
    """``ask-<prompt token>-<timestamp>``, clipped to 100 characters."""

    token = _sanitize_token(prompt)[:64]
    stamp = (now or datetime.now(timezone.utc)).isoformat(timespec="milliseconds")
    stamp = re.sub(r"[:.+]", "-", stamp)
    return f"ask-{token}-{stamp}"[:100]


def parse_history_turn(message: ThreadMessage) -> HistoryTurn | None:
    """Map a posted message to a conversation turn; progress notices are skipped."""

    if message.author == "user":
        text = message.text.strip()
        return HistoryTurn(role="user", text=text) if text else None

    for pattern in (_COMPLETED_BLOCK, _COMPLETED_PLAIN):
        match = pattern.match(message.text)
        if match and match.group(1).strip():
            return HistoryTurn(role="assistant", text=match.group(1).strip())
    return None


class InMemoryThreadChannel:
    """Keeps every thread's messages in memory for the tool surface to read back."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._threads: dict[str, list[ThreadMessage]] = defaultdict(list)

    def record_user(self, thread_id: str, text: str) -> None:
        self._threads[thread_id].append(ThreadMessage(author="user", text=text, created_at=self._clock()))

    async def send(self, thread_id: str, text: str) -> None:
        self._threads[thread_id].append(ThreadMessage(author="bot", text=text, created_at=self._clock()))

    async def history(self, thread_id: str, limit: int) -> list[HistoryTurn]:
        turns = [turn for turn in map(parse_history_turn, self._threads.get(thread_id, [])) if turn]
        return turns[-limit:] if limit > 0 else []

    def messages(self, thread_id: str) -> list[ThreadMessage]:
        return list(self._threads.get(thread_id, []))

    def threads(self) -> list[str]:
        return list(self._threads)


__all__ = [
    "InMemoryThreadChannel",
    "ThreadMessage",
    "build_thread_name",
    "parse_history_turn",
]
