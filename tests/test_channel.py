from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from actuarius.channel import InMemoryThreadChannel, ThreadMessage, build_thread_name, parse_history_turn
from actuarius.orchestrator import HistoryTurn

STAMP = datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)


def test_thread_name_is_sanitized_and_stamped() -> None:
    name = build_thread_name("Fix the Login bug!", now=STAMP)

    assert name == "ask-fix-the-login-bug-2025-01-02T03-04-05-678-00-00"


def test_thread_name_is_clipped() -> None:
    name = build_thread_name("word " * 60, now=STAMP)

    assert len(name) <= 100
    assert name.startswith("ask-word-word")


def test_thread_name_with_no_usable_characters() -> None:
    assert build_thread_name("???", now=STAMP).startswith("ask-x-2025")


def _bot(text: str) -> ThreadMessage:
    return ThreadMessage(author="bot", text=text, created_at=STAMP)


def test_history_skips_progress_notices() -> None:
    assert parse_history_turn(_bot("Claude execution started.")) is None
    assert parse_history_turn(_bot("**Claude execution failed**\n\nboom")) is None
    assert parse_history_turn(_bot("**Codex execution completed**\n\n```text\nall good\n```")) == HistoryTurn(
        role="assistant", text="all good"
    )
    assert parse_history_turn(ThreadMessage(author="user", text=" hi ", created_at=STAMP)) == HistoryTurn(
        role="user", text="hi"
    )


def test_channel_history_is_bounded() -> None:
    channel = InMemoryThreadChannel(clock=lambda: STAMP)

    async def scenario():
        for index in range(3):
            channel.record_user("t1", f"question {index}")
            await channel.send("t1", "Claude execution started.")
            await channel.send("t1", f"**Claude execution completed**\n\n```text\nanswer {index}\n```")
        return await channel.history("t1", 2), await channel.history("t1", 0)

    recent, none = asyncio.run(scenario())

    assert recent == [
        HistoryTurn(role="user", text="question 2"),
        HistoryTurn(role="assistant", text="answer 2"),
    ]
    assert none == []
    assert len(channel.messages("t1")) == 9
    assert channel.threads() == ["t1"]
    assert channel.messages("unknown") == []
