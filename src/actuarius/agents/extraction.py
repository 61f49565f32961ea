"""Unwrap agent CLI output into plain text."""

from __future__ import annotations

import json
from typing import Any

DIRECT_RESULT_KEYS = ("result", "output", "text")


def extract_text(payload: Any) -> str | None:
    """Pull the answer text out of a structured agent result.

    A direct string under one of ``DIRECT_RESULT_KEYS`` wins. Otherwise the
    ``text`` fields of a ``content`` block list are joined with newlines in
    order. Anything else yields ``None``.
    """

    if not isinstance(payload, dict):
        return None

    direct = next(
        (payload[key] for key in DIRECT_RESULT_KEYS if isinstance(payload.get(key), str)),
        None,
    )
    if direct is not None and direct.strip():
        return direct.strip()

    content = payload.get("content")
    if isinstance(content, list):
        lines = [
            item["text"].strip()
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip()
        ]
        return "\n".join(lines).strip() or None

    return None


def parse_json_output(stdout: str) -> str | None:
    """Decode JSON output; fall back to the trimmed raw text when it is not JSON."""

    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError:
        return stdout.strip() or None
    return extract_text(payload)


def parse_plain_output(stdout: str) -> str | None:
    return stdout.strip() or None


__all__ = ["DIRECT_RESULT_KEYS", "extract_text", "parse_json_output", "parse_plain_output"]
