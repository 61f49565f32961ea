"""Actuarius diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from actuarius.config import ActuariusSettings
from actuarius.storage import ChromaRequestStore, ChromaUnavailableError, RequestRecord


def load_store(settings: ActuariusSettings) -> ChromaRequestStore:
    try:
        store = ChromaRequestStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def _record_payload(record: RequestRecord) -> dict:
    return {
        "request_id": record.id,
        "guild_id": record.guild_id,
        "repo_id": record.repo_id,
        "thread_id": record.thread_id,
        "user_id": record.user_id,
        "status": record.status.value,
        "worktree_path": record.worktree_path,
        "created_at": record.created_at.isoformat(),
    }


def cmd_requests(args: argparse.Namespace) -> None:
    settings = ActuariusSettings()
    store = load_store(settings)
    records = store.list_requests(args.guild_id)
    if args.json:
        print(json.dumps([_record_payload(record) for record in records], indent=2))
    else:
        for record in records:
            print(f"{record.id} [{record.status.value}] {record.guild_id} {record.thread_id}")


def cmd_worktrees(args: argparse.Namespace) -> None:
    settings = ActuariusSettings()
    store = load_store(settings)
    records = [
        record
        for record in store.list_requests()
        if record.worktree_path and (args.thread_id is None or record.thread_id == args.thread_id)
    ]
    payload = [
        {"request_id": record.id, "thread_id": record.thread_id, "path": record.worktree_path}
        for record in records
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = ActuariusSettings()
    store = load_store(settings)
    records = store.list_requests()

    status_counts: dict[str, int] = {}
    guild_counts: dict[str, int] = {}
    for record in records:
        status_counts[record.status.value] = status_counts.get(record.status.value, 0) + 1
        guild_counts[record.guild_id] = guild_counts.get(record.guild_id, 0) + 1

    metrics = {
        "requests_total": len(records),
        "status_counts": status_counts,
        "requests_by_guild": guild_counts,
        "active_worktrees": sum(1 for record in records if record.worktree_path),
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Actuarius diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_requests = sub.add_parser("requests", help="List request records")
    p_requests.add_argument("--guild-id")
    p_requests.add_argument("--json", action="store_true", help="Output JSON")
    p_requests.set_defaults(func=cmd_requests)

    p_worktrees = sub.add_parser("worktrees", help="List requests that still hold a worktree")
    p_worktrees.add_argument("--thread-id")
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_metrics = sub.add_parser("metrics", help="Show request counts by status and guild")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
