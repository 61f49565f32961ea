"""Chroma-based persistence layer.

Records are stored as an append-only event log in one collection and
replayed on read, so every status change stays visible to diagnostics.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..guild_models import GuildModelConfig
from ..workspace import RepoIdentity
from .base import DuplicateRecordError, RecordNotFoundError
from .models import RepoRecord, RequestRecord, RequestStatus


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used here."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used here."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _clean_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma rejects None metadata values.
    return {key: value for key, value in metadata.items() if value is not None}


class ChromaRequestStore:
    """``RequestStore`` persisted as events in a ChromaDB collection."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "actuarius_requests",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._sequence: int | None = None
        self._ids: dict[str, int] = {}

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install actuarius with the persistence extra"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _next_sequence(self) -> int:
        if self._sequence is None:
            existing = self._ensure_collection().get()
            self._sequence = max(
                (int(meta.get("sequence", 0)) for meta in existing.get("metadatas", []) or []),
                default=0,
            )
        self._sequence += 1
        return self._sequence

    def _next_id(self, event_type: str, key: str) -> int:
        if key not in self._ids:
            events = self.search_events(filters={"event_type": event_type})
            self._ids[key] = max((int(event.metadata.get(key, 0)) for event in events), default=0)
        self._ids[key] += 1
        return self._ids[key]

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: event.metadata.get("sequence", 0))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        event_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata = {
            "stream": stream,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": self._next_sequence(),
        }
        if metadata:
            record_metadata.update(_clean_metadata(metadata))

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return ChromaEvent(
            id=event_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    # Repos

    def create_repo(
        self,
        *,
        guild_id: str,
        identity: RepoIdentity,
        channel_id: str,
        linked_by_user_id: str,
    ) -> RepoRecord:
        if self.get_repo(guild_id, identity.full_name) is not None:
            raise DuplicateRecordError(f"{identity.full_name} is already linked to guild {guild_id}")

        repo_id = self._next_id("repo_linked", "repo_id")
        event = self.record_event(
            stream=f"repo::{repo_id}",
            event_type="repo_linked",
            body={
                "repo_id": repo_id,
                "guild_id": guild_id,
                "owner": identity.owner,
                "repo": identity.repo,
                "channel_id": channel_id,
                "linked_by_user_id": linked_by_user_id,
            },
            metadata={"repo_id": repo_id, "guild_id": guild_id, "full_name": identity.full_name},
        )
        return self._repo_from_event(event)

    def get_repo(self, guild_id: str, full_name: str) -> RepoRecord | None:
        needle = full_name.strip().lower()
        for repo in self.list_repos(guild_id):
            if repo.full_name == needle:
                return repo
        return None

    def get_repo_by_id(self, repo_id: int) -> RepoRecord:
        events = self.search_events(filters={"repo_id": repo_id})
        for event in events:
            if event.event_type == "repo_linked":
                return self._repo_from_event(event)
        raise RecordNotFoundError(f"Repo {repo_id} not found")

    def list_repos(self, guild_id: str) -> list[RepoRecord]:
        events = self.search_events(filters={"guild_id": guild_id})
        return [self._repo_from_event(event) for event in events if event.event_type == "repo_linked"]

    @staticmethod
    def _repo_from_event(event: ChromaEvent) -> RepoRecord:
        doc = json.loads(event.document)
        identity = RepoIdentity(owner=doc["owner"], repo=doc["repo"])
        return RepoRecord(
            id=int(doc["repo_id"]),
            guild_id=doc["guild_id"],
            owner=identity.owner,
            repo=identity.repo,
            full_name=identity.full_name,
            channel_id=doc["channel_id"],
            linked_by_user_id=doc["linked_by_user_id"],
            created_at=event.timestamp,
        )

    # Requests

    def create_request(
        self,
        *,
        guild_id: str,
        repo_id: int,
        thread_id: str,
        user_id: str,
        prompt: str,
        status: RequestStatus = RequestStatus.QUEUED,
    ) -> RequestRecord:
        self.get_repo_by_id(repo_id)
        request_id = self._next_id("request_created", "request_id")
        status = RequestStatus(status)
        self.record_event(
            stream=f"request::{request_id}",
            event_type="request_created",
            body={
                "request_id": request_id,
                "guild_id": guild_id,
                "repo_id": repo_id,
                "thread_id": thread_id,
                "user_id": user_id,
                "prompt": prompt,
                "status": status.value,
            },
            metadata={
                "request_id": request_id,
                "guild_id": guild_id,
                "thread_id": thread_id,
                "status": status.value,
            },
        )
        return self.get_request(request_id)

    def get_request(self, request_id: int) -> RequestRecord:
        history = self.search_events(filters={"request_id": request_id})
        record = self._replay_request(history)
        if record is None:
            raise RecordNotFoundError(f"Request {request_id} not found")
        return record

    def list_requests(self, guild_id: str | None = None) -> list[RequestRecord]:
        created = self.search_events(filters={"event_type": "request_created"})
        records = [
            self.get_request(int(event.metadata["request_id"]))
            for event in created
            if guild_id is None or event.metadata.get("guild_id") == guild_id
        ]
        return sorted(records, key=lambda record: record.id)

    def update_request_status(self, request_id: int, status: RequestStatus) -> None:
        request = self.get_request(request_id)
        status = RequestStatus(status)
        self.record_event(
            stream=f"request::{request_id}",
            event_type="request_status",
            body={"request_id": request_id, "status": status.value},
            metadata={"request_id": request_id, "thread_id": request.thread_id, "status": status.value},
        )

    def update_request_worktree_path(self, request_id: int, worktree_path: str | None) -> None:
        request = self.get_request(request_id)
        self.record_event(
            stream=f"request::{request_id}",
            event_type="request_worktree",
            body={"request_id": request_id, "worktree_path": worktree_path},
            metadata={
                "request_id": request_id,
                "thread_id": request.thread_id,
                "worktree_path": worktree_path,
            },
        )

    def get_worktree_for_thread(self, thread_id: str) -> str | None:
        events = self.search_events(filters={"thread_id": thread_id})
        latest: dict[int, str | None] = {}
        for event in events:
            if event.event_type == "request_worktree":
                latest[int(event.metadata["request_id"])] = json.loads(event.document).get("worktree_path")
        for request_id in sorted(latest, reverse=True):
            if latest[request_id]:
                return latest[request_id]
        return None

    @staticmethod
    def _replay_request(history: list[ChromaEvent]) -> RequestRecord | None:
        record: RequestRecord | None = None
        for event in history:
            doc = json.loads(event.document)
            if event.event_type == "request_created":
                record = RequestRecord(
                    id=int(doc["request_id"]),
                    guild_id=doc["guild_id"],
                    repo_id=int(doc["repo_id"]),
                    thread_id=doc["thread_id"],
                    user_id=doc["user_id"],
                    prompt=doc["prompt"],
                    status=RequestStatus(doc["status"]),
                    created_at=event.timestamp,
                )
            elif record is None:
                continue
            elif event.event_type == "request_status":
                record.status = RequestStatus(doc["status"])
            elif event.event_type == "request_worktree":
                record.worktree_path = doc.get("worktree_path")
        return record

    # Guild model configuration

    def get_guild_model_config(self, guild_id: str) -> GuildModelConfig | None:
        events = self.search_events(filters={"guild_id": guild_id})
        configs = [event for event in events if event.event_type == "guild_model_config"]
        if not configs:
            return None
        return GuildModelConfig.model_validate_json(configs[-1].document)

    def set_guild_model_config(self, config: GuildModelConfig) -> GuildModelConfig:
        self.record_event(
            stream=f"guild::{config.guild_id}",
            event_type="guild_model_config",
            body=config.model_dump_json(),
            metadata={"guild_id": config.guild_id, "provider": config.provider},
        )
        return config


__all__ = ["ChromaEvent", "ChromaRequestStore", "ChromaUnavailableError"]
