"""Storage abstractions for request tracking."""

from .base import DuplicateRecordError, RecordNotFoundError, RequestStore
from .chroma import ChromaEvent, ChromaRequestStore, ChromaUnavailableError
from .memory import InMemoryRequestStore
from .models import RepoRecord, RequestRecord, RequestStatus

__all__ = [
    "ChromaEvent",
    "ChromaRequestStore",
    "ChromaUnavailableError",
    "DuplicateRecordError",
    "InMemoryRequestStore",
    "RecordNotFoundError",
    "RepoRecord",
    "RequestRecord",
    "RequestStatus",
    "RequestStore",
]
