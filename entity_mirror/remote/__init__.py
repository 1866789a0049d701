"""Remote service interface and bundled implementations."""

from .base import CreateResult, FetchResult, FieldDiff, RemoteService, UpdateResult
from .local import LocalFileRemoteService
from .memory import InMemoryRemoteService, StoredRecord

__all__ = [
    "CreateResult",
    "FetchResult",
    "FieldDiff",
    "InMemoryRemoteService",
    "LocalFileRemoteService",
    "RemoteService",
    "StoredRecord",
    "UpdateResult",
]
