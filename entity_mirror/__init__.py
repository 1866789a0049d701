"""
Entity Mirror

Local mirrors of records held by a schemaless remote data store.

Provides:
- Entities with per-field dirty tracking and pending removals
- References between entities that may not be saved yet
- Save, delete and refresh against a pluggable remote service
- Dependency-ordered batch saves
- Awaitable, blocking and background (callback) calling conventions

Usage:

    >>> from entity_mirror import InMemoryRemoteService, MirrorClient
    >>> with MirrorClient(InMemoryRemoteService()) as client:
    ...     author = client.entity("Author", {"name": "Ada"})
    ...     note = client.entity("Note", {"title": "Hi", "author": author})
    ...     client.save_all([note, author]).raise_for_error()
    ...
    ...     # Background save with completion callback
    ...     note["body"] = "World"
    ...     client.save_in_background(note, lambda result, error: print(result, error))

Remote services:

    # In-memory, for tests and offline use
    from entity_mirror.remote import InMemoryRemoteService

    # JSON files on local disk
    from entity_mirror.remote import LocalFileRemoteService
"""

from .client import MirrorClient, Outcome, create_client
from .config import MirrorConfig
from .entity import (
    ABSENT,
    PUBLIC,
    AccessPolicy,
    Entity,
    Permission,
    Reference,
    ReferenceResolver,
    SyncState,
    ValueStore,
)
from .exceptions import (
    BatchSaveError,
    ConfigurationError,
    CyclicDependencyError,
    InvalidKeyError,
    MirrorError,
    NotPersistedError,
    RecordNotFoundError,
    RemoteError,
    StorageIOError,
    UnresolvedReferenceError,
    UsageAfterDeleteError,
)
from .remote import (
    CreateResult,
    FetchResult,
    FieldDiff,
    InMemoryRemoteService,
    LocalFileRemoteService,
    RemoteService,
    UpdateResult,
)
from .sync import AsyncDispatcher, BatchResult, SyncCoordinator, plan_tiers, save_all

__all__ = [
    # Client
    "MirrorClient",
    "MirrorConfig",
    "Outcome",
    "create_client",
    # Entities
    "ABSENT",
    "AccessPolicy",
    "Entity",
    "Permission",
    "PUBLIC",
    "Reference",
    "ReferenceResolver",
    "SyncState",
    "ValueStore",
    # Sync
    "AsyncDispatcher",
    "BatchResult",
    "SyncCoordinator",
    "plan_tiers",
    "save_all",
    # Remote services
    "CreateResult",
    "FetchResult",
    "FieldDiff",
    "InMemoryRemoteService",
    "LocalFileRemoteService",
    "RemoteService",
    "UpdateResult",
    # Exceptions
    "MirrorError",
    "InvalidKeyError",
    "UnresolvedReferenceError",
    "NotPersistedError",
    "CyclicDependencyError",
    "RemoteError",
    "UsageAfterDeleteError",
    "BatchSaveError",
    "RecordNotFoundError",
    "StorageIOError",
    "ConfigurationError",
]

__version__ = "0.1.0"
