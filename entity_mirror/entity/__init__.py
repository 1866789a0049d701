"""Local entity model: field storage, references and access policy."""

from .entity import RESERVED_KEYS, Entity, SyncState, validate_key, validate_kind
from .policy import PUBLIC, AccessPolicy, Permission
from .reference import Reference, ReferenceResolver
from .store import ABSENT, StoreSnapshot, ValueStore

__all__ = [
    "ABSENT",
    "AccessPolicy",
    "Entity",
    "Permission",
    "PUBLIC",
    "RESERVED_KEYS",
    "Reference",
    "ReferenceResolver",
    "StoreSnapshot",
    "SyncState",
    "ValueStore",
    "validate_key",
    "validate_kind",
]
