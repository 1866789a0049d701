"""
Local mirror of one remote record.

An Entity composes a ValueStore (fields, pending removals, dirty flags),
references to other entities, the server-assigned identity and
timestamps, and an attached access policy. It never talks to the
network; SyncCoordinator drives its sync state.
"""

from __future__ import annotations

import re
import weakref
from collections.abc import Iterator, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from ..exceptions import InvalidKeyError, UsageAfterDeleteError
from .policy import AccessPolicy
from .reference import Reference, ReferenceResolver
from .store import ABSENT, StoreSnapshot, ValueStore

KIND_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

POLICY_KEY = "ACL"
RESERVED_KEYS = frozenset({"objectId", "createdAt", "updatedAt", POLICY_KEY})

_resolver = ReferenceResolver()


class SyncState(Enum):
    """Synchronization state of an entity."""

    UNSAVED = "unsaved"
    SAVING = "saving"
    SAVED = "saved"
    SAVE_FAILED = "save_failed"
    REFRESHING = "refreshing"
    REFRESH_FAILED = "refresh_failed"
    DELETING = "deleting"
    DELETE_FAILED = "delete_failed"
    DELETED = "deleted"


def validate_kind(kind: Any) -> str:
    """Check a kind name: alphanumeric (underscores allowed), starting with a letter."""
    if not isinstance(kind, str) or not KIND_PATTERN.match(kind):
        raise InvalidKeyError(kind, "kind must be alphanumeric and begin with a letter")
    return kind


def validate_key(key: Any) -> str:
    """Check a field key: a non-empty string that is not reserved."""
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(key, "field keys must be non-empty strings")
    if key in RESERVED_KEYS:
        raise InvalidKeyError(key, "field key is reserved")
    return key


def _normalize(value: Any) -> Any:
    """Replace entities nested in a value with references to them."""
    if isinstance(value, Entity):
        return value.address()
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_normalize(item) for item in value)
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    return value


class Entity:
    """A mutable local mirror of a remote record.

    Example:
        >>> note = Entity("Note")
        >>> note["title"] = "Hi"
        >>> note.is_dirty()
        True
    """

    def __init__(
        self,
        kind: str,
        fields: Mapping[str, Any] | None = None,
        policy: AccessPolicy | None = None,
    ) -> None:
        """Create an unsaved entity.

        Args:
            kind: Kind (class) name of the record
            fields: Initial field values, all dirty
            policy: Optional access policy
        """
        self._kind = validate_kind(kind)
        self._identity: str | None = None
        self._created_at: datetime | None = None
        self._updated_at: datetime | None = None
        self._store = ValueStore()
        self._state = SyncState.UNSAVED
        self._data_available = True
        self._references: list[weakref.ReferenceType[Reference]] = []

        for key, value in (fields or {}).items():
            self.set(key, value)
        if policy is not None:
            self.policy = policy

    @classmethod
    def from_record(
        cls,
        kind: str,
        identity: str,
        fields: Mapping[str, Any],
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> Entity:
        """Hydrate a clean entity from a server record."""
        entity = cls(kind)
        entity._identity = identity
        entity.apply_fetched(fields, created_at, updated_at)
        return entity

    @classmethod
    def without_data(cls, kind: str, identity: str) -> Entity:
        """Create a pointer-only entity for a known record; refresh it to load fields."""
        entity = cls(kind)
        entity._identity = identity
        entity._state = SyncState.SAVED
        entity._data_available = False
        return entity

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def created_at(self) -> datetime | None:
        return self._created_at

    @property
    def updated_at(self) -> datetime | None:
        return self._updated_at

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_deleted(self) -> bool:
        return self._state == SyncState.DELETED

    @property
    def is_data_available(self) -> bool:
        """False for pointer-only entities whose fields were never loaded."""
        return self._data_available

    def ensure_usable(self, operation: str) -> None:
        """Raise UsageAfterDeleteError if the entity has been deleted."""
        if self._state == SyncState.DELETED:
            raise UsageAfterDeleteError(self._kind, self._identity, operation)

    # Field access

    def get(self, key: str, default: Any = None) -> Any:
        """Return a field value, or ``default`` if it has none. Never fetches."""
        self.ensure_usable("get")
        value = self._store.get(key)
        return default if value is ABSENT else value

    def set(self, key: str, value: Any) -> None:
        """Set a field value. Entities are stored as references to them."""
        self.ensure_usable("set")
        self._store.set(validate_key(key), _normalize(value))

    def remove(self, key: str) -> None:
        """Unset a field; the removal is sent on the next save."""
        self.ensure_usable("remove")
        self._store.remove(validate_key(key))

    def __getitem__(self, key: str) -> Any:
        self.ensure_usable("get")
        value = self._store.get(key)
        if value is ABSENT:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        self.remove(key)

    def __contains__(self, key: object) -> bool:
        return key != POLICY_KEY and key in self._store

    def keys(self) -> list[str]:
        return [key for key in self._store.keys() if key != POLICY_KEY]

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    @property
    def fields(self) -> dict[str, Any]:
        """Copy of the current field values."""
        return {key: value for key, value in self._store.items() if key != POLICY_KEY}

    @property
    def pending_removals(self) -> frozenset[str]:
        return self._store.pending_removals

    @property
    def dirty_keys(self) -> frozenset[str]:
        return self._store.dirty_keys

    @property
    def policy(self) -> AccessPolicy | None:
        """Copy of the attached policy; assign it back to record a change."""
        self.ensure_usable("get")
        value = self._store.get(POLICY_KEY)
        return None if value is ABSENT else value.copy()

    @policy.setter
    def policy(self, policy: AccessPolicy | None) -> None:
        self.ensure_usable("set")
        if policy is None:
            self._store.remove(POLICY_KEY)
        else:
            self._store.set(POLICY_KEY, policy.copy())

    def is_dirty(self) -> bool:
        """True if never saved or any change is unacknowledged by the server."""
        return self._identity is None or self._store.has_changes()

    def address(self) -> Reference:
        """Return a reference to this entity, usable before or after it is saved."""
        self.ensure_usable("address")
        return _resolver.make_reference(self)

    def track_reference(self, ref: Reference) -> None:
        """Remember an unresolved reference so the identity reaches it on save."""
        self._references.append(weakref.ref(ref))

    # Sync bookkeeping, driven by SyncCoordinator

    def transition_to(self, state: SyncState) -> None:
        self._state = state

    def snapshot(self) -> StoreSnapshot:
        """Capture the changes to transmit. Unsaved entities send every field."""
        return self._store.snapshot(full=self._identity is None)

    def apply_saved(
        self,
        snapshot: StoreSnapshot,
        updated_at: datetime,
        identity: str | None = None,
        created_at: datetime | None = None,
    ) -> None:
        """Record a server acknowledgement of ``snapshot``."""
        if identity is not None:
            self._identity = identity
            for link in self._references:
                ref = link()
                if ref is not None:
                    ref.bind(identity)
            self._references.clear()
        if created_at is not None:
            self._created_at = created_at
        self._updated_at = updated_at
        self._store.acknowledge(snapshot)
        self._state = SyncState.SAVED

    def apply_fetched(
        self,
        fields: Mapping[str, Any],
        created_at: datetime | None,
        updated_at: datetime | None,
    ) -> None:
        """Overwrite local state with a server record, discarding local changes."""
        values = dict(fields)
        policy = values.get(POLICY_KEY)
        if isinstance(policy, dict):
            values[POLICY_KEY] = AccessPolicy.from_dict(policy)
        self._store.replace_all(values)
        self._created_at = created_at
        self._updated_at = updated_at
        self._data_available = True
        self._state = SyncState.SAVED

    def mark_deleted(self) -> None:
        self._state = SyncState.DELETED

    def __repr__(self) -> str:
        identity = self._identity or "unsaved"
        return f"<Entity {self._kind} {identity} state={self._state.value}>"
