"""
Per-entity field storage with change tracking.

The store keeps current values, the set of fields removed locally and
not yet acknowledged, and the set of fields whose values have not been
acknowledged by the server. Every mutation is stamped with a revision
so a save that was in flight while the field changed can tell that its
acknowledgement no longer covers the field.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any


class _Absent:
    """Marker for a field with no value (distinct from a stored ``None``)."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


@dataclass(frozen=True)
class StoreSnapshot:
    """Changes captured at the start of a save.

    Attributes:
        sets: Field values to transmit
        removals: Field names to remove remotely
        revisions: Revision of every captured field at capture time
    """

    sets: dict[str, Any] = field(default_factory=dict)
    removals: frozenset[str] = frozenset()
    revisions: dict[str, int] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.sets and not self.removals


class ValueStore:
    """Field values, pending removals and dirty flags for one entity."""

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        """Initialize the store.

        Args:
            values: Initial values, treated as already persisted (not dirty)
        """
        self._values: dict[str, Any] = dict(values or {})
        self._removals: set[str] = set()
        self._dirty: set[str] = set()
        self._revisions: dict[str, int] = {}
        self._clock = 0

    def _bump(self, name: str) -> None:
        self._clock += 1
        self._revisions[name] = self._clock

    def get(self, name: str) -> Any:
        """Return the current value, or ``ABSENT`` if there is none."""
        return self._values.get(name, ABSENT)

    def set(self, name: str, value: Any) -> None:
        """Overwrite a value and mark it dirty, cancelling any pending removal."""
        self._values[name] = value
        self._removals.discard(name)
        self._dirty.add(name)
        self._bump(name)

    def remove(self, name: str) -> None:
        """Clear a value and record the removal.

        The removal is recorded even when no value was ever seen locally,
        since the field may still exist on the server.
        """
        self._values.pop(name, None)
        self._dirty.discard(name)
        self._removals.add(name)
        self._bump(name)

    def keys(self) -> list[str]:
        return list(self._values)

    def items(self) -> list[tuple[str, Any]]:
        return list(self._values.items())

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))

    def __len__(self) -> int:
        return len(self._values)

    @property
    def pending_removals(self) -> frozenset[str]:
        return frozenset(self._removals)

    @property
    def dirty_keys(self) -> frozenset[str]:
        return frozenset(self._dirty)

    def has_changes(self) -> bool:
        """Check whether any set or removal is unacknowledged."""
        return bool(self._dirty or self._removals)

    def is_dirty(self, name: str) -> bool:
        return name in self._dirty or name in self._removals

    def snapshot(self, full: bool = False) -> StoreSnapshot:
        """Capture the changes a save should transmit.

        Args:
            full: Capture every current value rather than only dirty ones
                (used when creating a record that does not exist remotely yet)

        Returns:
            StoreSnapshot of values, removals and their revisions
        """
        keys = set(self._values) if full else set(self._dirty)
        sets = {name: self._values[name] for name in keys}
        captured = keys | self._removals
        return StoreSnapshot(
            sets=sets,
            removals=frozenset(self._removals),
            revisions={name: self._revisions.get(name, 0) for name in captured},
        )

    def acknowledge(self, snapshot: StoreSnapshot) -> None:
        """Clear dirty state for fields the server acknowledged.

        Fields changed after the snapshot was taken keep their dirty state
        and are transmitted again on the next save.
        """
        for name, revision in snapshot.revisions.items():
            if self._revisions.get(name, 0) != revision:
                continue
            self._dirty.discard(name)
            self._removals.discard(name)

    def replace_all(self, values: Mapping[str, Any]) -> None:
        """Replace every value with server state, discarding local changes."""
        self._values = dict(values)
        self._removals.clear()
        self._dirty.clear()
        # Revisions keep counting so snapshots taken before the replace never match.
        for name in list(self._revisions):
            self._bump(name)
