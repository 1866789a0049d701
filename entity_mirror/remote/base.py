"""
Abstract remote service interface.

Defines the contract the sync layer needs from the server of record:
create, update, delete and fetch, each keyed by kind and identity.
Transport, authentication and wire encoding are up to the implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class FieldDiff:
    """Changes to apply to an existing record.

    Attributes:
        sets: Field values to write (references already resolved)
        removals: Field names to delete
    """

    sets: dict[str, Any] = field(default_factory=dict)
    removals: frozenset[str] = frozenset()

    def is_empty(self) -> bool:
        return not self.sets and not self.removals


@dataclass(frozen=True)
class CreateResult:
    """Server acknowledgement of a created record."""

    identity: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UpdateResult:
    """Server acknowledgement of an updated record."""

    updated_at: datetime


@dataclass(frozen=True)
class FetchResult:
    """Current server state of a record."""

    fields: dict[str, Any]
    created_at: datetime | None
    updated_at: datetime | None


class RemoteService(ABC):
    """Server of record for entities.

    Implementations raise RecordNotFoundError for unknown identities and may
    raise any other exception for transport failures; the sync layer wraps
    both in RemoteError.
    """

    @abstractmethod
    async def create(self, kind: str, fields: dict[str, Any]) -> CreateResult:
        """Create a record.

        Args:
            kind: Kind (class) name
            fields: Complete field values of the new record

        Returns:
            CreateResult with the assigned identity and timestamps
        """
        ...

    @abstractmethod
    async def update(self, kind: str, identity: str, diff: FieldDiff) -> UpdateResult:
        """Apply a diff to an existing record.

        Args:
            kind: Kind (class) name
            identity: Record identity
            diff: Fields to set and remove

        Returns:
            UpdateResult with the new update timestamp

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        ...

    @abstractmethod
    async def delete(self, kind: str, identity: str) -> None:
        """Delete a record.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        ...

    @abstractmethod
    async def fetch(self, kind: str, identity: str) -> FetchResult:
        """Read the current state of a record.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        ...

    async def close(self) -> None:
        """Release resources held by the service."""
        return None

    async def __aenter__(self) -> RemoteService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
