"""
In-memory remote service.

Keeps records in a dictionary. Useful for tests, offline work and as a
reference for implementing other services. Safe to share between the
dispatcher's worker loop and a caller's own event loop.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..exceptions import RecordNotFoundError
from ..id_utils import new_identity
from .base import CreateResult, FetchResult, FieldDiff, RemoteService, UpdateResult

logger = logging.getLogger(__name__)


@dataclass
class StoredRecord:
    """A record as held by the server."""

    fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


class InMemoryRemoteService(RemoteService):
    """Dictionary-backed server of record."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize the service.

        Args:
            clock: Source of server timestamps (defaults to the UTC wall clock)
        """
        self._clock = clock or utc_now
        self._records: dict[tuple[str, str], StoredRecord] = {}
        self._lock = threading.Lock()

    def _get(self, kind: str, identity: str) -> StoredRecord:
        record = self._records.get((kind, identity))
        if record is None:
            raise RecordNotFoundError(kind, identity)
        return record

    async def create(self, kind: str, fields: dict[str, Any]) -> CreateResult:
        with self._lock:
            identity = new_identity()
            while (kind, identity) in self._records:
                identity = new_identity()
            now = self._clock()
            self._records[(kind, identity)] = StoredRecord(
                fields=copy.deepcopy(fields), created_at=now, updated_at=now
            )
        logger.debug(f"Created {kind} {identity}")
        return CreateResult(identity=identity, created_at=now, updated_at=now)

    async def update(self, kind: str, identity: str, diff: FieldDiff) -> UpdateResult:
        with self._lock:
            record = self._get(kind, identity)
            record.fields.update(copy.deepcopy(diff.sets))
            for name in diff.removals:
                record.fields.pop(name, None)
            record.updated_at = self._clock()
            updated_at = record.updated_at
        logger.debug(f"Updated {kind} {identity}: {sorted(diff.sets)} -{sorted(diff.removals)}")
        return UpdateResult(updated_at=updated_at)

    async def delete(self, kind: str, identity: str) -> None:
        with self._lock:
            self._get(kind, identity)
            del self._records[(kind, identity)]
        logger.debug(f"Deleted {kind} {identity}")

    async def fetch(self, kind: str, identity: str) -> FetchResult:
        with self._lock:
            record = self._get(kind, identity)
            return FetchResult(
                fields=copy.deepcopy(record.fields),
                created_at=record.created_at,
                updated_at=record.updated_at,
            )

    def record(self, kind: str, identity: str) -> StoredRecord | None:
        """Return the stored record, or None. Intended for inspection in tests."""
        with self._lock:
            return self._records.get((kind, identity))

    def count(self, kind: str | None = None) -> int:
        with self._lock:
            if kind is None:
                return len(self._records)
            return sum(1 for record_kind, _ in self._records if record_kind == kind)
