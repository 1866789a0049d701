"""
Shared test configuration and fixtures.

Provides a recording remote service that logs every call, can be told
to fail specific operations, and can hold calls open so tests can
mutate entities while a save is in flight.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from entity_mirror.remote import FieldDiff, InMemoryRemoteService
from entity_mirror.sync import SyncCoordinator

logger = logging.getLogger(__name__)


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class RecordingRemoteService(InMemoryRemoteService):
    """
    In-memory remote service for tests.

    Records calls as tuples in ``calls``:
    ("create", kind, fields), ("update", kind, identity, diff),
    ("delete", kind, identity), ("fetch", kind, identity).
    """

    def __init__(self):
        super().__init__(clock=TickingClock())
        self.calls: list[tuple[Any, ...]] = []
        self._failures: dict[tuple[str, str | None], Exception] = {}
        self.gate: asyncio.Event | None = None
        self.entered: asyncio.Event | None = None

    def fail(self, operation: str, kind: str | None = None, error: Exception | None = None):
        """Make ``operation`` (optionally only for ``kind``) raise."""
        self._failures[(operation, kind)] = error or ConnectionError(f"{operation} unavailable")

    def clear_failures(self):
        self._failures.clear()

    def hold(self):
        """Hold the next calls open until ``release()``."""
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    def release(self):
        if self.gate is not None:
            self.gate.set()

    def operations(self) -> list[tuple[str, str]]:
        return [(call[0], call[1]) for call in self.calls]

    async def _before(self, operation: str, kind: str, *details: Any) -> None:
        self.calls.append((operation, kind, *details))
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        error = self._failures.get((operation, kind)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    async def create(self, kind, fields):
        await self._before("create", kind, dict(fields))
        return await super().create(kind, fields)

    async def update(self, kind, identity, diff: FieldDiff):
        await self._before("update", kind, identity, diff)
        return await super().update(kind, identity, diff)

    async def delete(self, kind, identity):
        await self._before("delete", kind, identity)
        return await super().delete(kind, identity)

    async def fetch(self, kind, identity):
        await self._before("fetch", kind, identity)
        return await super().fetch(kind, identity)


@pytest.fixture
def clock():
    """Deterministic server clock."""
    return TickingClock()


@pytest.fixture
def remote():
    """Recording remote service."""
    return RecordingRemoteService()


@pytest.fixture
def coordinator(remote):
    """SyncCoordinator bound to the recording remote service."""
    return SyncCoordinator(remote)
