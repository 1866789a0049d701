"""
Per-entity synchronization with the remote service.

SyncCoordinator computes what a save must transmit, sends create or
update calls, applies server acknowledgements back onto the entity, and
runs delete and refresh. All validation happens before the first remote
call so that a rejected operation has no side effects.

Concurrent operations on the same entity are not serialized. If two
saves overlap, fields changed between them stay dirty and are sent again
on the next save; a refresh racing a save may discard either outcome.
Callers that need strict ordering must serialize their own calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..entity.entity import Entity, SyncState
from ..entity.reference import ReferenceResolver
from ..entity.store import StoreSnapshot
from ..exceptions import NotPersistedError, RemoteError
from ..logging_utils import EntityLoggerAdapter
from ..remote.base import FieldDiff, RemoteService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedSave:
    """A save ready to send: the captured snapshot and its resolved diff."""

    snapshot: StoreSnapshot
    diff: FieldDiff
    create: bool


class SyncCoordinator:
    """Drives save, delete and refresh for individual entities.

    Example:
        >>> coordinator = SyncCoordinator(InMemoryRemoteService())
        >>> note = Entity("Note", {"title": "Hi"})
        >>> await coordinator.save(note)
        >>> note.is_dirty()
        False
    """

    def __init__(self, remote: RemoteService, resolver: ReferenceResolver | None = None):
        """Initialize the coordinator.

        Args:
            remote: Server of record
            resolver: Reference resolver (a default one is created if omitted)
        """
        self.remote = remote
        self.resolver = resolver or ReferenceResolver()

    def _log(self, entity: Entity) -> EntityLoggerAdapter:
        return EntityLoggerAdapter.for_entity(logger, entity)

    def prepare(self, entity: Entity) -> PreparedSave:
        """Capture an entity's changes and resolve the references they contain.

        Raises:
            UnresolvedReferenceError: If any transmitted value points at an
                entity without identity
        """
        snapshot = entity.snapshot()
        sets = {
            name: self.resolver.resolve_value(value, field=name, source_kind=entity.kind)
            for name, value in snapshot.sets.items()
        }
        create = entity.identity is None
        removals = frozenset() if create else snapshot.removals
        return PreparedSave(
            snapshot=snapshot, diff=FieldDiff(sets=sets, removals=removals), create=create
        )

    async def save(self, entity: Entity) -> Entity:
        """Save an entity's pending changes.

        A clean entity is returned immediately without a remote call.

        Returns:
            The saved entity

        Raises:
            UsageAfterDeleteError: If the entity was deleted
            UnresolvedReferenceError: If a transmitted reference is unsaved
            RemoteError: If the remote service fails
        """
        entity.ensure_usable("save")
        log = self._log(entity)
        if not entity.is_dirty():
            log.debug(f"Skipping save of clean {entity.kind} {entity.identity}")
            return entity

        prepared = self.prepare(entity)
        return await self._send(entity, prepared, log)

    async def _send(
        self, entity: Entity, prepared: PreparedSave, log: EntityLoggerAdapter
    ) -> Entity:
        previous_state = entity.state
        entity.transition_to(SyncState.SAVING)
        operation = "create" if prepared.create else "update"
        log.debug(
            f"Saving {entity.kind} via {operation}: "
            f"set={sorted(prepared.diff.sets)} removed={sorted(prepared.diff.removals)}"
        )

        try:
            if prepared.create:
                created = await self.remote.create(entity.kind, prepared.diff.sets)
                entity.apply_saved(
                    prepared.snapshot,
                    updated_at=created.updated_at,
                    identity=created.identity,
                    created_at=created.created_at,
                )
            else:
                updated = await self.remote.update(entity.kind, entity.identity, prepared.diff)
                entity.apply_saved(prepared.snapshot, updated_at=updated.updated_at)
        except asyncio.CancelledError:
            entity.transition_to(previous_state)
            raise
        except Exception as e:
            entity.transition_to(SyncState.SAVE_FAILED)
            log.warning(f"Save of {entity.kind} failed: {e}")
            raise RemoteError(operation, entity.kind, entity.identity, e) from e

        log.info(f"Saved {entity.kind} {entity.identity}")
        return entity

    async def delete(self, entity: Entity) -> Entity:
        """Delete an entity's record. The entity becomes unusable afterwards.

        Raises:
            UsageAfterDeleteError: If the entity was already deleted
            NotPersistedError: If the entity was never saved
            RemoteError: If the remote service fails
        """
        entity.ensure_usable("delete")
        if entity.identity is None:
            raise NotPersistedError(entity.kind, "delete")

        log = self._log(entity)
        previous_state = entity.state
        entity.transition_to(SyncState.DELETING)
        try:
            await self.remote.delete(entity.kind, entity.identity)
        except asyncio.CancelledError:
            entity.transition_to(previous_state)
            raise
        except Exception as e:
            entity.transition_to(SyncState.DELETE_FAILED)
            log.warning(f"Delete of {entity.kind} {entity.identity} failed: {e}")
            raise RemoteError("delete", entity.kind, entity.identity, e) from e

        entity.mark_deleted()
        log.info(f"Deleted {entity.kind} {entity.identity}")
        return entity

    async def refresh(self, entity: Entity) -> Entity:
        """Overwrite an entity with the server's current record.

        Local changes that were not saved are discarded.

        Raises:
            UsageAfterDeleteError: If the entity was deleted
            NotPersistedError: If the entity was never saved
            RemoteError: If the remote service fails
        """
        entity.ensure_usable("refresh")
        if entity.identity is None:
            raise NotPersistedError(entity.kind, "refresh")

        log = self._log(entity)
        previous_state = entity.state
        entity.transition_to(SyncState.REFRESHING)
        try:
            record = await self.remote.fetch(entity.kind, entity.identity)
        except asyncio.CancelledError:
            entity.transition_to(previous_state)
            raise
        except Exception as e:
            entity.transition_to(SyncState.REFRESH_FAILED)
            log.warning(f"Refresh of {entity.kind} {entity.identity} failed: {e}")
            raise RemoteError("fetch", entity.kind, entity.identity, e) from e

        entity.apply_fetched(record.fields, record.created_at, record.updated_at)
        log.info(f"Refreshed {entity.kind} {entity.identity}")
        return entity

    async def fetch_if_needed(self, entity: Entity) -> Entity:
        """Refresh a pointer-only entity; entities with data are returned as-is."""
        entity.ensure_usable("refresh")
        if entity.is_data_available:
            return entity
        return await self.refresh(entity)
