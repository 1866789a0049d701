"""
Client facade for the entity mirror.

MirrorClient offers every sync operation in three forms:

- ``await client.save_async(entity)`` runs on the caller's event loop and
  raises on failure.
- ``client.save(entity)`` blocks the caller until the dispatcher worker
  finishes and returns an ``Outcome`` instead of raising.
- ``client.save_in_background(entity, callback)`` returns immediately; the
  callback later receives ``(result, error)``.

All three share one implementation: the blocking and background forms
schedule the awaitable form on the AsyncDispatcher.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, NamedTuple

from .config import MirrorConfig
from .entity.entity import Entity
from .entity.policy import AccessPolicy
from .logging_utils import get_mirror_logger
from .remote.base import RemoteService
from .remote.local import LocalFileRemoteService
from .remote.memory import InMemoryRemoteService
from .sync.batch import BatchResult, save_all
from .sync.coordinator import SyncCoordinator
from .sync.dispatcher import AsyncDispatcher, CompletionCallback

logger = get_mirror_logger("client")


class Outcome(NamedTuple):
    """Result of a blocking call: exactly one of ``result`` and ``error`` is set.

    Unpacks as ``result, error = client.save(note)``.
    """

    result: Any = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Any:
        """Return the result, or raise the error."""
        if self.error is not None:
            raise self.error
        return self.result


class MirrorClient:
    """Entry point for saving, deleting and refreshing entities.

    Example:
        >>> with MirrorClient(InMemoryRemoteService()) as client:
        ...     note = client.entity("Note", {"title": "Hi", "body": "World"})
        ...     outcome = client.save(note)
        ...     outcome.succeeded
        True
    """

    def __init__(
        self,
        remote: RemoteService,
        config: MirrorConfig | None = None,
        dispatcher: AsyncDispatcher | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            remote: Server of record
            config: Client configuration (defaults apply if omitted)
            dispatcher: Shared dispatcher; one is created and owned if omitted
        """
        self.config = config or MirrorConfig()
        self.remote = remote
        self.coordinator = SyncCoordinator(remote)
        self._owns_dispatcher = dispatcher is None
        self.dispatcher = dispatcher or AsyncDispatcher(self.config.dispatcher_thread_name)

    def entity(
        self,
        kind: str,
        fields: Mapping[str, Any] | None = None,
        policy: AccessPolicy | None = None,
    ) -> Entity:
        """Create a new unsaved entity."""
        return Entity(kind, fields, policy)

    def reference(self, kind: str, identity: str) -> Entity:
        """Create a pointer-only entity for an existing record."""
        return Entity.without_data(kind, identity)

    # Awaitable forms

    async def save_async(self, entity: Entity) -> Entity:
        return await self.coordinator.save(entity)

    async def delete_async(self, entity: Entity) -> Entity:
        return await self.coordinator.delete(entity)

    async def refresh_async(self, entity: Entity) -> Entity:
        return await self.coordinator.refresh(entity)

    async def fetch_if_needed_async(self, entity: Entity) -> Entity:
        return await self.coordinator.fetch_if_needed(entity)

    async def save_all_async(self, entities: Iterable[Entity]) -> BatchResult:
        return await save_all(
            list(entities), self.coordinator, self.config.max_batch_concurrency
        )

    # Blocking forms

    def _blocking(self, factory: Callable[[], Awaitable[Any]]) -> Outcome:
        try:
            result = self.dispatcher.run(factory, timeout=self.config.request_timeout)
        except Exception as e:
            logger.debug(f"Blocking call failed: {e}")
            return Outcome(error=e)
        return Outcome(result=result)

    def save(self, entity: Entity) -> Outcome:
        """Save and wait. The result is the entity."""
        return self._blocking(lambda: self.save_async(entity))

    def delete(self, entity: Entity) -> Outcome:
        """Delete and wait. The result is the deleted entity."""
        return self._blocking(lambda: self.delete_async(entity))

    def refresh(self, entity: Entity) -> Outcome:
        """Refresh and wait. The result is the refreshed entity."""
        return self._blocking(lambda: self.refresh_async(entity))

    def fetch_if_needed(self, entity: Entity) -> Outcome:
        return self._blocking(lambda: self.fetch_if_needed_async(entity))

    def save_all(self, entities: Iterable[Entity]) -> Outcome:
        """Save several entities and wait. The result is a BatchResult."""
        batch = list(entities)
        return self._blocking(lambda: self.save_all_async(batch))

    # Background forms

    def save_in_background(
        self, entity: Entity, callback: CompletionCallback | None = None
    ) -> concurrent.futures.Future[Entity]:
        return self.dispatcher.submit(lambda: self.save_async(entity), callback)

    def delete_in_background(
        self, entity: Entity, callback: CompletionCallback | None = None
    ) -> concurrent.futures.Future[Entity]:
        return self.dispatcher.submit(lambda: self.delete_async(entity), callback)

    def refresh_in_background(
        self, entity: Entity, callback: CompletionCallback | None = None
    ) -> concurrent.futures.Future[Entity]:
        return self.dispatcher.submit(lambda: self.refresh_async(entity), callback)

    def save_all_in_background(
        self, entities: Iterable[Entity], callback: CompletionCallback | None = None
    ) -> concurrent.futures.Future[BatchResult]:
        batch = list(entities)
        return self.dispatcher.submit(lambda: self.save_all_async(batch), callback)

    def close(self) -> None:
        """Stop the owned dispatcher."""
        if self._owns_dispatcher:
            self.dispatcher.close()

    def __enter__(self) -> MirrorClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def create_client(config: MirrorConfig | None = None) -> MirrorClient:
    """Create a client from configuration.

    Uses LocalFileRemoteService when ``storage_path`` is set, otherwise an
    in-memory service. Logging is configured from the same config.

    Args:
        config: Configuration (loaded from the environment if omitted)

    Returns:
        Configured MirrorClient
    """
    config = config or MirrorConfig.from_env()
    config.apply_logging()

    remote: RemoteService
    if config.storage_path is not None:
        remote = LocalFileRemoteService(config.storage_path)
    else:
        remote = InMemoryRemoteService()
    logger.info(f"Created client with {type(remote).__name__}")
    return MirrorClient(remote, config)
