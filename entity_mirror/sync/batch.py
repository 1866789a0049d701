"""
Dependency-aware batch saves.

An entity depends on another when its pending changes reference that
entity and the target has no identity yet. Entities are grouped into
tiers so that every dependency is saved in an earlier tier; entities in
one tier are saved concurrently. The remote service is not assumed to
support transactions: when a save fails, later tiers are skipped and
entities already saved stay saved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..entity.entity import Entity
from ..entity.reference import ReferenceResolver
from ..exceptions import BatchSaveError, CyclicDependencyError, UnresolvedReferenceError
from .coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Result of a successful batch save.

    Attributes:
        saved: Entities in the order their saves completed, tier by tier
        tiers: The dependency tiers that were saved
    """

    saved: list[Entity] = field(default_factory=list)
    tiers: list[list[Entity]] = field(default_factory=list)


def _unique(entities: Iterable[Entity]) -> list[Entity]:
    seen: set[int] = set()
    unique = []
    for entity in entities:
        if id(entity) not in seen:
            seen.add(id(entity))
            unique.append(entity)
    return unique


def dependencies(entity: Entity, resolver: ReferenceResolver | None = None) -> list[Entity]:
    """Return the unsaved entities an entity's pending changes point at.

    Raises:
        UnresolvedReferenceError: If an unsaved target is no longer reachable
    """
    if not entity.is_dirty():
        return []

    resolver = resolver or ReferenceResolver()
    snapshot = entity.snapshot()
    targets: list[Entity] = []
    for name, value in snapshot.sets.items():
        for ref in resolver.unresolved_references(value):
            target = ref.target
            if target is None:
                raise UnresolvedReferenceError(ref.kind, name, entity.kind)
            targets.append(target)
    return _unique(targets)


def plan_tiers(
    entities: Iterable[Entity], resolver: ReferenceResolver | None = None
) -> list[list[Entity]]:
    """Group entities into dependency tiers.

    Input order is kept within each tier.

    Returns:
        Tiers in save order; every entity appears exactly once

    Raises:
        UsageAfterDeleteError: If an entity was deleted
        UnresolvedReferenceError: If an entity depends on an unsaved entity
            outside the batch
        CyclicDependencyError: If unsaved entities reference each other in a cycle
    """
    members = _unique(entities)
    for entity in members:
        entity.ensure_usable("save")

    member_ids = {id(entity) for entity in members}
    pending: dict[int, set[int]] = {}
    for entity in members:
        edges = set()
        for target in dependencies(entity, resolver):
            if id(target) not in member_ids:
                raise UnresolvedReferenceError(target.kind, source_kind=entity.kind)
            edges.add(id(target))
        pending[id(entity)] = edges

    tiers: list[list[Entity]] = []
    while pending:
        tier = [
            entity
            for entity in members
            if id(entity) in pending and not (pending[id(entity)] & pending.keys())
        ]
        if not tier:
            raise CyclicDependencyError([e for e in members if id(e) in pending])
        tiers.append(tier)
        for entity in tier:
            del pending[id(entity)]
    return tiers


async def save_all(
    entities: Iterable[Entity],
    coordinator: SyncCoordinator,
    max_concurrency: int | None = None,
) -> BatchResult:
    """Save a collection of entities, dependencies first.

    Args:
        entities: Entities to save; order is a hint only
        coordinator: Coordinator used for each individual save
        max_concurrency: Limit on concurrent saves within a tier (None for no limit)

    Returns:
        BatchResult listing the saved entities and the tiers used

    Raises:
        UnresolvedReferenceError, CyclicDependencyError, UsageAfterDeleteError:
            Detected before any remote call
        BatchSaveError: If a save fails; carries the first error and the
            saved, failed and unattempted entities
    """
    tiers = plan_tiers(entities, coordinator.resolver)
    logger.debug(f"Batch save planned: {[len(tier) for tier in tiers]} entities per tier")

    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def save_one(entity: Entity) -> Entity:
        if semaphore is None:
            return await coordinator.save(entity)
        async with semaphore:
            return await coordinator.save(entity)

    result = BatchResult(tiers=tiers)
    for index, tier in enumerate(tiers):
        outcomes = await asyncio.gather(*(save_one(e) for e in tier), return_exceptions=True)

        failed: list[Entity] = []
        first_error: BaseException | None = None
        for entity, outcome in zip(tier, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failed.append(entity)
                if first_error is None:
                    first_error = outcome
            else:
                result.saved.append(entity)

        if first_error is not None:
            unattempted = [entity for later in tiers[index + 1 :] for entity in later]
            logger.warning(
                f"Batch save stopped at tier {index + 1}/{len(tiers)}: "
                f"{len(failed)} failed, {len(unattempted)} not attempted"
            )
            raise BatchSaveError(first_error, result.saved, failed, unattempted) from first_error

    logger.info(f"Batch saved {len(result.saved)} entities in {len(tiers)} tiers")
    return result
