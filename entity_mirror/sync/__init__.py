"""
Synchronization of entities with the remote service.

Provides per-entity save/delete/refresh, dependency-ordered batch saves
and a background dispatcher for non-blocking calls.
"""

from .batch import BatchResult, dependencies, plan_tiers, save_all
from .coordinator import PreparedSave, SyncCoordinator
from .dispatcher import AsyncDispatcher, CompletionCallback

__all__ = [
    "AsyncDispatcher",
    "BatchResult",
    "CompletionCallback",
    "PreparedSave",
    "SyncCoordinator",
    "dependencies",
    "plan_tiers",
    "save_all",
]
