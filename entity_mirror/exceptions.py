"""
Custom exceptions for the entity mirror.

All components raise these exceptions so callers can handle
local validation failures and remote failures uniformly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .entity.entity import Entity


class MirrorError(Exception):
    """Base exception for all entity mirror errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidKeyError(MirrorError):
    """Raised when a field key or kind name is malformed."""

    def __init__(self, key: Any, reason: str):
        super().__init__(f"Invalid key {key!r}: {reason}", {"key": repr(key), "reason": reason})
        self.key = key
        self.reason = reason


class UnresolvedReferenceError(MirrorError):
    """Raised when a diff contains a reference to an entity without identity."""

    def __init__(self, kind: str, field: str | None = None, source_kind: str | None = None):
        details = {"kind": kind}
        message = f"Reference to unsaved {kind} cannot be transmitted"
        if field:
            details["field"] = field
            message += f" (field {field!r}"
            if source_kind:
                details["source_kind"] = source_kind
                message += f" of {source_kind}"
            message += ")"
        super().__init__(message, details)
        self.kind = kind
        self.field = field
        self.source_kind = source_kind


class NotPersistedError(MirrorError):
    """Raised when delete or refresh is attempted on an entity without identity."""

    def __init__(self, kind: str, operation: str):
        super().__init__(
            f"Cannot {operation} {kind}: entity has never been saved",
            {"kind": kind, "operation": operation},
        )
        self.kind = kind
        self.operation = operation


class CyclicDependencyError(MirrorError):
    """Raised when unsaved entities in a batch reference each other in a cycle."""

    def __init__(self, entities: list[Entity]):
        kinds = [entity.kind for entity in entities]
        super().__init__(
            f"Batch contains a reference cycle between {len(entities)} unsaved entities",
            {"kinds": kinds},
        )
        self.entities = entities


class RemoteError(MirrorError):
    """Raised when the remote service fails. The original exception is kept as ``cause``."""

    def __init__(
        self,
        operation: str,
        kind: str,
        identity: str | None = None,
        cause: BaseException | None = None,
    ):
        details = {"operation": operation, "kind": kind}
        message = f"Remote {operation} failed for {kind}"
        if identity:
            details["identity"] = identity
            message += f" {identity}"
        if cause:
            details["cause"] = str(cause)
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.kind = kind
        self.identity = identity
        self.cause = cause


class UsageAfterDeleteError(MirrorError):
    """Raised on any operation against an entity that was deleted remotely."""

    def __init__(self, kind: str, identity: str | None, operation: str):
        super().__init__(
            f"Cannot {operation} {kind} {identity}: entity has been deleted",
            {"kind": kind, "identity": identity, "operation": operation},
        )
        self.kind = kind
        self.identity = identity
        self.operation = operation


class BatchSaveError(MirrorError):
    """Raised when a batch save stops part way through.

    Entities in ``saved`` were persisted and keep their new state;
    entities in ``unattempted`` were never sent.
    """

    def __init__(
        self,
        error: BaseException,
        saved: list[Entity],
        failed: list[Entity],
        unattempted: list[Entity],
    ):
        super().__init__(
            f"Batch save failed after {len(saved)} saved, "
            f"{len(failed)} failed, {len(unattempted)} not attempted: {error}",
            {
                "saved": len(saved),
                "failed": len(failed),
                "unattempted": len(unattempted),
                "cause": str(error),
            },
        )
        self.error = error
        self.saved = saved
        self.failed = failed
        self.unattempted = unattempted


class RecordNotFoundError(MirrorError):
    """Raised by remote services when no record exists for kind + identity."""

    def __init__(self, kind: str, identity: str):
        super().__init__(
            f"Record not found: {kind} {identity}", {"kind": kind, "identity": identity}
        )
        self.kind = kind
        self.identity = identity


class StorageIOError(MirrorError):
    """Raised when the local file service cannot read or write a record."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class ConfigurationError(MirrorError):
    """Raised when configuration values are missing or malformed."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid configuration for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value
