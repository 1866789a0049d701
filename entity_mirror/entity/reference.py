"""
Lightweight pointers between entities.

A Reference names another entity by kind and identity. A reference made
to an entity that has not been saved yet is *unresolved*: it keeps a weak
link to its target and picks up the identity once the target is saved.
Resolution happens only when a save transmits the reference, so object
graphs can be built locally in any order.
"""

from __future__ import annotations

import weakref
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from ..exceptions import UnresolvedReferenceError

if TYPE_CHECKING:
    from .entity import Entity


class Reference:
    """Pointer to an entity, resolved or not.

    The weak link never keeps an unsaved target alive; if the target is
    collected before it was saved the reference can no longer resolve.
    Once the target is saved it binds its identity into every unresolved
    reference it handed out, so the reference no longer needs the target.
    """

    __slots__ = ("kind", "_identity", "_target", "__weakref__")

    def __init__(self, kind: str, identity: str | None = None, target: Entity | None = None):
        self.kind = kind
        self._identity = identity
        self._target: weakref.ReferenceType[Entity] | None = None
        if identity is None and target is not None:
            self._target = weakref.ref(target)

    @property
    def identity(self) -> str | None:
        if self._identity is None and self._target is not None:
            target = self._target()
            if target is not None and target.identity is not None:
                self._identity = target.identity
                self._target = None
        return self._identity

    def bind(self, identity: str) -> None:
        """Fix the identity once the target has been saved; the weak link is dropped."""
        self._identity = identity
        self._target = None

    @property
    def target(self) -> Entity | None:
        """The live target entity of an unresolved reference, if still reachable."""
        if self._target is None:
            return None
        return self._target()

    @property
    def is_resolved(self) -> bool:
        return self.identity is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reference):
            return NotImplemented
        if self.kind != other.kind:
            return False
        identity, other_identity = self.identity, other.identity
        if identity is not None or other_identity is not None:
            return identity == other_identity
        target = self.target
        return target is not None and target is other.target

    def __hash__(self) -> int:
        # Identity can appear after construction, so only the kind is hashed.
        return hash(self.kind)

    def __repr__(self) -> str:
        identity = self.identity
        if identity is None:
            return f"Reference({self.kind!r}, unresolved)"
        return f"Reference({self.kind!r}, {identity!r})"


class ReferenceResolver:
    """Creates references and resolves them at send time."""

    def make_reference(self, target: Entity) -> Reference:
        """Create a reference to an entity.

        Args:
            target: Entity to point at

        Returns:
            Resolved Reference if the target has identity, else an unresolved one
        """
        ref = Reference(target.kind, target.identity, target=target)
        if ref.identity is None:
            target.track_reference(ref)
        return ref

    def resolve(
        self, ref: Reference, field: str | None = None, source_kind: str | None = None
    ) -> str:
        """Return the identity a reference points at.

        Raises:
            UnresolvedReferenceError: If the target has no identity
        """
        identity = ref.identity
        if identity is None:
            raise UnresolvedReferenceError(ref.kind, field, source_kind)
        return identity

    def resolve_value(
        self, value: Any, field: str | None = None, source_kind: str | None = None
    ) -> Any:
        """Resolve every reference nested in a value.

        Lists, tuples and dicts are walked; other values are returned as-is.

        Returns:
            A copy of the value in which every Reference carries its identity
            and no weak link

        Raises:
            UnresolvedReferenceError: On the first unresolved reference
        """
        if isinstance(value, Reference):
            return Reference(value.kind, self.resolve(value, field, source_kind))
        if isinstance(value, list):
            return [self.resolve_value(item, field, source_kind) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve_value(item, field, source_kind) for item in value)
        if isinstance(value, dict):
            return {
                key: self.resolve_value(item, field, source_kind) for key, item in value.items()
            }
        return value

    def unresolved_references(self, value: Any) -> Iterator[Reference]:
        """Yield every unresolved reference nested in a value."""
        if isinstance(value, Reference):
            if not value.is_resolved:
                yield value
        elif isinstance(value, (list, tuple)):
            for item in value:
                yield from self.unresolved_references(item)
        elif isinstance(value, dict):
            for item in value.values():
                yield from self.unresolved_references(item)
