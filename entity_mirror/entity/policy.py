"""Access policy attached to entities.

The policy is carried with the entity and transmitted under the ``ACL``
key. Nothing in this package evaluates it; enforcement belongs to the
remote service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

PUBLIC = "*"


class Permission(Enum):
    """Permission levels a policy can grant."""

    READ = "read"
    WRITE = "write"


@dataclass
class AccessPolicy:
    """Per-principal read/write grants.

    Attributes:
        grants: Mapping of principal id (``"*"`` for everyone) to granted permissions
    """

    grants: dict[str, set[Permission]] = field(default_factory=dict)

    def allow(self, principal: str, *permissions: Permission) -> AccessPolicy:
        self.grants.setdefault(principal, set()).update(permissions)
        return self

    def revoke(self, principal: str, *permissions: Permission) -> AccessPolicy:
        granted = self.grants.get(principal)
        if granted is None:
            return self
        granted.difference_update(permissions)
        if not granted:
            del self.grants[principal]
        return self

    def allows(self, principal: str, permission: Permission) -> bool:
        return permission in self.grants.get(principal, set())

    @property
    def public_read(self) -> bool:
        return self.allows(PUBLIC, Permission.READ)

    @public_read.setter
    def public_read(self, allowed: bool) -> None:
        if allowed:
            self.allow(PUBLIC, Permission.READ)
        else:
            self.revoke(PUBLIC, Permission.READ)

    @property
    def public_write(self) -> bool:
        return self.allows(PUBLIC, Permission.WRITE)

    @public_write.setter
    def public_write(self, allowed: bool) -> None:
        if allowed:
            self.allow(PUBLIC, Permission.WRITE)
        else:
            self.revoke(PUBLIC, Permission.WRITE)

    def copy(self) -> AccessPolicy:
        return AccessPolicy(grants={p: set(perms) for p, perms in self.grants.items()})

    def to_dict(self) -> dict[str, dict[str, bool]]:
        """Convert to dictionary for serialization, e.g. ``{"*": {"read": True}}``."""
        return {
            principal: {perm.value: True for perm in sorted(perms, key=lambda p: p.value)}
            for principal, perms in self.grants.items()
            if perms
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessPolicy:
        """Create from dictionary."""
        grants: dict[str, set[Permission]] = {}
        for principal, perms in data.items():
            granted = {Permission(name) for name, allowed in perms.items() if allowed}
            if granted:
                grants[principal] = granted
        return cls(grants=grants)
