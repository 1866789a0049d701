"""Identity generation and validation.

Identities are short alphanumeric strings assigned by the server of
record. The bundled remote services generate them here so that local
file paths built from them are always safe.
"""

from __future__ import annotations

import re
import secrets
import string

IDENTITY_LENGTH = 10
IDENTITY_ALPHABET = string.ascii_letters + string.digits
IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def new_identity(length: int = IDENTITY_LENGTH) -> str:
    """Generate a random alphanumeric identity."""
    if length < 1:
        raise ValueError(f"length must be >= 1, got {length}")
    return "".join(secrets.choice(IDENTITY_ALPHABET) for _ in range(length))


def is_valid_identity(identity: object) -> bool:
    """Check that an identity is a non-empty alphanumeric string."""
    return isinstance(identity, str) and bool(IDENTITY_PATTERN.match(identity))
