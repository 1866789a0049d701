"""
JSON encoding of field values for file-backed storage.

Plain JSON values pass through unchanged. Richer values are written as
tagged objects:

    {"__type": "Pointer", "className": "Note", "objectId": "a1B2c3D4e5"}
    {"__type": "Date", "iso": "2024-01-01T00:00:00+00:00"}
    {"__type": "Bytes", "base64": "..."}
    {"__type": "ACL", "grants": {"*": {"read": true}}}
"""

from __future__ import annotations

import base64
from datetime import datetime
from typing import Any

from ..entity.policy import AccessPolicy
from ..entity.reference import Reference
from ..exceptions import UnresolvedReferenceError

TYPE_KEY = "__type"


def encode_value(value: Any) -> Any:
    """Encode a field value into JSON-compatible data."""
    if isinstance(value, Reference):
        if value.identity is None:
            raise UnresolvedReferenceError(value.kind)
        return {TYPE_KEY: "Pointer", "className": value.kind, "objectId": value.identity}
    if isinstance(value, datetime):
        return {TYPE_KEY: "Date", "iso": value.isoformat()}
    if isinstance(value, (bytes, bytearray)):
        return {TYPE_KEY: "Bytes", "base64": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, AccessPolicy):
        return {TYPE_KEY: "ACL", "grants": value.to_dict()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): encode_value(item) for key, item in value.items()}
    return value


def decode_value(data: Any) -> Any:
    """Decode JSON data produced by ``encode_value``."""
    if isinstance(data, list):
        return [decode_value(item) for item in data]
    if not isinstance(data, dict):
        return data

    type_name = data.get(TYPE_KEY)
    if type_name == "Pointer":
        return Reference(data["className"], data["objectId"])
    if type_name == "Date":
        return datetime.fromisoformat(data["iso"])
    if type_name == "Bytes":
        return base64.b64decode(data["base64"])
    if type_name == "ACL":
        return AccessPolicy.from_dict(data.get("grants", {}))
    return {key: decode_value(item) for key, item in data.items()}


def encode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {name: encode_value(value) for name, value in fields.items()}


def decode_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {name: decode_value(value) for name, value in data.items()}
