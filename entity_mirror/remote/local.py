"""
File-backed remote service.

Stores each record as a JSON document at ``<base>/<kind>/<identity>.json``.
Writes go to a temp file that is then renamed over the target, so a crash
never leaves a half-written record behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..entity.entity import validate_kind
from ..exceptions import RecordNotFoundError, StorageIOError
from ..id_utils import is_valid_identity, new_identity
from .base import CreateResult, FetchResult, FieldDiff, RemoteService, UpdateResult
from .codec import decode_fields, encode_fields
from .memory import utc_now

logger = logging.getLogger(__name__)


class LocalFileRemoteService(RemoteService):
    """Server of record persisted to a local directory.

    Example:
        >>> remote = LocalFileRemoteService(Path("~/.entity-mirror/records").expanduser())
        >>> client = MirrorClient(remote)
    """

    def __init__(self, base_path: Path, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize the service.

        Args:
            base_path: Directory holding one sub-directory per kind
            clock: Source of server timestamps (defaults to the UTC wall clock)
        """
        self.base_path = Path(base_path)
        self._clock = clock or utc_now

    def _record_path(self, kind: str, identity: str) -> Path:
        validate_kind(kind)
        if not is_valid_identity(identity):
            raise RecordNotFoundError(kind, str(identity))
        return self.base_path / kind / f"{identity}.json"

    async def _read(self, kind: str, identity: str) -> dict[str, Any]:
        path = self._record_path(kind, identity)
        if not await aiofiles.os.path.exists(path):
            raise RecordNotFoundError(kind, identity)
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return json.loads(await f.read())
        except json.JSONDecodeError as e:
            raise StorageIOError("parse_record", str(path), e) from e
        except OSError as e:
            raise StorageIOError("read_record", str(path), e) from e

    async def _write(self, path: Path, document: dict[str, Any]) -> None:
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(path.parent), e) from e

        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
        try:
            os.close(fd)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2))
                await f.flush()
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise StorageIOError("write_record", str(path), e) from e

    @staticmethod
    def _document(
        identity: str, fields: dict[str, Any], created_at: datetime, updated_at: datetime
    ) -> dict[str, Any]:
        return {
            "objectId": identity,
            "createdAt": created_at.isoformat(),
            "updatedAt": updated_at.isoformat(),
            "fields": encode_fields(fields),
        }

    async def create(self, kind: str, fields: dict[str, Any]) -> CreateResult:
        identity = new_identity()
        path = self._record_path(kind, identity)
        while await aiofiles.os.path.exists(path):
            identity = new_identity()
            path = self._record_path(kind, identity)

        now = self._clock()
        await self._write(path, self._document(identity, fields, now, now))
        logger.debug(f"Created {kind} {identity} at {path}")
        return CreateResult(identity=identity, created_at=now, updated_at=now)

    async def update(self, kind: str, identity: str, diff: FieldDiff) -> UpdateResult:
        document = await self._read(kind, identity)
        fields = decode_fields(document.get("fields", {}))
        fields.update(diff.sets)
        for name in diff.removals:
            fields.pop(name, None)

        updated_at = self._clock()
        created_at = datetime.fromisoformat(document["createdAt"])
        await self._write(
            self._record_path(kind, identity),
            self._document(identity, fields, created_at, updated_at),
        )
        logger.debug(f"Updated {kind} {identity}")
        return UpdateResult(updated_at=updated_at)

    async def delete(self, kind: str, identity: str) -> None:
        path = self._record_path(kind, identity)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise RecordNotFoundError(kind, identity) from None
        except OSError as e:
            raise StorageIOError("delete_record", str(path), e) from e
        logger.debug(f"Deleted {kind} {identity}")

    async def fetch(self, kind: str, identity: str) -> FetchResult:
        document = await self._read(kind, identity)
        return FetchResult(
            fields=decode_fields(document.get("fields", {})),
            created_at=datetime.fromisoformat(document["createdAt"]),
            updated_at=datetime.fromisoformat(document["updatedAt"]),
        )
