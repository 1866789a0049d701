"""
Configuration for the entity mirror.

Configuration can be provided directly, from environment variables, or
from a YAML file:

```yaml
mirror:
  request_timeout: 30
  max_batch_concurrency: 8
  dispatcher_thread_name: "entity-mirror-dispatcher"
  log_level: "INFO"
  structured_logging: false
  storage_path: "~/.entity-mirror/records"
```

Environment Variables:
    ENTITY_MIRROR_REQUEST_TIMEOUT: Seconds a blocking call waits (empty for no limit)
    ENTITY_MIRROR_MAX_BATCH_CONCURRENCY: Concurrent saves per batch tier
    ENTITY_MIRROR_DISPATCHER_THREAD_NAME: Name of the dispatcher worker thread
    ENTITY_MIRROR_LOG_LEVEL: Log level for the package logger
    ENTITY_MIRROR_STRUCTURED_LOGGING: "true" to emit JSON logs
    ENTITY_MIRROR_STORAGE_PATH: Directory for the local file service
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

ENV_PREFIX = "ENTITY_MIRROR_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class MirrorConfig:
    """Configuration for MirrorClient.

    Attributes:
        request_timeout: Seconds blocking calls wait for a result (None waits forever)
        max_batch_concurrency: Maximum concurrent saves within one batch tier
            (None means unbounded)
        dispatcher_thread_name: Name of the background worker thread
        log_level: Level applied to the ``entity_mirror`` logger
        structured_logging: Emit JSON-formatted log records
        storage_path: Directory for LocalFileRemoteService (None for in-memory)
    """

    request_timeout: float | None = 30.0
    max_batch_concurrency: int | None = None
    dispatcher_thread_name: str = "entity-mirror-dispatcher"
    log_level: str = "WARNING"
    structured_logging: bool = False
    storage_path: Path | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigurationError: If a value is out of range
        """
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError(
                "request_timeout", "must be positive", str(self.request_timeout)
            )
        if self.max_batch_concurrency is not None and self.max_batch_concurrency < 1:
            raise ConfigurationError(
                "max_batch_concurrency", "must be >= 1", str(self.max_batch_concurrency)
            )
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError("log_level", "unknown log level", self.log_level)
        if not self.dispatcher_thread_name:
            raise ConfigurationError("dispatcher_thread_name", "must not be empty")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MirrorConfig:
        """Create from a dictionary of raw values (strings are coerced)."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(", ".join(sorted(unknown)), "unknown configuration key")

        values: dict[str, Any] = {}
        for name, raw in data.items():
            values[name] = _coerce(name, raw)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> MirrorConfig:
        """Create from ``ENTITY_MIRROR_*`` environment variables."""
        env = os.environ if environ is None else environ
        data = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if key in env:
                data[f.name] = env[key]
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path) -> MirrorConfig:
        """Create from the ``mirror`` section of a YAML file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigurationError("path", "config file not found", str(path)) from e
        except yaml.YAMLError as e:
            raise ConfigurationError("path", f"invalid YAML: {e}", str(path)) from e

        if not isinstance(document, dict):
            raise ConfigurationError("path", "top level must be a mapping", str(path))
        section = document.get("mirror", {}) or {}
        if not isinstance(section, dict):
            raise ConfigurationError("mirror", "section must be a mapping")
        return cls.from_dict(section)

    def apply_logging(self) -> logging.Logger:
        """Configure the package logger according to this config."""
        if self.structured_logging:
            from .logging_utils import configure_structured_logging

            return configure_structured_logging(self.log_level.upper())
        logger = logging.getLogger("entity_mirror")
        logger.setLevel(self.log_level.upper())
        return logger


def _coerce(name: str, raw: Any) -> Any:
    """Convert a raw config value to the field's type."""
    if name == "request_timeout":
        if raw is None or (isinstance(raw, str) and raw.strip().lower() in ("", "none")):
            return None
        try:
            return float(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(name, "must be a number", str(raw)) from e
    if name == "max_batch_concurrency":
        if raw is None or (isinstance(raw, str) and raw.strip().lower() in ("", "none")):
            return None
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(name, "must be an integer", str(raw)) from e
    if name == "structured_logging":
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(name, "must be a boolean", str(raw))
    if name == "storage_path":
        if raw is None or raw == "":
            return None
        return Path(raw).expanduser()
    return str(raw)
