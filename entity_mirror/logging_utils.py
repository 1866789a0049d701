"""
Logging helpers for sync operations.

Every save, delete and refresh is logged against the entity it touches.
``EntityLoggerAdapter.for_entity`` stamps the entity's kind, identity and
sync state on each record, so a JSON log line can be traced back to one
remote record:

    {"level": "INFO", "logger": "entity_mirror.sync.coordinator",
     "message": "Saved Note a1B2c3D4e5", "kind": "Note",
     "identity": "a1B2c3D4e5", "state": "saved"}

Applications opt into JSON output with ``configure_structured_logging``
(or ``MirrorConfig(structured_logging=True).apply_logging()``).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .entity.entity import Entity

# LogRecord attributes that are not entity context
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


class StructuredJsonFormatter(logging.Formatter):
    """Formats records as one JSON object per line.

    Entity context (``kind``, ``identity``, ``state``) and any other
    ``extra`` values become top-level keys; values JSON cannot encode are
    written as their ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            log_obj[key] = value

        return json.dumps(log_obj, default=str)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = "entity_mirror",
) -> logging.Logger:
    """
    Send mirror logs to stdout as JSON lines.

    Existing handlers on the logger are replaced, so calling this twice
    does not duplicate output.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger; None for root)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_mirror_logger(name: str) -> logging.Logger:
    """Return the logger ``entity_mirror.<name>`` (e.g. ``client``, ``remote``)."""
    return logging.getLogger(f"entity_mirror.{name}")


class EntityLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that attaches entity context to every record.

    Context passed through ``extra`` at the call site wins over the
    adapter's own values.

    Example:
        >>> log = EntityLoggerAdapter.for_entity(logger, note)
        >>> log.info("Saving")
    """

    @classmethod
    def for_entity(cls, logger: logging.Logger, entity: Entity) -> EntityLoggerAdapter:
        """Create an adapter carrying the entity's kind, identity and sync state."""
        return cls(
            logger,
            {"kind": entity.kind, "identity": entity.identity, "state": entity.state.value},
        )

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs
