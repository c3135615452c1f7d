"""
Structured logging for Leasekeeper.

Provides a logger wrapper that emits JSON-structured log records carrying
reconciliation context (tick, event, instance, action, state transition)
for easy filtering in log aggregation tools.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

_CONTEXT_KEYS = (
    "tick_id",
    "event",
    "instance_id",
    "action",
    "old_state",
    "new_state",
    "error",
)


class StructuredFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Attach any extras injected via LeaseLogger.log_event
        for key in _CONTEXT_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry, default=str)


class LeaseLogger:
    """Convenience wrapper around :mod:`logging` for lease lifecycle events."""

    def __init__(self, name: str = "leasekeeper", level: int = logging.INFO) -> None:
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(level)

    def set_level(self, level: int | str) -> None:
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
        self.logger.setLevel(level)

    def log_event(
        self,
        level: int,
        message: str,
        *,
        event: str | None = None,
        tick_id: str | None = None,
        instance_id: str | None = None,
        action: str | None = None,
        old_state: str | None = None,
        new_state: str | None = None,
        error: BaseException | str | None = None,
        exc_info: bool = False,
    ) -> None:
        """Emit a structured log record with reconciliation context.

        Args:
            level: Logging level (e.g. logging.INFO).
            message: Human-readable message.
            event: Machine-readable event name (e.g. 'stop_issued').
            tick_id: Correlation ID of the reconciliation pass; auto-generated if omitted.
            instance_id: Instance the event concerns.
            action: Action taken or attempted ('stop', 'start', 'sync').
            old_state: Lifecycle state before the event.
            new_state: Lifecycle state after the event.
            error: Exception or message describing a failure.
            exc_info: Whether to include exception info.
        """
        extra = {
            "event": event,
            "tick_id": tick_id or uuid.uuid4().hex[:12],
            "instance_id": instance_id,
            "action": action,
            "old_state": old_state,
            "new_state": new_state,
            "error": str(error) if error is not None else None,
        }
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log_event(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log_event(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log_event(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log_event(logging.DEBUG, message, **kwargs)
