"""Structured logging configuration for the health tracker.

The monitor and each service probe log through loggers obtained from
:func:`get_logger`. Per-service loggers carry ``service``, ``service_id``
and ``host`` context fields, which both formatters below render.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

# Context fields rendered by the formatters when present on a record
CONTEXT_FIELDS = ("service", "service_id", "host")

# Per-check result fields attached by ServiceProbe
RESULT_FIELDS = ("outcome", "consecutive_failures")


def _component(record: logging.LogRecord) -> str:
    # "health_tracker.monitor" -> "monitor"
    return record.name.split(".")[-1] if "." in record.name else record.name


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured log messages.

    Includes timestamp, level, component, service context, the message and
    any check result fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with structured output.

        Args:
            record: The log record to format.

        Returns:
            Formatted log string.
        """
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[
            :-3
        ]

        parts = [
            timestamp,
            f"[{record.levelname:8}]",
            f"[{_component(record):14}]",
        ]

        context_parts = [
            f"{key}={getattr(record, key)}" for key in CONTEXT_FIELDS if hasattr(record, key)
        ]
        if context_parts:
            parts.append(f"[{' '.join(context_parts)}]")

        parts.append(record.getMessage())

        result_parts = [
            f"{key}={getattr(record, key)}" for key in RESULT_FIELDS if hasattr(record, key)
        ]
        if result_parts:
            parts.append(f"({' '.join(result_parts)})")

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return " ".join(parts)


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": _component(record),
            "message": record.getMessage(),
        }

        for key in (*CONTEXT_FIELDS, *RESULT_FIELDS):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter that merges fixed context into every record.

    Usage:
        logger = get_logger(__name__)
        svc_logger = logger.with_context(service="billing", service_id=3)
        svc_logger.warning("Probe failed")
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.get("extra", {})
        if self.extra is not None:
            extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


class TrackerLogger(logging.Logger):
    """Logger with ``with_context`` support."""

    def with_context(self, **context: Any) -> ContextAdapter:
        """Create a logger adapter with additional context.

        Args:
            **context: Context fields to add to all log messages.

        Returns:
            ContextAdapter with the specified context.
        """
        return ContextAdapter(self, context)


logging.setLoggerClass(TrackerLogger)


def get_logger(name: str) -> TrackerLogger:
    """Get a logger with the custom TrackerLogger class.

    Args:
        name: Logger name (typically __name__).

    Returns:
        TrackerLogger instance.
    """
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    replace_handlers: bool = True,
) -> None:
    """Configure root logging for a host application embedding the tracker.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        json_format: If True, output JSON-formatted logs.
        replace_handlers: If True, remove existing root handlers first.
            Set to False to keep handlers installed by the host application.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    if replace_handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("health_tracker").setLevel(numeric_level)


__all__ = [
    "ContextAdapter",
    "JSONFormatter",
    "StructuredFormatter",
    "TrackerLogger",
    "get_logger",
    "setup_logging",
]
