"""Structured JSON logging utilities for event-based logging."""

import json
import logging
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add event-specific fields if present
        if hasattr(record, "event_type"):
            log_data["event_type"] = record.event_type
        if hasattr(record, "event_data"):
            log_data.update(record.event_data)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Decimals and datetimes in event data are rendered as strings
        return json.dumps(log_data, default=str)


def _event_data(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    data = dict(base)
    # Filter out None values from kwargs
    for key, value in extra.items():
        if value is not None:
            data[key] = value
    return data


def log_session_event(
    logger: logging.Logger,
    event: str,
    session_id: str,
    **kwargs: Any,
) -> None:
    """
    Log a charging session lifecycle event.

    Args:
        logger: Logger instance
        event: Event name (e.g., "start", "meter_update", "stop", "error")
        session_id: Charging session ID
        **kwargs: Additional fields to include
    """
    extra = {
        "event_type": "session_event",
        "event_data": _event_data({"event": event, "session_id": session_id}, kwargs),
    }
    logger.info(f"Session {event}: {session_id}", extra=extra)


def log_invoice_event(
    logger: logging.Logger,
    event: str,
    invoice_id: str,
    session_id: str | None = None,
    **kwargs: Any,
) -> None:
    """Log an invoice event (issued, paid, cancelled)."""
    extra = {
        "event_type": "invoice_event",
        "event_data": _event_data(
            {"event": event, "invoice_id": invoice_id}, {"session_id": session_id, **kwargs}
        ),
    }
    logger.info(f"Invoice {event}: {invoice_id}", extra=extra)


def log_error(
    logger: logging.Logger,
    error_type: str,
    message: str,
    session_id: str | None = None,
    exc_info: Exception | None = None,
    **kwargs: Any,
) -> None:
    """
    Log an error event.

    Args:
        logger: Logger instance
        error_type: Type of error (e.g., "finalize_error", "plugin_error")
        message: Error message
        session_id: Charging session ID (if applicable)
        exc_info: Exception object (will extract traceback)
        **kwargs: Additional fields to include
    """
    extra = {
        "event_type": "error",
        "event_data": _event_data(
            {"error_type": error_type}, {"session_id": session_id, **kwargs}
        ),
    }
    logger.error(message, extra=extra, exc_info=exc_info)
