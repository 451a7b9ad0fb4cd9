"""
Logging utilities for MDB_CONNECTOR.

Provides a logger adapter that attaches a correlation ID and the current
connection context (database, collection) to every record.
"""

import contextvars
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

_connection_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "connection_context", default=None
)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Optional correlation ID (generates new one if None)

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Run a block under a correlation ID.

    An ID already set by the caller is kept. Otherwise ``correlation_id`` (or
    a generated one) is set for the block and removed on exit.

    Usage:
        with correlation_scope() as correlation_id:
            ...
    """
    current = _correlation_id.get()
    if current is not None and correlation_id is None:
        yield current
        return

    token = _correlation_id.set(correlation_id or str(uuid.uuid4()))
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


def set_connection_context(database: str | None = None, **kwargs: Any) -> None:
    """
    Set connection context for logging.

    Args:
        database: Database name
        **kwargs: Additional context (collection, operation, etc.)
    """
    _connection_context.set({"database": database, **kwargs})


def clear_connection_context() -> None:
    _connection_context.set(None)


def get_logging_context() -> dict[str, Any]:
    """Get current logging context (timestamp, correlation ID, connection context)."""
    context: dict[str, Any] = {"timestamp": datetime.now().isoformat()}

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    connection_context = _connection_context.get()
    if connection_context:
        context.update(connection_context)

    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that automatically adds context to log records."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = get_logging_context()

        extra = kwargs.get("extra", {})
        if extra:
            context.update(extra)

        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.DEBUG,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log a connector operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g. "find")
        level: Log level
        success: Whether the operation succeeded
        duration_ms: Operation duration in milliseconds
        **context: Additional context (collection, counts, etc.)
    """
    log_context = get_logging_context()
    log_context.update({"operation": operation, "success": success})

    if duration_ms is not None:
        log_context["duration_ms"] = round(duration_ms, 2)

    if context:
        log_context.update(context)

    message = f"Operation: {operation}" if success else f"Operation failed: {operation}"
    if duration_ms is not None:
        message += f" (duration: {duration_ms:.2f}ms)"

    logger.log(level, message, extra=log_context)
