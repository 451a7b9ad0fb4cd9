"""
Observability components.

Provides structured logging and operation metrics.
"""

from .logging import (
    ContextualLoggerAdapter,
    clear_connection_context,
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    get_logger,
    get_logging_context,
    log_operation,
    set_connection_context,
    set_correlation_id,
)
from .metrics import (
    MetricsCollector,
    OperationMetrics,
    get_metrics_collector,
    record_operation,
    timed_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationMetrics",
    "get_metrics_collector",
    "record_operation",
    "timed_operation",
    # Logging
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
    "set_connection_context",
    "clear_connection_context",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
]
