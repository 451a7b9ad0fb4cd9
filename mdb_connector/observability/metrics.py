"""
Metrics collection for MDB_CONNECTOR.

Keeps per-operation counters and timings (``connector.find``,
``connection.open``, ...) for monitoring.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class OperationMetrics:
    """Metrics for a single operation."""

    operation_name: str
    count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    error_count: int = 0
    last_execution: datetime | None = None

    @property
    def avg_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float, success: bool = True) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if not success:
            self.error_count += 1
        self.last_execution = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation_name,
            "count": self.count,
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "error_count": self.error_count,
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
        }


class MetricsCollector:
    """Thread-safe collector of operation metrics."""

    def __init__(self) -> None:
        self._metrics: dict[str, OperationMetrics] = {}
        self._lock = threading.Lock()

    def record_operation(self, operation_name: str, duration_ms: float, success: bool = True):
        with self._lock:
            metric = self._metrics.get(operation_name)
            if metric is None:
                metric = self._metrics[operation_name] = OperationMetrics(operation_name)
            metric.record(duration_ms, success)

    def get_metrics(self, operation_name: str | None = None) -> dict[str, Any]:
        """
        Get metrics, optionally only those whose name starts with ``operation_name``.
        """
        with self._lock:
            metrics = {
                name: metric.to_dict()
                for name, metric in self._metrics.items()
                if operation_name is None or name.startswith(operation_name)
            }
        return {"timestamp": datetime.now().isoformat(), "metrics": metrics}

    def get_operation_count(self, operation_name: str) -> int:
        with self._lock:
            metric = self._metrics.get(operation_name)
            return metric.count if metric else 0

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def record_operation(operation_name: str, duration_ms: float, success: bool = True) -> None:
    """Record an operation in the global metrics collector."""
    get_metrics_collector().record_operation(operation_name, duration_ms, success)


def timed_operation(operation_name: str) -> Callable:
    """
    Decorator that times a coroutine and records it under ``operation_name``.

    Usage:
        @timed_operation("connector.find")
        async def find(self, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            success = True
            try:
                return await func(*args, **kwargs)
            except BaseException:
                success = False
                raise
            finally:
                record_operation(operation_name, (time.time() - start_time) * 1000, success)

        return wrapper

    return decorator
