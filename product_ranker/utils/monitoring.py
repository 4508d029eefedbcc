"""Performance monitoring and metrics collection for the product ranker."""

import threading
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import psutil
import numpy as np

from ..config.settings import get_monitoring_config
from ..utils.logging import get_logger


logger = get_logger(__name__)


@dataclass
class MetricPoint:
    """Represents a single metric data point."""
    timestamp: datetime
    value: Union[float, int]
    labels: Dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    """Collects and aggregates performance metrics."""

    def __init__(self, max_history: int = 1000):
        """Initialize metrics collector.

        Args:
            max_history: Maximum number of metric points to keep in memory
        """
        self.max_history = max_history
        self._metrics_history: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_history))
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = defaultdict(float)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.RLock()
        self._process = psutil.Process()

    def record_metric(self, name: str, value: Union[float, int],
                      labels: Optional[Dict[str, str]] = None) -> None:
        """Record a metric value."""
        with self._lock:
            self._metrics_history[name].append(
                MetricPoint(timestamp=datetime.now(), value=value, labels=labels or {})
            )

    def increment_counter(self, name: str, value: int = 1) -> None:
        """Increment a counter metric."""
        with self._lock:
            self._counters[name] += value
            self.record_metric(f"{name}_total", self._counters[name])

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge metric value."""
        with self._lock:
            self._gauges[name] = value
            self.record_metric(name, value)

    def record_histogram(self, name: str, value: float) -> None:
        """Record a value in a histogram."""
        with self._lock:
            self._histograms[name].append(value)
            if len(self._histograms[name]) > self.max_history:
                self._histograms[name] = self._histograms[name][-self.max_history:]

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_histogram_summary(self, name: str) -> Dict[str, Any]:
        """Get summary statistics for a histogram.

        Args:
            name: Histogram name

        Returns:
            Dictionary containing histogram statistics
        """
        with self._lock:
            if name not in self._histograms or not self._histograms[name]:
                return {}

            values = self._histograms[name]

            return {
                "count": len(values),
                "mean": float(np.mean(values)),
                "min": float(np.min(values)),
                "max": float(np.max(values)),
                "p50": float(np.percentile(values, 50)),
                "p95": float(np.percentile(values, 95)),
                "p99": float(np.percentile(values, 99)),
            }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all current metrics."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    name: self.get_histogram_summary(name)
                    for name in self._histograms.keys()
                },
                "system_metrics": self._get_system_metrics(),
                "timestamp": datetime.now().isoformat()
            }

    def _get_system_metrics(self) -> Dict[str, Any]:
        try:
            memory_info = self._process.memory_info()
            return {
                "memory_rss_mb": memory_info.rss / 1024 / 1024,
                "cpu_percent": self._process.cpu_percent(),
                "num_threads": self._process.num_threads(),
            }
        except psutil.Error as e:
            logger.warning(f"Failed to get system metrics: {e}")
            return {}

    def reset_metrics(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._metrics_history.clear()
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


class PerformanceMonitor:
    """Records operation latencies and outcomes for searches and batch jobs."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else get_monitoring_config()
        self.enabled = self.config.get("enabled", True)
        self.metrics_collector = MetricsCollector(max_history=self.config.get("max_history", 1000))

    @asynccontextmanager
    async def measure_async_operation(self, operation_name: str, labels: Optional[Dict[str, str]] = None):
        """Async context manager to measure operation duration.

        Args:
            operation_name: Name of the operation
            labels: Optional labels for the metric
        """
        if not self.enabled:
            yield
            return

        start_time = time.perf_counter()
        try:
            yield
            self.record_operation_success(operation_name, time.perf_counter() - start_time, labels)
        except Exception as e:
            self.record_operation_error(operation_name, time.perf_counter() - start_time,
                                        type(e).__name__, labels)
            raise

    def record_operation_success(self, operation_name: str, duration: float,
                                 labels: Optional[Dict[str, str]] = None) -> None:
        self.metrics_collector.increment_counter(f"{operation_name}_success")
        self.metrics_collector.record_histogram(f"{operation_name}_duration", duration)
        self.metrics_collector.record_metric(f"{operation_name}_latency", duration, labels)

    def record_operation_error(self, operation_name: str, duration: float, error_type: str,
                               labels: Optional[Dict[str, str]] = None) -> None:
        self.metrics_collector.increment_counter(f"{operation_name}_error")
        self.metrics_collector.increment_counter(f"{operation_name}_error_{error_type}")
        self.metrics_collector.record_histogram(f"{operation_name}_duration", duration)


_performance_monitor: Optional[PerformanceMonitor] = None


def get_performance_monitor() -> PerformanceMonitor:
    """Get the global performance monitor instance."""
    global _performance_monitor
    if _performance_monitor is None:
        _performance_monitor = PerformanceMonitor()
    return _performance_monitor
