"""
Performance monitoring for pipeline stages.
"""
import inspect
import time
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from functools import wraps
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_METRIC = 1000

_metrics_lock = threading.Lock()
_metrics: Dict[str, List[Dict[str, Any]]] = defaultdict(list)


class PerformanceMonitor:
    """Collects stage durations and summarizes them for /api/metrics."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """
        Record a performance metric.

        Args:
            name: Stage name (e.g. 'classify_columns', 'reconcile')
            value: Duration in seconds
            metadata: Optional status / error details
        """
        with _metrics_lock:
            samples = _metrics[name]
            samples.append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })
            if len(samples) > MAX_SAMPLES_PER_METRIC:
                del samples[:-MAX_SAMPLES_PER_METRIC]

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        """Return count/min/max/mean/p50/p95 for a metric, or None if nothing was recorded."""
        with _metrics_lock:
            samples = _metrics.get(metric_name)
            if not samples:
                return None
            values = sorted(m['value'] for m in samples)
        errors = sum(1 for m in samples if m['metadata'].get('status') == 'error')
        return {
            'count': len(values),
            'errors': errors,
            'min': values[0],
            'max': values[-1],
            'mean': sum(values) / len(values),
            'p50': values[len(values) // 2],
            'p95': values[int(len(values) * 0.95)],
        }

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        with _metrics_lock:
            names = list(_metrics.keys())
        return {name: PerformanceMonitor.get_stats(name) for name in names}

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


@contextmanager
def _timed(metric_name: str) -> Iterator[None]:
    start_time = time.perf_counter()
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start_time
        PerformanceMonitor.record_metric(metric_name, duration, {'status': 'error', 'error': str(e)})
        logger.warning(
            f"{metric_name} failed after {duration:.3f}s: {e}",
            extra={'metric': metric_name, 'duration': duration}
        )
        raise
    duration = time.perf_counter() - start_time
    PerformanceMonitor.record_metric(metric_name, duration, {'status': 'success'})
    logger.debug(
        f"{metric_name} completed in {duration:.3f}s",
        extra={'metric': metric_name, 'duration': duration}
    )


def track_performance(metric_name: str):
    """
    Decorator to track execution time of sync and async functions.

    Usage:
        @track_performance("classify_columns")
        def classify_columns(...):
            ...
    """
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with _timed(metric_name):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with _timed(metric_name):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator
