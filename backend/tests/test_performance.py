"""
Tests for performance monitoring.
"""
import asyncio
import pytest
import time
from sheetlens.core.performance import MAX_SAMPLES_PER_METRIC, PerformanceMonitor, track_performance


def test_performance_monitor_record():
    """Test recording performance metrics."""
    PerformanceMonitor.record_metric("test_metric", 1.5, {"test": "data"})
    PerformanceMonitor.record_metric("test_metric", 2.0)
    PerformanceMonitor.record_metric("test_metric", 0.5)

    stats = PerformanceMonitor.get_stats("test_metric")

    assert stats is not None
    assert stats["count"] == 3
    assert stats["min"] == 0.5
    assert stats["max"] == 2.0
    assert stats["p50"] == 1.5
    assert stats["mean"] == pytest.approx(1.333, rel=0.01)


def test_samples_are_capped():
    for i in range(MAX_SAMPLES_PER_METRIC + 10):
        PerformanceMonitor.record_metric("busy", float(i))

    stats = PerformanceMonitor.get_stats("busy")
    assert stats["count"] == MAX_SAMPLES_PER_METRIC
    assert stats["min"] == 10.0


def test_performance_decorator_sync():
    """Test performance tracking decorator on sync function."""
    @track_performance("test_function")
    def test_func(x: int) -> int:
        time.sleep(0.01)  # Small delay to measure
        return x * 2

    result = test_func(5)

    assert result == 10

    stats = PerformanceMonitor.get_stats("test_function")
    assert stats is not None
    assert stats["count"] == 1
    assert stats["errors"] == 0
    assert stats["mean"] > 0


def test_performance_decorator_records_errors():
    @track_performance("failing")
    def failing():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        failing()

    assert PerformanceMonitor.get_stats("failing")["errors"] == 1


@pytest.mark.asyncio
async def test_performance_decorator_async():
    """Test performance tracking decorator on async function."""
    @track_performance("test_async_function")
    async def test_async_func(x: int) -> int:
        await asyncio.sleep(0.01)
        return x * 2

    result = await test_async_func(5)

    assert result == 10

    stats = PerformanceMonitor.get_stats("test_async_function")
    assert stats is not None
    assert stats["count"] == 1
    assert stats["mean"] > 0


def test_pipeline_stages_are_tracked(sales_rows):
    from sheetlens.services.reconciler import reconcile

    reconcile([], sales_rows)

    metrics = PerformanceMonitor.get_all_metrics()
    assert "reconcile" in metrics
    assert "classify_columns" in metrics


def test_performance_monitor_clear():
    """Test clearing metrics."""
    PerformanceMonitor.record_metric("test", 1.0)
    assert PerformanceMonitor.get_stats("test") is not None

    PerformanceMonitor.clear_metrics()
    assert PerformanceMonitor.get_stats("test") is None
