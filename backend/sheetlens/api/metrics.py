"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter
from sheetlens.core.performance import PerformanceMonitor
from sheetlens.core.cache import get_session_cache

router = APIRouter()


@router.get("/metrics")
async def get_metrics():
    """Timings of every tracked pipeline stage plus session store statistics."""
    return {
        'performance': PerformanceMonitor.get_all_metrics(),
        'sessions': get_session_cache().get_stats()
    }
