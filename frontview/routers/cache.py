"""
Cache router
------------
Purpose:
- Inspect and invalidate the query cache (GET/DELETE /api/cache)
- Health check covering the analytical store and Redis (GET /api/health)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from frontview.deps import get_analytics_state
from frontview.routers.responses import error_response
from frontview.schemas import HealthResponse
from frontview.state import AnalyticsState

router = APIRouter(prefix="/api", tags=["cache"])


@router.get("/cache")
async def get_cache(
    pattern: Optional[str] = Query(None, description="Glob inside the cache namespace, e.g. grouped-stats:*"),
    state: AnalyticsState = Depends(get_analytics_state),
):
    """List cached entries with their remaining TTL and size."""
    try:
        entries = await state.cache.entries(pattern)
        stats = await state.cache.stats()
    except Exception as e:
        return error_response(e, "CACHE")
    return {"data": entries, "meta": {**stats, "entryCount": len(entries), "pattern": pattern or "*"}}


@router.delete("/cache")
async def delete_cache(
    pattern: Optional[str] = Query(None, description="Glob inside the cache namespace; omit to clear it"),
    flush: bool = Query(False, description="Flush the whole Redis database"),
    state: AnalyticsState = Depends(get_analytics_state),
):
    """Invalidate cached entries."""
    try:
        if flush:
            await state.cache.flush()
            return {"data": {"flushed": True}, "meta": {"pattern": None}}
        deleted = await state.cache.invalidate(pattern)
    except Exception as e:
        return error_response(e, "CACHE")
    return {"data": {"deleted": deleted}, "meta": {"pattern": pattern or "*"}}


@router.get("/health", response_model=HealthResponse, tags=["Health"], summary="Health check")
async def health(state: AnalyticsState = Depends(get_analytics_state)):
    """Reachability of the analytical store and the cache store."""
    stats = await state.cache.stats()
    healthy = stats["executor_connected"] and (stats["store_connected"] or not stats["cache_enabled"])
    return HealthResponse(status="ok" if healthy else "degraded", **stats)
