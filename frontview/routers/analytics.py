"""
Analytics router
----------------
Purpose:
- Stat cards (POST /api/stats) and grouped breakdown cards
  (POST /api/grouped-stats) for the exposure dashboard.
Design choices:
- Handlers only convert payloads into core request types and forward them;
  snapshot resolution, caching and consolidation live in frontview.analytics.
- Errors are rendered as {"error": ...} by routers.responses.
"""

from fastapi import APIRouter, Depends

from frontview.deps import get_analytics_state
from frontview.routers.responses import error_response
from frontview.schemas import GroupedStatsRequest, StatsRequest
from frontview.state import AnalyticsState

router = APIRouter(prefix="/api", tags=["analytics"])


@router.post("/stats")
async def post_stats(req: StatsRequest, state: AnalyticsState = Depends(get_analytics_state)):
    """Current vs. comparison value for every measure, keyed by measure key."""
    try:
        results = await state.stats.compute(
            [m.to_spec() for m in req.measures],
            period=req.relative_dt,
            as_of_date=req.as_of_date,
            filters=req.filter_list(),
        )
    except Exception as e:
        return error_response(e, "STATS")
    return {key: result.to_dict() for key, result in results.items()}


@router.post("/grouped-stats")
async def post_grouped_stats(req: GroupedStatsRequest, state: AnalyticsState = Depends(get_analytics_state)):
    """Grouped breakdown with top 11 + Others consolidation."""
    try:
        report = await state.grouped.compute_for_period(
            req.measure.to_spec(),
            group_by=req.group_by,
            period=req.relative_dt,
            as_of_date=req.as_of_date,
            filters=req.filter_list(),
        )
    except Exception as e:
        return error_response(e, "GROUPED")
    return {
        "data": [row.to_dict() for row in report.rows],
        "meta": report.meta,
    }
