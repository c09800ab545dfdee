"""
Tables router
-------------
Purpose:
- Time series charts (historical snapshots, future maturity run-off)
- Raw data grid paging, distinct values for filter pickers, column listing
Design choices:
- Same {"data", "meta"} | {"error"} contract as the analytics router.
- distinct returns a bare list because the filter picker consumes it as-is.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from frontview.deps import get_analytics_state
from frontview.routers.responses import error_response
from frontview.schemas import TableDataRequest, TimeSeriesRequest
from frontview.state import AnalyticsState

router = APIRouter(prefix="/api/tables", tags=["tables"])


@router.post("/historical")
async def post_historical(req: TimeSeriesRequest, state: AnalyticsState = Depends(get_analytics_state)):
    try:
        result = await state.historical.compute(
            req.table,
            req.field_name,
            group_by=req.group_by,
            as_of_date=req.as_of_date,
            filters=req.filter_list(),
        )
    except Exception as e:
        return error_response(e, "HISTORICAL")
    return result.to_dict()


@router.post("/future")
async def post_future(req: TimeSeriesRequest, state: AnalyticsState = Depends(get_analytics_state)):
    try:
        result = await state.future.compute(
            req.table,
            req.field_name,
            group_by=req.group_by,
            as_of_date=req.as_of_date,
            filters=req.filter_list(),
        )
    except Exception as e:
        return error_response(e, "FUTURE")
    return result.to_dict()


@router.post("/data")
async def post_table_data(req: TableDataRequest, state: AnalyticsState = Depends(get_analytics_state)):
    try:
        return await state.tables.fetch_page(
            req.table_name,
            filters=req.filter_list(),
            as_of_date=req.as_of_date,
            limit=req.limit,
            offset=req.offset,
            order_by=req.order_terms(),
            order_direction=req.order_direction,
        )
    except Exception as e:
        return error_response(e, "TABLES")


@router.get("/distinct")
async def get_distinct(
    table: str = Query(..., description="Table name"),
    column: str = Query(..., description="Column name"),
    state: AnalyticsState = Depends(get_analytics_state),
):
    try:
        return await state.tables.distinct_values(table, column)
    except Exception as e:
        return error_response(e, "DISTINCT")


@router.get("/desc")
async def get_description(
    table: str = Query(..., description="Table name"),
    state: AnalyticsState = Depends(get_analytics_state),
):
    try:
        columns = await state.tables.describe(table)
    except Exception as e:
        return error_response(e, "DESCRIBE")
    if not columns:
        # SQLite reports a missing table as an empty column list
        return JSONResponse(status_code=404, content={"error": "Table not found"})
    return {"data": columns, "meta": {"tableName": table, "columnCount": len(columns)}}
