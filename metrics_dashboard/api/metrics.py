"""
Dashboard metrics endpoint
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from metrics_dashboard.api.deps import get_aggregation_service
from metrics_dashboard.exceptions import AggregationError
from metrics_dashboard.services.aggregation_service import AggregationService
from metrics_dashboard.utils.helpers import PERIODS, business_today, parse_date, resolve_period
from metrics_dashboard.utils.logger import log

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def get_metrics(
    period: str = Query("daily", description="daily, weekly, monthly or quarterly"),
    start_date: Optional[str] = Query(None, alias="startDate", description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, alias="endDate", description="YYYY-MM-DD"),
    service: AggregationService = Depends(get_aggregation_service),
):
    """
    Aggregated metrics for a date range.

    Explicit startDate and endDate win over the period preset.
    """
    if period not in PERIODS:
        raise HTTPException(status_code=400, detail=f"Unknown period: {period}")

    if start_date and end_date:
        try:
            start, end = parse_date(start_date), parse_date(end_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="Dates must be YYYY-MM-DD")
        if start > end:
            raise HTTPException(status_code=400, detail="startDate must not be after endDate")
    else:
        start, end = resolve_period(period, business_today())

    try:
        metrics = await service.get_aggregated_metrics(start, end)
    except AggregationError as e:
        log.error(f"Metrics API error: {str(e)}")
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to fetch metrics", "details": str(e)}
        )

    return {
        "success": True,
        "period": period,
        "dateRange": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "metrics": metrics,
    }
