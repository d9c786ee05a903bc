"""
Data synchronization endpoints

Called by the external scheduler; guarded by CronAuthMiddleware.
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from metrics_dashboard.api.deps import get_sync_service
from metrics_dashboard.config import get_settings
from metrics_dashboard.services.sync_service import PLATFORMS, SyncService
from metrics_dashboard.utils.helpers import parse_date
from metrics_dashboard.utils.logger import log

settings = get_settings()

router = APIRouter(prefix="/sync", tags=["sync"])
backfill_router = APIRouter(prefix="/backfill", tags=["sync"])

PLATFORM_CHOICES = PLATFORMS + ("all",)


def _check_platform(platform: str):
    if platform not in PLATFORM_CHOICES:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown platform: {platform}. Use one of {', '.join(PLATFORM_CHOICES)}"
        )


def _parse_optional_date(value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD")


@router.get("/{platform}")
async def sync_platform(platform: str, service: SyncService = Depends(get_sync_service)):
    """Latest-mode sync: yesterday and today"""
    _check_platform(platform)

    try:
        synced = await service.sync_latest([platform])
    except Exception as e:
        log.error(f"Sync {platform} error: {str(e)}")
        raise HTTPException(status_code=500, detail={"error": "Sync failed", "details": str(e)})

    return {
        "success": True,
        "platform": platform,
        "synced": synced,
        "timestamp": datetime.utcnow().isoformat(),
    }


@backfill_router.get("/klaviyo-signups")
async def backfill_klaviyo_signups(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    days: int = Query(730, ge=1, description="Days ending today when no dates are given"),
    service: SyncService = Depends(get_sync_service),
):
    """Daily signups for a whole range from one paginated pass"""
    start = _parse_optional_date(start_date, "startDate")
    end = _parse_optional_date(end_date, "endDate")
    if start and not end:
        end = service.today()
    elif not start:
        end = end or service.today()
        start = end - timedelta(days=days - 1)

    try:
        result = await service.backfill_email_signups(start, end)
    except Exception as e:
        log.error(f"Klaviyo signups backfill error: {str(e)}")
        raise HTTPException(status_code=500, detail={"error": "Backfill failed", "details": str(e)})

    return {
        "success": True,
        "platform": "klaviyo-signups",
        "dateRange": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "synced": result["synced"],
        "total": result["total"],
        "timestamp": datetime.utcnow().isoformat(),
    }


@backfill_router.get("/{platform}")
async def backfill_platform(
    platform: str,
    days: Optional[int] = Query(None, ge=1, description="Days ending today"),
    offset: int = Query(0, ge=0),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    batch_size: int = Query(settings.backfill_batch_size, ge=1, le=365, alias="batchSize"),
    service: SyncService = Depends(get_sync_service),
):
    """One resumable batch of historical dates; follow progress.nextOffset"""
    _check_platform(platform)
    start = _parse_optional_date(start_date, "startDate")
    end = _parse_optional_date(end_date, "endDate")
    if start and start > (end or service.today()):
        raise HTTPException(status_code=400, detail="startDate must not be after endDate (or today)")

    try:
        result = await service.backfill(
            platform,
            start_date=start,
            end_date=end,
            days=days,
            offset=offset,
            batch_size=batch_size,
        )
    except Exception as e:
        log.error(f"Backfill {platform} error: {str(e)}")
        raise HTTPException(status_code=500, detail={"error": "Backfill failed", "details": str(e)})

    return {
        "success": True,
        "platform": platform,
        "offset": offset,
        "dateRange": result["dateRange"],
        "synced": result["synced"],
        "progress": result["progress"],
        "timestamp": datetime.utcnow().isoformat(),
    }
