"""
Scheduler for automated metric syncs

Uses APScheduler to run latest-mode sync on a fixed interval.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from metrics_dashboard.api.deps import get_sync_service
from metrics_dashboard.config import get_settings
from metrics_dashboard.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def sync_latest_job():
    """Sync yesterday and today for every platform"""
    try:
        log.info("Starting scheduled latest sync...")
        results = await get_sync_service().sync_latest()
        errors = [key for key, value in results.items() if value.get("status") == "error"]
        if errors:
            log.warning(f"Scheduled sync finished with {len(errors)} errors: {', '.join(errors)}")
        else:
            log.info(f"Scheduled sync completed: {len(results)} platform-dates synced")
    except Exception as e:
        log.error(f"Scheduled sync error: {str(e)}")


def setup_scheduler():
    """Register scheduled jobs"""
    scheduler.add_job(
        sync_latest_job,
        trigger=IntervalTrigger(minutes=settings.sync_latest_interval_minutes),
        id="sync_latest",
        name="Latest metrics sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    log.info(f"Scheduled latest sync every {settings.sync_latest_interval_minutes} minutes")


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")
