"""
Data Synchronization Service

Orchestrates fetching daily metrics from every platform and persisting them.

Two modes write the same schema:
- latest: yesterday and today for each platform, all platforms concurrently
- backfill: a bounded, resumable batch of dates for one platform, paced
"""
import asyncio
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from metrics_dashboard.connectors import (
    BaseConnector,
    GA4Config,
    GA4TrafficProvider,
    GoogleAdsConfig,
    GoogleAdsConnector,
    InstagramConfig,
    InstagramConnector,
    KlaviyoConfig,
    KlaviyoConnector,
    MetaAdsConfig,
    MetaAdsConnector,
    ShopifyConfig,
    ShopifyConnector,
    SnapchatAdsConfig,
    SnapchatAdsConnector,
    TikTokAdsConfig,
    TikTokAdsConnector,
)
from metrics_dashboard.models import EmailDailyMetric
from metrics_dashboard.schemas import (
    AdDailyMetrics,
    EmailDailyMetrics,
    SocialDailyMetrics,
    StorefrontDailyMetrics,
)
from metrics_dashboard.services.metrics_store import MetricsStore
from metrics_dashboard.utils.helpers import business_today, date_range, money_float
from metrics_dashboard.utils.logger import log
from metrics_dashboard.utils.paced_queue import PacedTaskQueue
from metrics_dashboard.utils.token_cache import TokenCache

AD_PLATFORMS = ("meta", "google", "tiktok", "snapchat")
PLATFORMS = ("shopify",) + AD_PLATFORMS + ("klaviyo", "instagram")

DEFAULT_BACKFILL_DAYS = 30


@dataclass
class SyncResult:
    """Tracks one platform's sync pass for logging"""
    source: str
    sync_type: str = "latest"
    status: str = "success"  # success, failed, partial
    records_processed: int = 0
    records_failed: int = 0
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)


@contextmanager
def track_sync(source: str, sync_type: str = "latest"):
    """
    Context manager to track sync timing and outcome.

    Usage:
        with track_sync("shopify", "backfill") as result:
            # do sync work
            result.records_processed = 30
    """
    result = SyncResult(source=source, sync_type=sync_type)
    result.started_at = datetime.utcnow()
    start_time = time.time()

    try:
        yield result
    finally:
        result.duration_seconds = time.time() - start_time
        if result.records_failed and result.records_failed >= result.records_processed:
            result.status = "failed"
        elif result.records_failed:
            result.status = "partial"

        message = (
            f"{sync_type} sync for {source}: {result.status}, "
            f"{result.records_processed} dates, {result.records_failed} failed "
            f"in {result.duration_seconds:.2f}s"
        )
        if result.status == "success":
            log.info(message)
        else:
            log.warning(message)


def _error(e: Exception) -> Dict[str, str]:
    return {"status": "error", "error": f"{type(e).__name__}: {e}"}


class SyncService:
    """Fetch-and-store orchestration across all platforms"""

    def __init__(
        self,
        store: MetricsStore,
        connectors: Dict[str, BaseConnector],
        backfill_delay_seconds: float = 0.1,
        signup_lookback_days: int = 7,
        tz_name: Optional[str] = None,
        today: Optional[Callable[[], date]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep
    ):
        self.store = store
        self.connectors = connectors
        self.backfill_delay_seconds = backfill_delay_seconds
        self.signup_lookback_days = signup_lookback_days
        self.tz_name = tz_name
        self._today = today or (lambda: business_today(self.tz_name))
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings,
        store: MetricsStore,
        token_cache: Optional[TokenCache] = None,
        client=None
    ) -> "SyncService":
        """Wire every platform connector from application settings"""
        token_cache = token_cache or TokenCache()
        common = {
            "token_cache": token_cache,
            "client": client,
            "timeout": settings.http_timeout_seconds,
            "tz_name": settings.business_timezone,
        }

        connectors: Dict[str, BaseConnector] = {
            "shopify": ShopifyConnector(
                ShopifyConfig.from_settings(settings),
                oauth_token_loader=store.get_oauth_token,
                traffic_provider=GA4TrafficProvider(GA4Config.from_settings(settings)),
                **common
            ),
            "meta": MetaAdsConnector(MetaAdsConfig.from_settings(settings), **common),
            "google": GoogleAdsConnector(GoogleAdsConfig.from_settings(settings), **common),
            "tiktok": TikTokAdsConnector(TikTokAdsConfig.from_settings(settings), **common),
            "snapchat": SnapchatAdsConnector(SnapchatAdsConfig.from_settings(settings), **common),
            "klaviyo": KlaviyoConnector(KlaviyoConfig.from_settings(settings), **common),
            "instagram": InstagramConnector(InstagramConfig.from_settings(settings), **common),
        }

        return cls(
            store,
            connectors,
            backfill_delay_seconds=settings.backfill_delay_seconds,
            signup_lookback_days=settings.klaviyo_signup_lookback_days,
            tz_name=settings.business_timezone,
        )

    def today(self) -> date:
        """Current business date"""
        return self._today()

    def resolve_platforms(self, platform: Optional[str]) -> List[str]:
        """'all' (or None) expands to every configured platform"""
        if platform in (None, "all"):
            return [p for p in PLATFORMS if p in self.connectors]
        if platform not in self.connectors:
            raise ValueError(f"Unknown platform: {platform}")
        return [platform]

    # ------------------------------------------------------------------
    # Per-date fetch + write
    # ------------------------------------------------------------------

    def _store_storefront(self, metrics: StorefrontDailyMetrics) -> Dict[str, Any]:
        self.store.upsert_storefront(metrics)
        # A failed fetch must not wipe the day's existing product snapshot
        if not metrics.is_fallback:
            self.store.replace_top_products(metrics.date, metrics.top_products)
        return {"orders": metrics.orders, "revenue": money_float(metrics.revenue)}

    def _store_ads(self, metrics: AdDailyMetrics) -> Dict[str, Any]:
        self.store.upsert_ad_metrics(metrics)
        return {"spend": money_float(metrics.spend)}

    def _store_email(self, metrics: EmailDailyMetrics) -> Dict[str, Any]:
        if metrics.subscriber_count is None and not metrics.is_fallback:
            # Subscriber counting disabled or failed: carry the last known gauge forward
            metrics.subscriber_count = self.store.latest_value(
                EmailDailyMetric, "subscriber_count", metrics.date
            )
        self.store.upsert_email_metrics(metrics)
        return {"emails_sent": metrics.emails_sent, "subscriber_count": metrics.subscriber_count}

    def _store_social(self, metrics: SocialDailyMetrics) -> Dict[str, Any]:
        self.store.upsert_social(metrics)
        return {"followers": metrics.followers}

    def _write(self, platform: str, metrics) -> Dict[str, Any]:
        if platform == "shopify":
            summary = self._store_storefront(metrics)
        elif platform in AD_PLATFORMS:
            summary = self._store_ads(metrics)
        elif platform == "klaviyo":
            summary = self._store_email(metrics)
        elif platform == "instagram":
            summary = self._store_social(metrics)
        else:
            raise ValueError(f"Unknown platform: {platform}")

        if metrics.is_fallback:
            summary["fallback"] = True
        return summary

    async def sync_date(self, platform: str, day: date) -> Dict[str, Any]:
        """
        Fetch one platform for one date and store it.

        Raises on configuration, token or persistence errors; upstream
        failures arrive here as a zero-valued fallback metric.
        """
        metrics = await self.connectors[platform].fetch_daily_metrics(day)
        summary = await asyncio.to_thread(self._write, platform, metrics)
        return {"status": "synced", **summary}

    # ------------------------------------------------------------------
    # Latest mode
    # ------------------------------------------------------------------

    async def _sync_platform_dates(self, platform: str, days: Iterable[date]) -> Dict[str, Any]:
        results = {}
        with track_sync(platform, "latest") as tracked:
            for day in days:
                tracked.records_processed += 1
                key = f"{platform}_{day.isoformat()}"
                try:
                    results[key] = await self.sync_date(platform, day)
                except Exception as e:
                    log.error(f"{platform} sync error for {day}: {e}")
                    tracked.records_failed += 1
                    results[key] = _error(e)
        return results

    async def sync_email_signups(self, lookback_days: Optional[int] = None) -> Dict[str, Any]:
        """Refresh daily signups for the trailing window ending today"""
        lookback_days = lookback_days or self.signup_lookback_days
        today = self._today()
        return await self.backfill_email_signups(today - timedelta(days=lookback_days - 1), today)

    async def sync_latest(self, platforms: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Sync yesterday and today for each platform.

        Platforms run concurrently and are isolated from each other's failures.
        Returns {"<platform>_<date>": {"status": "synced", ...} | {"status": "error", "error": ...}}
        """
        if isinstance(platforms, str):
            platforms = [platforms]
        platforms = [p for name in (platforms or ["all"]) for p in self.resolve_platforms(name)]
        today = self._today()
        days = [today - timedelta(days=1), today]

        log.info(f"Starting latest sync for {', '.join(platforms)} ({days[0]} to {days[1]})")

        results: Dict[str, Any] = {}
        per_platform = await asyncio.gather(
            *(self._sync_platform_dates(platform, days) for platform in platforms)
        )
        for platform_results in per_platform:
            results.update(platform_results)

        if "klaviyo" in platforms:
            try:
                signups = await self.sync_email_signups()
                results["klaviyo_signups"] = {"status": "synced", "total": signups["total"]}
            except Exception as e:
                log.error(f"Klaviyo signup sync error: {e}")
                results["klaviyo_signups"] = _error(e)

        return results

    # ------------------------------------------------------------------
    # Backfill mode
    # ------------------------------------------------------------------

    def _backfill_dates(
        self,
        start_date: Optional[date],
        end_date: Optional[date],
        days: Optional[int]
    ) -> List[date]:
        """Dates to backfill, newest first"""
        if start_date:
            return list(reversed(date_range(start_date, end_date or self._today())))

        end = end_date or self._today()
        days = days or DEFAULT_BACKFILL_DAYS
        return [end - timedelta(days=i) for i in range(days)]

    async def _backfill_platform(self, platform: str, batch: List[date]) -> Dict[str, Any]:
        queue = PacedTaskQueue(delay_seconds=self.backfill_delay_seconds, sleep=self._sleep)
        results = {}

        with track_sync(platform, "backfill") as tracked:
            outcomes = await queue.run(batch, lambda day: self.sync_date(platform, day))
            for day, summary, error in outcomes:
                tracked.records_processed += 1
                key = f"{platform}_{day.isoformat()}"
                if error is not None:
                    log.error(f"{platform} backfill error for {day}: {error}")
                    tracked.records_failed += 1
                    results[key] = _error(error)
                else:
                    results[key] = summary

        return results

    async def backfill(
        self,
        platform: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        days: Optional[int] = None,
        offset: int = 0,
        batch_size: int = 30
    ) -> Dict[str, Any]:
        """
        Process one resumable batch of dates.

        Dates run newest first. Call again with progress["nextOffset"] until
        progress["hasMore"] is false. Re-running a batch is safe.
        """
        platforms = self.resolve_platforms(platform)
        dates = self._backfill_dates(start_date, end_date, days)
        offset = max(offset, 0)
        batch = dates[offset:offset + batch_size]

        log.info(
            f"Backfill {platform}: {len(batch)} dates from offset {offset} of {len(dates)}"
        )

        synced: Dict[str, Any] = {}
        per_platform = await asyncio.gather(
            *(self._backfill_platform(p, batch) for p in platforms)
        )
        for platform_results in per_platform:
            synced.update(platform_results)

        processed = offset + len(batch)
        has_more = processed < len(dates)

        return {
            "synced": synced,
            "dateRange": {
                "from": batch[-1].isoformat() if batch else None,
                "to": batch[0].isoformat() if batch else None,
            },
            "progress": {
                "processed": min(processed, len(dates)),
                "total": len(dates),
                "hasMore": has_more,
                "nextOffset": processed if has_more else None,
            },
        }

    async def backfill_email_signups(self, start_date: date, end_date: date) -> Dict[str, Any]:
        """
        Store daily signups for a range from one paginated pass.

        Days with no new profiles are written as 0.
        """
        connector = self.connectors["klaviyo"]
        by_date = await connector.fetch_signups_in_range(start_date, end_date)

        def write():
            for day in date_range(start_date, end_date):
                self.store.upsert_email_signups(day, by_date.get(day, 0))

        await asyncio.to_thread(write)

        total = sum(by_date.get(day, 0) for day in date_range(start_date, end_date))
        log.info(f"Stored Klaviyo signups for {start_date} to {end_date}: {total} total")

        return {
            "synced": {day.isoformat(): by_date.get(day, 0) for day in date_range(start_date, end_date)},
            "total": total,
        }
