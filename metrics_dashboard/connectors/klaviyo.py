"""
Klaviyo connector

Campaign sends, email engagement counts, live flows, subscriber totals
and daily new-profile signups.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytz
from dateutil import parser as date_parser

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.exceptions import UpstreamError
from metrics_dashboard.schemas import EmailDailyMetrics
from metrics_dashboard.utils.helpers import business_timezone, day_bounds, safe_divide
from metrics_dashboard.utils.logger import log

BASE_URL = "https://a.klaviyo.com/api"

# Profile paging cap for the subscriber count
SUBSCRIBER_COUNT_CAP = 100000

ENGAGEMENT_METRICS = {
    "emails_sent": "Received Email",
    "emails_opened": "Opened Email",
    "emails_clicked": "Clicked Email",
}


@dataclass
class KlaviyoConfig:
    api_key: Optional[str] = None
    revision: str = "2024-10-15"
    count_subscribers: bool = True

    @classmethod
    def from_settings(cls, settings) -> "KlaviyoConfig":
        return cls(
            api_key=settings.klaviyo_api_key,
            revision=settings.klaviyo_revision,
            count_subscribers=settings.klaviyo_count_subscribers,
        )


def _utc_iso(value: datetime) -> str:
    return value.astimezone(pytz.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class KlaviyoConnector(BaseConnector):
    """Connector for the Klaviyo REST API"""

    platform = "klaviyo"

    def __init__(self, config: KlaviyoConfig, **kwargs):
        super().__init__(config, **kwargs)
        self._metric_ids: Optional[Dict[str, str]] = None

    def validate_config(self):
        self._require(api_key=self.config.api_key)

    def zero_metric(self, day: date) -> EmailDailyMetrics:
        return EmailDailyMetrics(date=day, is_fallback=True)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Klaviyo-API-Key {self.config.api_key}",
            "revision": self.config.revision,
            "Accept": "application/json",
        }

    async def _paged(
        self,
        endpoint: str,
        params: Dict[str, str],
        cap: int,
        label: str,
        stop_after: Optional[Callable[[List[Dict[str, Any]]], bool]] = None
    ) -> List[Dict[str, Any]]:
        """Follow links.next until exhausted, ``cap`` records, or ``stop_after(page)`` is true"""
        records: List[Dict[str, Any]] = []
        url = f"{BASE_URL}{endpoint}"
        page_params = params

        while url:
            data = await self._get_json(url, params=page_params, headers=self.headers)
            page = data["data"]
            records.extend(page)
            if len(records) >= min(cap, self.MAX_PAGINATED_RECORDS):
                log.warning(f"Klaviyo: stopped paging {label} at {len(records)} records")
                break
            if stop_after and stop_after(page):
                break
            # links.next already carries the filter and cursor
            url = (data.get("links") or {}).get("next")
            page_params = None

        return records[:cap]

    # ------------------------------------------------------------------
    # Campaigns & flows
    # ------------------------------------------------------------------

    async def get_campaigns_sent_on(self, day: date) -> List[Dict[str, Any]]:
        """Email campaigns with status Sent whose send time falls on the business day"""
        tz = business_timezone(self.tz_name)
        day_start, _ = day_bounds(day, self.tz_name)

        def past_day(page):
            # Newest first: once a page ends before the day, later pages are older still
            send_time = (page[-1].get("attributes") or {}).get("send_time") if page else None
            return bool(send_time) and date_parser.isoparse(send_time) < day_start

        campaigns = await self._paged(
            "/campaigns",
            {"filter": 'equals(messages.channel,"email")', "sort": "-send_time"},
            cap=self.MAX_PAGINATED_RECORDS,
            label="campaigns",
            stop_after=past_day,
        )

        sent = []
        for campaign in campaigns:
            attributes = campaign.get("attributes") or {}
            send_time = attributes.get("send_time")
            if not send_time or attributes.get("status") != "Sent":
                continue
            if date_parser.isoparse(send_time).astimezone(tz).date() == day:
                sent.append(campaign)

        return sent

    async def get_active_flow_count(self) -> int:
        flows = await self._paged("/flows", {}, cap=self.MAX_PAGINATED_RECORDS, label="flows")
        return sum(
            1 for flow in flows
            if (flow.get("attributes") or {}).get("status") == "Live"
            and not (flow.get("attributes") or {}).get("archived")
        )

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------

    async def _get_metric_ids(self) -> Dict[str, str]:
        if self._metric_ids is None:
            metrics = await self._paged("/metrics", {}, cap=self.MAX_PAGINATED_RECORDS, label="metrics")
            self._metric_ids = {
                (m.get("attributes") or {}).get("name"): m["id"] for m in metrics
            }
        return self._metric_ids

    async def get_metric_count(self, metric_name: str, day: date) -> int:
        """Daily count of one event metric, 0 when the metric does not exist"""
        metric_ids = await self._get_metric_ids()
        metric_id = metric_ids.get(metric_name)
        if not metric_id:
            log.warning(f"Klaviyo metric not found: {metric_name}")
            return 0

        next_day = day + timedelta(days=1)
        body = {
            "data": {
                "type": "metric-aggregate",
                "attributes": {
                    "metric_id": metric_id,
                    "measurements": ["count"],
                    "interval": "day",
                    "filter": [
                        f"greater-or-equal(datetime,{day.isoformat()}T00:00:00)",
                        f"less-than(datetime,{next_day.isoformat()}T00:00:00)",
                    ],
                    "timezone": self.tz_name or business_timezone().zone,
                },
            }
        }
        data = await self._post_json(
            f"{BASE_URL}/metric-aggregates",
            json=body,
            headers={**self.headers, "Content-Type": "application/json"},
        )

        series = ((data.get("data") or {}).get("attributes") or {}).get("data") or []
        if not series:
            return 0
        counts = (series[0].get("measurements") or {}).get("count") or []
        return int(sum(counts))

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_subscriber_count(self) -> Optional[int]:
        """Total profiles in the account, None when counting is disabled or fails"""
        if not self.config.count_subscribers:
            return None
        try:
            profiles = await self._paged(
                "/profiles",
                {"page[size]": "100", "fields[profile]": "id"},
                cap=SUBSCRIBER_COUNT_CAP,
                label="profiles",
            )
        except (UpstreamError, httpx.HTTPError, KeyError, ValueError) as e:
            log.error(f"Failed to get Klaviyo subscriber count: {str(e)}")
            return None
        return len(profiles)

    async def fetch_signups_in_range(self, start_day: date, end_day: date) -> Dict[date, int]:
        """
        Profiles created per business day over an inclusive range, in one paginated pass.

        Raises UpstreamError if paging hits the record cap.
        """
        self.validate_config()
        start, _ = day_bounds(start_day, self.tz_name)
        end, _ = day_bounds(end_day + timedelta(days=1), self.tz_name)
        profiles = await self._paged(
            "/profiles",
            {
                "filter": f"greater-or-equal(created,{_utc_iso(start)}),less-than(created,{_utc_iso(end)})",
                "page[size]": "100",
                "fields[profile]": "created",
            },
            cap=self.MAX_PAGINATED_RECORDS,
            label="signups",
        )
        if len(profiles) >= self.MAX_PAGINATED_RECORDS:
            raise UpstreamError(
                self.platform,
                f"signups for {start_day} to {end_day} reached {self.MAX_PAGINATED_RECORDS} profiles; "
                f"backfill a shorter range",
            )

        tz = business_timezone(self.tz_name)
        by_date: Dict[date, int] = defaultdict(int)
        for profile in profiles:
            created = (profile.get("attributes") or {}).get("created")
            if created:
                by_date[date_parser.isoparse(created).astimezone(tz).date()] += 1

        return dict(by_date)

    # ------------------------------------------------------------------
    # Daily metrics
    # ------------------------------------------------------------------

    async def _fetch_day(self, day: date) -> EmailDailyMetrics:
        campaigns, active_flows, subscriber_count, *counts = await asyncio.gather(
            self.get_campaigns_sent_on(day),
            self.get_active_flow_count(),
            self.get_subscriber_count(),
            *(self.get_metric_count(name, day) for name in ENGAGEMENT_METRICS.values()),
        )
        engagement = dict(zip(ENGAGEMENT_METRICS.keys(), counts))

        sent = engagement["emails_sent"]
        open_rate = safe_divide(engagement["emails_opened"], sent) * 100
        click_rate = safe_divide(engagement["emails_clicked"], sent) * 100

        log.info(
            f"Klaviyo {day}: {len(campaigns)} campaigns, {sent} emails sent, "
            f"{active_flows} live flows, subscribers={subscriber_count}"
        )

        return EmailDailyMetrics(
            date=day,
            campaigns_sent=len(campaigns),
            emails_sent=sent,
            emails_opened=engagement["emails_opened"],
            emails_clicked=engagement["emails_clicked"],
            open_rate=open_rate,
            click_rate=click_rate,
            active_flows=active_flows,
            subscriber_count=subscriber_count,
        )
