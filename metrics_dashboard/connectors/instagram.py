"""
Instagram Graph API connector
"""
import asyncio
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Optional

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.schemas import SocialDailyMetrics
from metrics_dashboard.utils.helpers import day_bounds
from metrics_dashboard.utils.logger import log

INSIGHT_METRICS = ("reach", "impressions", "accounts_engaged")


@dataclass
class InstagramConfig:
    access_token: Optional[str] = None
    business_account_id: Optional[str] = None
    api_version: str = "v19.0"

    @classmethod
    def from_settings(cls, settings) -> "InstagramConfig":
        return cls(
            # The business account is usually reached through the Meta token
            access_token=settings.instagram_access_token or settings.meta_access_token,
            business_account_id=settings.instagram_business_account_id,
            api_version=settings.meta_api_version,
        )


class InstagramConnector(BaseConnector):
    """Followers and daily account insights for an Instagram business account"""

    platform = "instagram"

    def validate_config(self):
        self._require(
            access_token=self.config.access_token,
            business_account_id=self.config.business_account_id,
        )

    def zero_metric(self, day: date) -> SocialDailyMetrics:
        return SocialDailyMetrics(date=day, is_fallback=True)

    @property
    def base_url(self) -> str:
        return f"https://graph.facebook.com/{self.config.api_version}/{self.config.business_account_id}"

    async def get_followers(self) -> int:
        data = await self._get_json(
            self.base_url,
            params={"fields": "followers_count,media_count", "access_token": self.config.access_token},
        )
        return int(data["followers_count"])

    async def get_insights(self, day: date) -> Dict[str, int]:
        since, _ = day_bounds(day, self.tz_name)
        until, _ = day_bounds(day + timedelta(days=1), self.tz_name)
        data = await self._get_json(
            f"{self.base_url}/insights",
            params={
                "metric": ",".join(INSIGHT_METRICS),
                "period": "day",
                "since": int(since.timestamp()),
                "until": int(until.timestamp()),
                "access_token": self.config.access_token,
            },
        )

        values = {name: 0 for name in INSIGHT_METRICS}
        for item in data["data"]:
            points = item.get("values") or []
            if item.get("name") in values and points:
                values[item["name"]] = int(points[0].get("value") or 0)
        return values

    async def _fetch_day(self, day: date) -> SocialDailyMetrics:
        followers, insights = await asyncio.gather(self.get_followers(), self.get_insights(day))

        log.info(f"Instagram {day}: {followers} followers, {insights['reach']} reach")

        return SocialDailyMetrics(
            date=day,
            followers=followers,
            reach=insights["reach"],
            impressions=insights["impressions"],
            accounts_engaged=insights["accounts_engaged"],
        )
