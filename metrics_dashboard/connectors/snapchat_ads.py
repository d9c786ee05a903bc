"""
Snapchat Ads connector

Stats are reported in micro-currency. The access token is either static or
refreshed from a refresh token and cached.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.exceptions import TokenRefreshError, UpstreamError
from metrics_dashboard.schemas import AdDailyMetrics
from metrics_dashboard.utils.helpers import day_bounds, safe_divide
from metrics_dashboard.utils.logger import log

BASE_URL = "https://adsapi.snapchat.com/v1"
TOKEN_URL = "https://accounts.snapchat.com/login/oauth2/access_token"
MICROS = Decimal(1_000_000)


@dataclass
class SnapchatAdsConfig:
    access_token: Optional[str] = None
    ad_account_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "SnapchatAdsConfig":
        return cls(
            access_token=settings.snapchat_access_token,
            ad_account_id=settings.snapchat_ad_account_id,
            client_id=settings.snapchat_client_id,
            client_secret=settings.snapchat_client_secret,
            refresh_token=settings.snapchat_refresh_token,
        )

    @property
    def can_refresh(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)


class SnapchatAdsConnector(BaseConnector):
    """Connector for the Snapchat Marketing API"""

    platform = "snapchat"

    def validate_config(self):
        self._require(ad_account_id=self.config.ad_account_id)
        if not (self.config.access_token or self.config.can_refresh):
            self._require(access_token=self.config.access_token)

    def zero_metric(self, day: date) -> AdDailyMetrics:
        return AdDailyMetrics(date=day, platform=self.platform, is_fallback=True)

    async def _refresh_access_token(self) -> Tuple[str, float]:
        try:
            response = await self._send(
                "POST",
                TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "refresh_token": self.config.refresh_token,
                },
            )
            data = response.json()
            return data["access_token"], float(data.get("expires_in", 1800))
        except (UpstreamError, httpx.HTTPError, KeyError, ValueError) as e:
            raise TokenRefreshError(self.platform, f"failed to refresh access token: {e}")

    async def get_access_token(self) -> str:
        if self.config.can_refresh:
            return await self.token_cache.get_token(self.platform, self._refresh_access_token)
        return self.config.access_token

    async def get_stats(self, day: date) -> List[Dict[str, Any]]:
        # Snapchat requires whole-hour boundaries, so the window ends at next midnight
        start, _ = day_bounds(day, self.tz_name)
        end, _ = day_bounds(day + timedelta(days=1), self.tz_name)
        access_token = await self.get_access_token()

        data = await self._get_json(
            f"{BASE_URL}/adaccounts/{self.config.ad_account_id}/stats",
            params={
                "granularity": "TOTAL",
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "fields": "spend,total_purchases_value",
            },
            headers={"Authorization": f"Bearer {access_token}"},
        )

        return [item["total_stat"] for item in data.get("total_stats") or [] if "total_stat" in item]

    async def _fetch_day(self, day: date) -> AdDailyMetrics:
        stats = await self.get_stats(day)

        spend_micros = Decimal(0)
        value_micros = Decimal(0)
        for stat in stats:
            values = stat.get("stats") or stat
            spend_micros += Decimal(str(values.get("spend") or 0))
            value_micros += Decimal(str(values.get("total_purchases_value") or 0))

        spend = spend_micros / MICROS
        purchase_value = value_micros / MICROS
        roas = safe_divide(float(purchase_value), float(spend))

        log.info(f"Snapchat {day}: ${spend:.2f} spend, {roas:.2f} ROAS")

        return AdDailyMetrics(date=day, platform=self.platform, spend=spend, roas=roas)
