"""
Google Ads connector

Daily account spend and conversion value through the Google Ads REST
search endpoint, authenticated with an OAuth refresh token.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.exceptions import TokenRefreshError, UpstreamError
from metrics_dashboard.schemas import AdDailyMetrics
from metrics_dashboard.utils.helpers import safe_divide
from metrics_dashboard.utils.logger import log

TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROS = Decimal(1_000_000)


@dataclass
class GoogleAdsConfig:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    developer_token: Optional[str] = None
    customer_id: Optional[str] = None
    login_customer_id: Optional[str] = None
    api_version: str = "v17"

    @classmethod
    def from_settings(cls, settings) -> "GoogleAdsConfig":
        return cls(
            client_id=settings.google_ads_client_id,
            client_secret=settings.google_ads_client_secret,
            refresh_token=settings.google_ads_refresh_token,
            developer_token=settings.google_ads_developer_token,
            customer_id=settings.google_ads_customer_id,
            login_customer_id=settings.google_ads_login_customer_id,
            api_version=settings.google_ads_api_version,
        )


def _metric(metrics: Dict[str, Any], camel: str, snake: str):
    # REST responses use camelCase; streamed/legacy payloads use snake_case
    value = metrics.get(camel)
    if value is None:
        value = metrics.get(snake)
    return value


class GoogleAdsConnector(BaseConnector):
    """Connector for Google Ads"""

    platform = "google"

    def validate_config(self):
        self._require(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            refresh_token=self.config.refresh_token,
            developer_token=self.config.developer_token,
            customer_id=self.config.customer_id,
        )

    def zero_metric(self, day: date) -> AdDailyMetrics:
        return AdDailyMetrics(date=day, platform=self.platform, is_fallback=True)

    @property
    def customer_id(self) -> str:
        return self.config.customer_id.replace("-", "")

    async def _refresh_access_token(self) -> Tuple[str, float]:
        try:
            response = await self._send(
                "POST",
                TOKEN_URL,
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "refresh_token": self.config.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            data = response.json()
            return data["access_token"], float(data.get("expires_in", 3600))
        except (UpstreamError, httpx.HTTPError, KeyError, ValueError) as e:
            raise TokenRefreshError(self.platform, f"failed to refresh access token: {e}")

    async def _get_headers(self) -> Dict[str, str]:
        access_token = await self.token_cache.get_token(self.platform, self._refresh_access_token)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "developer-token": self.config.developer_token,
            "Content-Type": "application/json",
        }
        if self.config.login_customer_id:
            headers["login-customer-id"] = self.config.login_customer_id.replace("-", "")
        return headers

    async def search(self, query: str):
        """Run a GAQL query and return every result row"""
        url = (
            f"https://googleads.googleapis.com/{self.config.api_version}"
            f"/customers/{self.customer_id}/googleAds:search"
        )
        headers = await self._get_headers()

        async def fetch_page(page_token):
            body = {"query": query}
            if page_token:
                body["pageToken"] = page_token
            data = await self._post_json(url, json=body, headers=headers)
            return data.get("results", []), data.get("nextPageToken")

        return await self._collect_pages(fetch_page, label="search results")

    async def _fetch_day(self, day: date) -> AdDailyMetrics:
        query = (
            "SELECT segments.date, metrics.cost_micros, metrics.conversions_value "
            f"FROM customer WHERE segments.date = '{day.isoformat()}'"
        )
        rows = await self.search(query)

        spend_micros = Decimal(0)
        conversion_value = 0.0
        for row in rows:
            metrics = row.get("metrics") or {}
            spend_micros += Decimal(str(_metric(metrics, "costMicros", "cost_micros") or 0))
            conversion_value += float(_metric(metrics, "conversionsValue", "conversions_value") or 0)

        spend = spend_micros / MICROS
        roas = safe_divide(conversion_value, float(spend))

        log.info(f"Google Ads {day}: ${spend:.2f} spend, {roas:.2f} ROAS")

        return AdDailyMetrics(date=day, platform=self.platform, spend=spend, roas=roas)
