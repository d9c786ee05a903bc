"""
TikTok Ads connector
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.exceptions import UpstreamError
from metrics_dashboard.schemas import AdDailyMetrics
from metrics_dashboard.utils.helpers import safe_divide
from metrics_dashboard.utils.logger import log

BASE_URL = "https://business-api.tiktok.com/open_api/v1.3"
PAGE_SIZE = 100


@dataclass
class TikTokAdsConfig:
    access_token: Optional[str] = None
    advertiser_id: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "TikTokAdsConfig":
        return cls(
            access_token=settings.tiktok_access_token,
            advertiser_id=settings.tiktok_advertiser_id,
        )


class TikTokAdsConnector(BaseConnector):
    """Connector for the TikTok Business API integrated report"""

    platform = "tiktok"

    def validate_config(self):
        self._require(access_token=self.config.access_token, advertiser_id=self.config.advertiser_id)

    def zero_metric(self, day: date) -> AdDailyMetrics:
        return AdDailyMetrics(date=day, platform=self.platform, is_fallback=True)

    async def _report_page(self, day: date, page: int) -> Dict[str, Any]:
        body = {
            "advertiser_id": self.config.advertiser_id,
            "report_type": "BASIC",
            "data_level": "AUCTION_ADVERTISER",
            "dimensions": ["stat_time_day"],
            "metrics": ["spend", "complete_payment_roas", "reach"],
            "start_date": day.isoformat(),
            "end_date": day.isoformat(),
            "page": page,
            "page_size": PAGE_SIZE,
        }
        data = await self._post_json(
            f"{BASE_URL}/report/integrated/get/",
            json=body,
            headers={"Access-Token": self.config.access_token, "Content-Type": "application/json"},
        )

        # TikTok reports failures in-band with HTTP 200
        if data.get("code") != 0:
            raise UpstreamError(self.platform, data.get("message") or "unknown error")

        return data.get("data") or {}

    async def get_report(self, day: date) -> List[Dict[str, Any]]:
        async def fetch_page(page):
            page = page or 1
            data = await self._report_page(day, page)
            total_pages = int((data.get("page_info") or {}).get("total_page") or 1)
            next_page = page + 1 if page < total_pages else None
            return data.get("list") or [], next_page

        return await self._collect_pages(fetch_page, label="report rows")

    async def _fetch_day(self, day: date) -> AdDailyMetrics:
        rows = await self.get_report(day)

        spend = Decimal(0)
        reach = 0
        revenue = 0.0
        for row in rows:
            metrics = row.get("metrics") or {}
            row_spend = Decimal(str(metrics.get("spend") or 0))
            spend += row_spend
            reach += int(float(metrics.get("reach") or 0))
            revenue += float(metrics.get("complete_payment_roas") or 0) * float(row_spend)

        roas = safe_divide(revenue, float(spend))

        log.info(f"TikTok {day}: ${spend:.2f} spend, {roas:.2f} ROAS")

        return AdDailyMetrics(date=day, platform=self.platform, spend=spend, roas=roas, paid_reach=reach)
