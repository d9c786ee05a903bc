"""
Meta (Facebook) Ads connector
"""
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.schemas import AdDailyMetrics
from metrics_dashboard.utils.helpers import safe_divide
from metrics_dashboard.utils.logger import log


@dataclass
class MetaAdsConfig:
    access_token: Optional[str] = None
    ad_account_id: Optional[str] = None
    api_version: str = "v19.0"

    @classmethod
    def from_settings(cls, settings) -> "MetaAdsConfig":
        return cls(
            access_token=settings.meta_access_token,
            ad_account_id=settings.meta_ad_account_id,
            api_version=settings.meta_api_version,
        )


def _roas_value(insight: Dict[str, Any]) -> float:
    """ROAS can be in different fields depending on pixel setup"""
    for field_name in ("purchase_roas", "website_purchase_roas"):
        values = insight.get(field_name) or []
        if values:
            return float(values[0].get("value") or 0)
    return 0.0


class MetaAdsConnector(BaseConnector):
    """Connector for the Meta Marketing API insights edge"""

    platform = "meta"

    def validate_config(self):
        self._require(access_token=self.config.access_token, ad_account_id=self.config.ad_account_id)

    def zero_metric(self, day: date) -> AdDailyMetrics:
        return AdDailyMetrics(date=day, platform=self.platform, is_fallback=True)

    @property
    def account_id(self) -> str:
        account_id = self.config.ad_account_id
        return account_id if account_id.startswith("act_") else f"act_{account_id}"

    async def get_insights(self, day: date) -> List[Dict[str, Any]]:
        first_url = f"https://graph.facebook.com/{self.config.api_version}/{self.account_id}/insights"
        params = {
            "fields": "spend,reach,purchase_roas,website_purchase_roas",
            "time_range": json.dumps({"since": day.isoformat(), "until": day.isoformat()}),
            "level": "account",
            "access_token": self.config.access_token,
        }

        async def fetch_page(next_url):
            if next_url:
                # paging.next already carries every query parameter
                data = await self._get_json(next_url)
            else:
                data = await self._get_json(first_url, params=params)
            return data["data"], (data.get("paging") or {}).get("next")

        return await self._collect_pages(fetch_page, label="insights")

    async def _fetch_day(self, day: date) -> AdDailyMetrics:
        insights = await self.get_insights(day)

        spend = Decimal(0)
        reach = 0
        weighted_roas = 0.0
        for insight in insights:
            row_spend = Decimal(str(insight.get("spend") or 0))
            spend += row_spend
            reach += int(insight.get("reach") or 0)
            weighted_roas += _roas_value(insight) * float(row_spend)

        if len(insights) == 1:
            roas = _roas_value(insights[0])
        else:
            roas = safe_divide(weighted_roas, float(spend))

        log.info(f"Meta {day}: ${spend:.2f} spend, {roas:.2f} ROAS, {reach} reach")

        return AdDailyMetrics(date=day, platform=self.platform, spend=spend, roas=roas, paid_reach=reach)
