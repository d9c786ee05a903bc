"""
Google Analytics 4 traffic provider

Used by the Shopify connector when store analytics return no sessions.
Never raises: any failure is logged and reported as 0 sessions.
"""
import asyncio
import json
from dataclasses import dataclass
from datetime import date
from typing import Optional

from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange,
    Metric,
    RunReportRequest,
)
from google.oauth2 import service_account

from metrics_dashboard.utils.logger import log


@dataclass
class GA4Config:
    property_id: Optional[str] = None
    credentials_json: Optional[str] = None  # service account key file content

    @classmethod
    def from_settings(cls, settings) -> "GA4Config":
        return cls(
            property_id=settings.ga4_property_id,
            credentials_json=settings.ga4_credentials,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.property_id and self.credentials_json)


class GA4TrafficProvider:
    """Sessions per day from a GA4 property"""

    def __init__(self, config: GA4Config, client: Optional[BetaAnalyticsDataClient] = None):
        self.config = config
        self.client = client

    def _get_client(self) -> BetaAnalyticsDataClient:
        if self.client is None:
            info = json.loads(self.config.credentials_json)
            credentials = service_account.Credentials.from_service_account_info(info)
            self.client = BetaAnalyticsDataClient(credentials=credentials)
        return self.client

    def _run_report(self, request: RunReportRequest):
        return self._get_client().run_report(request)

    async def get_sessions(self, day: date) -> int:
        """Sessions for one date, 0 when GA4 is not configured or fails"""
        if not self.config.is_configured:
            return 0

        request = RunReportRequest(
            property=f"properties/{self.config.property_id}",
            date_ranges=[DateRange(start_date=day.isoformat(), end_date=day.isoformat())],
            metrics=[Metric(name="sessions"), Metric(name="totalUsers")],
        )

        try:
            response = await asyncio.to_thread(self._run_report, request)
        except Exception as e:
            log.error(f"Error fetching GA4 sessions for {day}: {str(e)}")
            return 0

        if not response.rows:
            return 0

        return int(response.rows[0].metric_values[0].value or 0)
