"""
Sync orchestration tests with fake connectors and mocked platform transports.
"""
import asyncio
from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest

from metrics_dashboard.connectors import KlaviyoConfig, KlaviyoConnector, MetaAdsConfig, MetaAdsConnector
from metrics_dashboard.exceptions import ConfigurationError, UpstreamError
from metrics_dashboard.models import (
    AdPlatformDailyMetric,
    EmailDailyMetric,
    EmailDailySignups,
    ShopifyDailyMetric,
    ShopifyTopProduct,
)
from metrics_dashboard.schemas import (
    AdDailyMetrics,
    EmailDailyMetrics,
    StorefrontDailyMetrics,
    TopProductRow,
)
from metrics_dashboard.services.sync_service import SyncService

TODAY = date(2024, 3, 31)


def _run(coro):
    return asyncio.run(coro)


class FakeConnector:
    """Returns whatever ``build(day)`` produces and records requested days"""

    def __init__(self, build, signups=None):
        self.build = build
        self.signups = signups or {}
        self.days = []

    async def fetch_daily_metrics(self, day):
        self.days.append(day)
        return self.build(day)

    async def fetch_signups_in_range(self, start, end):
        return {day: n for day, n in self.signups.items() if start <= day <= end}


def _storefront(day, orders=10, revenue="500.00"):
    return StorefrontDailyMetrics(
        date=day, orders=orders, revenue=Decimal(revenue),
        top_products=[TopProductRow("1", "Shirt", quantity_sold=orders)]
    )


def _meta(day):
    return AdDailyMetrics(date=day, platform="meta", spend=Decimal("25.00"), roas=2.5)


def _broken(day):
    raise ConfigurationError("google", "missing refresh_token")


class FakeSleepNoop:
    async def __call__(self, seconds):
        return None


def _service(store, connectors, sleep=None, **kwargs):
    return SyncService(
        store,
        connectors,
        today=lambda: TODAY,
        sleep=sleep or FakeSleepNoop(),
        **kwargs
    )


class TestSyncDate:

    def test_resync_overwrites(self, store):
        day = date(2024, 3, 15)
        connector = FakeConnector(lambda d: _storefront(d))
        service = _service(store, {"shopify": connector})
        _run(service.sync_date("shopify", day))

        connector.build = lambda d: _storefront(d, orders=12, revenue="610.00")
        result = _run(service.sync_date("shopify", day))

        assert result == {"status": "synced", "orders": 12, "revenue": 610.0}
        rows = store.query_range(ShopifyDailyMetric, day, day)
        assert len(rows) == 1
        assert rows[0]["orders"] == 12
        assert rows[0]["revenue"] == Decimal("610.00")

    def test_fallback_keeps_top_products(self, store):
        day = date(2024, 3, 15)
        connector = FakeConnector(lambda d: _storefront(d))
        service = _service(store, {"shopify": connector})
        _run(service.sync_date("shopify", day))

        connector.build = lambda d: StorefrontDailyMetrics(date=d, is_fallback=True)
        result = _run(service.sync_date("shopify", day))

        assert result["fallback"] is True
        assert len(store.query_range(ShopifyTopProduct, day, day)) == 1
        assert store.query_range(ShopifyDailyMetric, day, day)[0]["orders"] == 10

    def test_subscriber_count_carried_forward(self, store):
        counts = {date(2024, 3, 1): 500, date(2024, 3, 2): None}
        connector = FakeConnector(
            lambda d: EmailDailyMetrics(date=d, emails_sent=10, subscriber_count=counts[d])
        )
        service = _service(store, {"klaviyo": connector})

        _run(service.sync_date("klaviyo", date(2024, 3, 1)))
        result = _run(service.sync_date("klaviyo", date(2024, 3, 2)))

        assert result["subscriber_count"] == 500
        row = store.query_range(EmailDailyMetric, date(2024, 3, 2), date(2024, 3, 2))[0]
        assert row["subscriber_count"] == 500


class TestSyncLatest:

    def test_yesterday_and_today_for_each_platform(self, store):
        service = _service(store, {
            "shopify": FakeConnector(_storefront),
            "meta": FakeConnector(_meta),
        })

        results = _run(service.sync_latest())

        assert set(results) == {
            "shopify_2024-03-30", "shopify_2024-03-31",
            "meta_2024-03-30", "meta_2024-03-31",
        }
        assert all(value["status"] == "synced" for value in results.values())
        assert len(store.query_range(AdPlatformDailyMetric, date(2024, 3, 30), TODAY)) == 2

    def test_one_platform_failing_does_not_stop_others(self, store):
        service = _service(store, {
            "shopify": FakeConnector(_storefront),
            "google": FakeConnector(_broken),
        })

        results = _run(service.sync_latest("all"))

        assert results["shopify_2024-03-31"]["status"] == "synced"
        assert results["google_2024-03-31"] == {
            "status": "error",
            "error": "ConfigurationError: google: missing refresh_token",
        }
        assert len(store.query_range(ShopifyDailyMetric, date(2024, 3, 30), TODAY)) == 2

    def test_single_platform(self, store):
        shopify = FakeConnector(_storefront)
        meta = FakeConnector(_meta)
        service = _service(store, {"shopify": shopify, "meta": meta})

        results = _run(service.sync_latest(["meta"]))

        assert set(results) == {"meta_2024-03-30", "meta_2024-03-31"}
        assert shopify.days == []

    def test_klaviyo_also_refreshes_signups(self, store):
        klaviyo = FakeConnector(
            lambda d: EmailDailyMetrics(date=d, subscriber_count=100),
            signups={date(2024, 3, 30): 2, date(2024, 3, 31): 5},
        )
        service = _service(store, {"klaviyo": klaviyo}, signup_lookback_days=7)

        results = _run(service.sync_latest())

        assert results["klaviyo_signups"] == {"status": "synced", "total": 7}
        rows = store.query_range(EmailDailySignups, date(2024, 3, 25), TODAY)
        assert len(rows) == 7

    def test_malformed_number_stored_as_zero_fallback(self, store):
        def handler(request):
            return httpx.Response(200, json={"data": [{"spend": "N/A"}]})

        meta = MetaAdsConnector(
            MetaAdsConfig(access_token="token", ad_account_id="42"),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            tz_name="America/New_York",
        )
        service = _service(store, {"meta": meta})

        results = _run(service.sync_latest(["meta"]))

        assert results["meta_2024-03-31"]["status"] == "synced"
        assert results["meta_2024-03-31"]["fallback"] is True
        rows = store.query_range(AdPlatformDailyMetric, date(2024, 3, 30), TODAY)
        assert len(rows) == 2
        assert all(row["spend"] == 0 and row["sync_status"] == "fallback" for row in rows)

    def test_unknown_platform_rejected(self, store):
        service = _service(store, {"shopify": FakeConnector(_storefront)})

        with pytest.raises(ValueError):
            _run(service.sync_latest(["myspace"]))


class TestBackfill:

    def test_batches_walk_newest_first(self, store, fake_sleep):
        connector = FakeConnector(_meta)
        service = _service(store, {"meta": connector}, sleep=fake_sleep, backfill_delay_seconds=0.1)

        offsets = []
        offset = 0
        while offset is not None:
            offsets.append(offset)
            result = _run(service.backfill("meta", days=90, offset=offset, batch_size=30))
            offset = result["progress"]["nextOffset"]

        assert offsets == [0, 30, 60]
        assert result["progress"] == {"processed": 90, "total": 90, "hasMore": False, "nextOffset": None}
        assert connector.days[0] == TODAY
        assert connector.days[-1] == TODAY - timedelta(days=89)
        assert len(set(connector.days)) == 90
        # Paced between dates, never before the first one of a batch
        assert fake_sleep.delays == [0.1] * 87

    def test_first_batch_progress(self, store):
        service = _service(store, {"meta": FakeConnector(_meta)})

        result = _run(service.backfill("meta", days=90, offset=0, batch_size=30))

        assert result["dateRange"] == {"from": "2024-03-02", "to": "2024-03-31"}
        assert result["progress"] == {"processed": 30, "total": 90, "hasMore": True, "nextOffset": 30}
        assert len(result["synced"]) == 30

    def test_explicit_range(self, store):
        connector = FakeConnector(_meta)
        service = _service(store, {"meta": connector})

        result = _run(service.backfill(
            "meta", start_date=date(2024, 1, 1), end_date=date(2024, 1, 10), batch_size=4
        ))

        assert connector.days == [date(2024, 1, 10), date(2024, 1, 9), date(2024, 1, 8), date(2024, 1, 7)]
        assert result["progress"]["total"] == 10
        assert result["progress"]["nextOffset"] == 4

    def test_default_is_thirty_days(self, store):
        service = _service(store, {"meta": FakeConnector(_meta)})

        result = _run(service.backfill("meta", batch_size=100))

        assert result["progress"]["total"] == 30
        assert result["progress"]["hasMore"] is False

    def test_errors_reported_per_date(self, store):
        def sometimes_broken(day):
            if day == date(2024, 3, 30):
                raise RuntimeError("boom")
            return _meta(day)

        service = _service(store, {"meta": FakeConnector(sometimes_broken)})

        result = _run(service.backfill("meta", days=3))

        assert result["synced"]["meta_2024-03-30"] == {"status": "error", "error": "RuntimeError: boom"}
        assert result["synced"]["meta_2024-03-31"]["status"] == "synced"
        assert result["synced"]["meta_2024-03-29"]["status"] == "synced"

    def test_all_platforms(self, store):
        service = _service(store, {
            "shopify": FakeConnector(_storefront),
            "meta": FakeConnector(_meta),
        })

        result = _run(service.backfill("all", days=2))

        assert set(result["synced"]) == {
            "shopify_2024-03-31", "shopify_2024-03-30", "meta_2024-03-31", "meta_2024-03-30",
        }

    def test_rerunning_a_batch_adds_no_rows(self, store):
        service = _service(store, {"meta": FakeConnector(_meta)})

        _run(service.backfill("meta", days=90, offset=0, batch_size=30))
        _run(service.backfill("meta", days=90, offset=0, batch_size=30))

        rows = store.query_range(AdPlatformDailyMetric, TODAY - timedelta(days=89), TODAY)
        assert len(rows) == 30

    def test_start_without_end_runs_through_today(self, store):
        connector = FakeConnector(_meta)
        service = _service(store, {"meta": connector})

        result = _run(service.backfill("meta", start_date=date(2024, 3, 28), days=90))

        assert connector.days == [date(2024, 3, 31), date(2024, 3, 30), date(2024, 3, 29), date(2024, 3, 28)]
        assert result["progress"]["total"] == 4


class TestEmailSignups:

    def test_missing_days_written_as_zero(self, store):
        klaviyo = FakeConnector(None, signups={date(2024, 1, 1): 3, date(2024, 1, 3): 5})
        service = _service(store, {"klaviyo": klaviyo})

        result = _run(service.backfill_email_signups(date(2024, 1, 1), date(2024, 1, 4)))

        assert result == {
            "synced": {"2024-01-01": 3, "2024-01-02": 0, "2024-01-03": 5, "2024-01-04": 0},
            "total": 8,
        }
        rows = store.query_range(EmailDailySignups, date(2024, 1, 1), date(2024, 1, 4), descending=False)
        assert [row["unique_signups"] for row in rows] == [3, 0, 5, 0]

    def test_capped_range_keeps_stored_counts(self, store):
        store.upsert_email_signups(date(2024, 3, 2), 50)

        def handler(request):
            return httpx.Response(200, json={
                "data": [{"attributes": {"created": "2024-03-01T14:00:00+00:00"}}] * 100,
                "links": {"next": "https://a.klaviyo.com/api/profiles?page%5Bcursor%5D=more"},
            })

        klaviyo = KlaviyoConnector(
            KlaviyoConfig(api_key="pk_test"),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            tz_name="America/New_York",
        )
        klaviyo.MAX_PAGINATED_RECORDS = 300
        service = _service(store, {"klaviyo": klaviyo})

        with pytest.raises(UpstreamError):
            _run(service.backfill_email_signups(date(2024, 3, 1), date(2024, 3, 2)))

        rows = store.query_range(EmailDailySignups, date(2024, 3, 1), date(2024, 3, 2))
        assert [(row["date"], row["unique_signups"]) for row in rows] == [(date(2024, 3, 2), 50)]
