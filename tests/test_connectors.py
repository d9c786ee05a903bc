"""
Connector tests against mocked HTTP transports.

No network: every connector gets an httpx.AsyncClient backed by
httpx.MockTransport, and retries sleep through a recorder.
"""
import asyncio
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from metrics_dashboard.connectors import (
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
from metrics_dashboard.exceptions import ConfigurationError, TokenRefreshError, UpstreamError
from metrics_dashboard.utils.token_cache import TokenCache

DAY = date(2024, 3, 15)
TZ = "America/New_York"


def _run(coro):
    return asyncio.run(coro)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _no_sleep(seconds):
    return None


def _google(handler, **kwargs):
    config = GoogleAdsConfig(
        client_id="id", client_secret="secret", refresh_token="refresh",
        developer_token="dev", customer_id="123-456-7890",
    )
    return GoogleAdsConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ, **kwargs)


def _meta(handler):
    config = MetaAdsConfig(access_token="token", ad_account_id="42")
    return MetaAdsConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ)


def _tiktok(handler):
    config = TikTokAdsConfig(access_token="token", advertiser_id="7")
    return TikTokAdsConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ)


class TestGoogleAds:

    def test_micros_converted_and_token_cached(self):
        calls = {"token": 0, "search": 0}

        def handler(request):
            if request.url.host == "oauth2.googleapis.com":
                calls["token"] += 1
                return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})
            calls["search"] += 1
            assert request.url.path.endswith("/customers/1234567890/googleAds:search")
            assert request.headers["authorization"] == "Bearer abc"
            assert request.headers["developer-token"] == "dev"
            return httpx.Response(200, json={
                "results": [{"metrics": {"costMicros": "12500000", "conversionsValue": 50.0}}]
            })

        connector = _google(handler)

        first = _run(connector.fetch_daily_metrics(DAY))
        _run(connector.fetch_daily_metrics(DAY))

        assert first.platform == "google"
        assert first.spend == Decimal("12.5")
        assert first.roas == pytest.approx(4.0)
        assert first.is_fallback is False
        assert calls == {"token": 1, "search": 2}

    def test_zero_spend_gives_zero_roas(self):
        def handler(request):
            if request.url.host == "oauth2.googleapis.com":
                return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})
            return httpx.Response(200, json={"results": []})

        result = _run(_google(handler).fetch_daily_metrics(DAY))

        assert result.spend == 0
        assert result.roas == 0.0

    def test_token_refresh_failure_propagates(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(TokenRefreshError):
            _run(_google(handler).fetch_daily_metrics(DAY))

    def test_non_dict_rows_fall_back(self):
        def handler(request):
            if request.url.host == "oauth2.googleapis.com":
                return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})
            return httpx.Response(200, json={"results": ["unexpected"]})

        result = _run(_google(handler).fetch_daily_metrics(DAY))

        assert result.is_fallback is True
        assert result.spend == 0


class TestMetaAds:

    def test_missing_credentials_raise(self):
        connector = MetaAdsConnector(MetaAdsConfig(access_token="token"))

        with pytest.raises(ConfigurationError) as excinfo:
            _run(connector.fetch_daily_metrics(DAY))
        assert "ad_account_id" in str(excinfo.value)

    def test_server_error_retried_then_falls_back(self):
        attempts = []

        def handler(request):
            attempts.append(request.url)
            return httpx.Response(500, text="internal error")

        result = _run(_meta(handler).fetch_daily_metrics(DAY))

        assert len(attempts) == 3
        assert result.is_fallback is True
        assert result.spend == 0

    def test_insights_parsed(self):
        def handler(request):
            assert request.url.path == "/v19.0/act_42/insights"
            assert json.loads(request.url.params["time_range"]) == {"since": "2024-03-15", "until": "2024-03-15"}
            return httpx.Response(200, json={"data": [{
                "spend": "80.25",
                "reach": "1500",
                "purchase_roas": [{"action_type": "omni_purchase", "value": "3.2"}],
            }]})

        result = _run(_meta(handler).fetch_daily_metrics(DAY))

        assert result.spend == Decimal("80.25")
        assert result.paid_reach == 1500
        assert result.roas == pytest.approx(3.2)

    def test_pagination_stops_at_cap(self):
        def handler(request):
            return httpx.Response(200, json={
                "data": [{"spend": "1"}, {"spend": "1"}],
                "paging": {"next": "https://graph.facebook.com/v19.0/act_42/insights?after=x"},
            })

        connector = _meta(handler)
        connector.MAX_PAGINATED_RECORDS = 5

        insights = _run(connector.get_insights(DAY))

        assert len(insights) == 5

    def test_unparseable_spend_falls_back(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"spend": "N/A", "reach": "10"}]})

        result = _run(_meta(handler).fetch_daily_metrics(DAY))

        assert result.is_fallback is True
        assert result.spend == 0
        assert result.paid_reach == 0


class TestTikTokAds:

    def test_in_band_error_falls_back_without_retry(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(200, json={"code": 40001, "message": "invalid advertiser"})

        result = _run(_tiktok(handler).fetch_daily_metrics(DAY))

        assert len(attempts) == 1
        assert result.is_fallback is True

    def test_pages_combined_with_weighted_roas(self):
        def handler(request):
            page = json.loads(request.content)["page"]
            rows = {
                1: [{"metrics": {"spend": "30.00", "complete_payment_roas": "2.0", "reach": "100"}}],
                2: [{"metrics": {"spend": "10.00", "complete_payment_roas": "6.0", "reach": "50"}}],
            }[page]
            return httpx.Response(200, json={
                "code": 0,
                "data": {"list": rows, "page_info": {"page": page, "total_page": 2}},
            })

        result = _run(_tiktok(handler).fetch_daily_metrics(DAY))

        assert result.spend == Decimal("40.00")
        assert result.paid_reach == 150
        # (30 * 2 + 10 * 6) / 40
        assert result.roas == pytest.approx(3.0)


class TestShopify:

    def _connector(self, handler, **kwargs):
        config = ShopifyConfig(store_domain="https://demo.myshopify.com/", access_token="static")
        return ShopifyConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ, **kwargs)

    def test_orders_paged_and_traffic_estimated(self):
        seen_tokens = set()

        def handler(request):
            seen_tokens.add(request.headers.get("x-shopify-access-token"))
            path = request.url.path
            if path.endswith("/orders.json"):
                if "page_info" in request.url.params:
                    return httpx.Response(200, json={"orders": [{
                        "total_price": "40.00",
                        "created_at": "2024-03-15T12:00:00-04:00",
                        "customer": {"orders_count": 5, "created_at": "2023-01-01T00:00:00-05:00"},
                        "line_items": [{"product_id": 2, "title": "Hat", "quantity": 1}],
                    }]})
                assert request.url.params["status"] == "any"
                return httpx.Response(
                    200,
                    json={"orders": [
                        {
                            "total_price": "100.50",
                            "created_at": "2024-03-15T09:00:00-04:00",
                            "customer": {"orders_count": 1},
                            "line_items": [{"product_id": 1, "title": "Shirt", "quantity": 3}],
                        },
                        {
                            "total_price": "59.50",
                            "created_at": "2024-03-15T10:00:00-04:00",
                            "customer": None,
                            "line_items": [{"product_id": 1, "title": "Shirt", "quantity": 1}],
                        },
                    ]},
                    headers={"Link": '<https://demo.myshopify.com/admin/api/2024-01/orders.json?page_info=abc&limit=250>; rel="next"'},
                )
            if path.endswith("/products.json"):
                return httpx.Response(200, json={"products": [
                    {"id": 1, "variants": [{"inventory_quantity": 4}, {"inventory_quantity": 6}]},
                    {"id": 2, "variants": [{"inventory_quantity": 2}]},
                ]})
            if path.endswith("/graphql.json"):
                return httpx.Response(200, json={"errors": [{"message": "Access denied for shopifyqlQuery"}]})
            return httpx.Response(404)

        result = _run(self._connector(handler).fetch_daily_metrics(DAY))

        assert seen_tokens == {"static"}
        assert result.is_fallback is False
        assert result.orders == 3
        assert result.revenue == Decimal("200.00")
        assert result.new_customer_orders == 1
        # No analytics source: orders / 2%
        assert result.traffic == 150
        assert result.conversion_rate == pytest.approx(2.0)
        assert [(p.product_id, p.quantity_sold, p.inventory_remaining) for p in result.top_products] == [
            ("1", 4, 10),
            ("2", 1, 2),
        ]

    def test_shopifyql_sessions_preferred(self):
        def handler(request):
            path = request.url.path
            if path.endswith("/orders.json"):
                return httpx.Response(200, json={"orders": []})
            if path.endswith("/graphql.json"):
                return httpx.Response(200, json={"data": {"shopifyqlQuery": {
                    "tableData": {
                        "columns": [{"name": "total_sessions"}, {"name": "total_visitors"}],
                        "rowData": [["420", "380"]],
                    },
                    "parseErrors": [],
                }}})
            return httpx.Response(404)

        result = _run(self._connector(handler).fetch_daily_metrics(DAY))

        assert result.traffic == 420
        assert result.conversion_rate == 0.0

    def test_stored_oauth_token_wins(self):
        seen_tokens = set()

        def handler(request):
            seen_tokens.add(request.headers.get("x-shopify-access-token"))
            return httpx.Response(200, json={"orders": []})

        connector = self._connector(handler, oauth_token_loader=lambda shop: "installed")
        _run(connector.get_orders_for_date(DAY))

        assert seen_tokens == {"installed"}

    def test_client_credentials_grant_cached(self):
        grants = []

        def handler(request):
            if request.url.path == "/admin/oauth/access_token":
                grants.append(request)
                return httpx.Response(200, json={"access_token": "granted", "expires_in": 86399})
            assert request.headers["x-shopify-access-token"] == "granted"
            return httpx.Response(200, json={"orders": []})

        config = ShopifyConfig(store_domain="demo.myshopify.com", client_id="cid", client_secret="cs")
        connector = ShopifyConnector(config, client=_client(handler), token_cache=TokenCache(), tz_name=TZ)

        _run(connector.get_orders_for_date(DAY))
        _run(connector.get_orders_for_date(DAY))

        assert len(grants) == 1

    def test_missing_domain_raises(self):
        connector = ShopifyConnector(ShopifyConfig(access_token="static"))

        with pytest.raises(ConfigurationError):
            _run(connector.fetch_daily_metrics(DAY))


class TestKlaviyo:

    def test_signups_grouped_by_business_day(self):
        def handler(request):
            if "page[cursor]" in request.url.params:
                return httpx.Response(200, json={
                    "data": [{"attributes": {"created": "2024-03-02T15:00:00+00:00"}}],
                    "links": {"next": None},
                })
            assert request.headers["authorization"] == "Klaviyo-API-Key pk_test"
            return httpx.Response(200, json={
                "data": [
                    {"attributes": {"created": "2024-03-01T14:00:00+00:00"}},
                    # 22:00 on Mar 1 in New York
                    {"attributes": {"created": "2024-03-02T03:00:00+00:00"}},
                ],
                "links": {"next": "https://a.klaviyo.com/api/profiles?page%5Bcursor%5D=abc"},
            })

        connector = KlaviyoConnector(
            KlaviyoConfig(api_key="pk_test"), client=_client(handler), sleep=_no_sleep, tz_name=TZ
        )

        by_date = _run(connector.fetch_signups_in_range(date(2024, 3, 1), date(2024, 3, 2)))

        assert by_date == {date(2024, 3, 1): 2, date(2024, 3, 2): 1}

    def test_signups_require_api_key(self):
        connector = KlaviyoConnector(KlaviyoConfig())

        with pytest.raises(ConfigurationError):
            _run(connector.fetch_signups_in_range(DAY, DAY))

    def test_signups_reaching_cap_raise(self):
        pages = []

        def handler(request):
            pages.append(request.url)
            return httpx.Response(200, json={
                "data": [{"attributes": {"created": "2024-03-01T14:00:00+00:00"}}] * 2,
                "links": {"next": "https://a.klaviyo.com/api/profiles?page%5Bcursor%5D=more"},
            })

        connector = KlaviyoConnector(
            KlaviyoConfig(api_key="pk_test"), client=_client(handler), sleep=_no_sleep, tz_name=TZ
        )
        connector.MAX_PAGINATED_RECORDS = 6

        with pytest.raises(UpstreamError):
            _run(connector.fetch_signups_in_range(date(2024, 3, 1), date(2024, 3, 2)))
        assert len(pages) == 3


class TestSnapchatAds:

    def test_refreshed_token_and_micros(self):
        def handler(request):
            if request.url.host == "accounts.snapchat.com":
                return httpx.Response(200, json={"access_token": "snap", "expires_in": 1800})
            assert request.headers["authorization"] == "Bearer snap"
            assert request.url.params["start_time"] == "2024-03-15T00:00:00-04:00"
            assert request.url.params["end_time"] == "2024-03-16T00:00:00-04:00"
            return httpx.Response(200, json={"total_stats": [{"total_stat": {
                "id": "acct", "stats": {"spend": 45500000, "total_purchases_value": 182000000},
            }}]})

        config = SnapchatAdsConfig(
            ad_account_id="acct", client_id="cid", client_secret="cs", refresh_token="refresh"
        )
        connector = SnapchatAdsConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ)

        result = _run(connector.fetch_daily_metrics(DAY))

        assert result.spend == Decimal("45.5")
        assert result.roas == pytest.approx(4.0)

    def test_no_token_source_raises(self):
        connector = SnapchatAdsConnector(SnapchatAdsConfig(ad_account_id="acct"))

        with pytest.raises(ConfigurationError):
            _run(connector.fetch_daily_metrics(DAY))


class TestInstagram:

    def test_followers_and_insights(self):
        def handler(request):
            if request.url.path.endswith("/insights"):
                return httpx.Response(200, json={"data": [
                    {"name": "reach", "values": [{"value": 320}]},
                    {"name": "impressions", "values": [{"value": 900}]},
                    {"name": "accounts_engaged", "values": [{"value": 41}]},
                ]})
            return httpx.Response(200, json={"followers_count": 5120, "media_count": 80})

        config = InstagramConfig(access_token="token", business_account_id="1789")
        connector = InstagramConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ)

        result = _run(connector.fetch_daily_metrics(DAY))

        assert (result.followers, result.reach, result.impressions, result.accounts_engaged) == (5120, 320, 900, 41)
        assert result.is_fallback is False

    def test_malformed_payload_falls_back(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        config = InstagramConfig(access_token="token", business_account_id="1789")
        connector = InstagramConnector(config, client=_client(handler), sleep=_no_sleep, tz_name=TZ)

        result = _run(connector.fetch_daily_metrics(DAY))

        assert result.is_fallback is True
        assert result.followers is None
