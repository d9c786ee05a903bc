"""
Shopify Connector

Daily orders, revenue, new-customer orders, top products and traffic
from the Shopify Admin API.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.connectors.ga4 import GA4TrafficProvider
from metrics_dashboard.exceptions import ConfigurationError, TokenRefreshError, UpstreamError
from metrics_dashboard.schemas import StorefrontDailyMetrics, TopProductRow
from metrics_dashboard.utils.helpers import day_bounds, safe_divide
from metrics_dashboard.utils.logger import log

TOP_PRODUCTS_LIMIT = 10

# Assumed store conversion rate when no traffic source is available
ESTIMATED_CONVERSION_RATE = 0.02

# Client-credentials tokens are refreshed this long before expiry
CLIENT_CREDENTIALS_BUFFER_SECONDS = 300


@dataclass
class ShopifyConfig:
    store_domain: Optional[str] = None
    access_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    api_version: str = "2024-01"

    @classmethod
    def from_settings(cls, settings) -> "ShopifyConfig":
        return cls(
            store_domain=settings.shopify_store_domain,
            access_token=settings.shopify_access_token,
            client_id=settings.shopify_client_id,
            client_secret=settings.shopify_client_secret,
            api_version=settings.shopify_api_version,
        )

    @property
    def shop(self) -> str:
        return (self.store_domain or "").replace("https://", "").replace("http://", "").rstrip("/")


class ShopifyConnector(BaseConnector):
    """
    Connector for Shopify Admin API

    Token precedence: token stored by the app install flow, then the static
    access token, then a cached client-credentials token.
    """

    platform = "shopify"

    def __init__(
        self,
        config: ShopifyConfig,
        oauth_token_loader: Optional[Callable[[str], Optional[str]]] = None,
        traffic_provider: Optional[GA4TrafficProvider] = None,
        **kwargs
    ):
        """
        Args:
            config: Shopify credentials
            oauth_token_loader: Returns the stored OAuth token for a shop, if any
            traffic_provider: GA4 fallback for sessions
        """
        super().__init__(config, **kwargs)
        self.oauth_token_loader = oauth_token_loader
        self.traffic_provider = traffic_provider
        self._oauth_token: Optional[str] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.config.shop}/admin/api/{self.config.api_version}"

    def validate_config(self):
        self._require(store_domain=self.config.store_domain)
        has_static = bool(self.config.access_token)
        has_client_credentials = bool(self.config.client_id and self.config.client_secret)
        if not (has_static or has_client_credentials or self.oauth_token_loader):
            raise ConfigurationError(
                self.platform,
                "set SHOPIFY_ACCESS_TOKEN or SHOPIFY_CLIENT_ID and SHOPIFY_CLIENT_SECRET"
            )

    def zero_metric(self, day: date) -> StorefrontDailyMetrics:
        return StorefrontDailyMetrics(date=day, is_fallback=True)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def _load_oauth_token(self) -> Optional[str]:
        if self._oauth_token:
            return self._oauth_token
        if not self.oauth_token_loader:
            return None
        token = await asyncio.to_thread(self.oauth_token_loader, self.config.shop)
        if token:
            self._oauth_token = token
        return token

    async def _client_credentials_grant(self) -> Tuple[str, float]:
        try:
            response = await self._send(
                "POST",
                f"https://{self.config.shop}/admin/oauth/access_token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
                headers={"Accept": "application/json"},
            )
            data = response.json()
            return data["access_token"], float(data.get("expires_in", 86400))
        except (UpstreamError, httpx.HTTPError, KeyError, ValueError) as e:
            raise TokenRefreshError(self.platform, f"failed to get access token: {e}")

    async def get_access_token(self) -> str:
        oauth_token = await self._load_oauth_token()
        if oauth_token:
            return oauth_token

        if self.config.access_token:
            return self.config.access_token

        if not (self.config.client_id and self.config.client_secret):
            raise ConfigurationError(
                self.platform,
                "no stored OAuth token and no static or client-credentials configured"
            )

        return await self.token_cache.get_token(
            self.platform,
            self._client_credentials_grant,
            buffer_seconds=CLIENT_CREDENTIALS_BUFFER_SECONDS
        )

    async def _get_headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": await self.get_access_token(),
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def _get_next_page_url(self, link_header: Optional[str]) -> Optional[str]:
        """
        Parse next page URL from Link header

        Shopify uses cursor-based pagination with Link headers: <url>; rel="next"
        """
        if not link_header:
            return None

        for link in link_header.split(","):
            parts = link.split(";")
            if len(parts) == 2 and 'rel="next"' in parts[1]:
                return parts[0].strip().strip("<>")

        return None

    async def get_orders_for_date(self, day: date) -> List[Dict[str, Any]]:
        """All orders created in the business day, any status"""
        start, end = day_bounds(day, self.tz_name)
        headers = await self._get_headers()
        first_params = {
            "status": "any",
            "created_at_min": start.isoformat(),
            "created_at_max": end.isoformat(),
            "limit": 250,
        }

        async def fetch_page(next_url):
            if next_url:
                # Params are in the URL for subsequent pages
                response = await self._request("GET", next_url, headers=headers)
            else:
                response = await self._request(
                    "GET", f"{self.base_url}/orders.json", params=first_params, headers=headers
                )
            orders = response.json()["orders"]
            return orders, self._get_next_page_url(response.headers.get("Link"))

        return await self._collect_pages(fetch_page, label="orders")

    async def get_products(self, product_ids: List[str]) -> List[Dict[str, Any]]:
        """Products (with variants) looked up by id"""
        if not product_ids:
            return []

        headers = await self._get_headers()
        data = await self._get_json(
            f"{self.base_url}/products.json",
            params={"ids": ",".join(product_ids), "limit": 250},
            headers=headers,
        )
        return data.get("products", [])

    async def get_store_sessions(self, day: date) -> int:
        """Sessions from ShopifyQL store analytics, 0 when unavailable"""
        shopifyql = (
            f"FROM sessions SHOW total_sessions, total_visitors "
            f"WHERE session_date = '{day.isoformat()}' "
            f"SINCE {day.isoformat()} UNTIL {day.isoformat()}"
        )
        query = """
            query($q: String!) {
              shopifyqlQuery(query: $q) {
                tableData { rowData columns { name dataType } }
                parseErrors { message }
              }
            }
        """

        try:
            headers = await self._get_headers()
            data = await self._post_json(
                f"{self.base_url}/graphql.json",
                json={"query": query, "variables": {"q": shopifyql}},
                headers=headers,
            )
        except (UpstreamError, httpx.HTTPError, ValueError) as e:
            log.warning(f"Shopify analytics unavailable for {day}: {str(e)}")
            return 0

        result = (data.get("data") or {}).get("shopifyqlQuery") or {}
        if data.get("errors") or result.get("parseErrors"):
            log.warning(f"ShopifyQL errors for {day}: {data.get('errors') or result.get('parseErrors')}")
            return 0

        table = result.get("tableData") or {}
        rows = table.get("rowData") or []
        if not rows:
            return 0

        for index, column in enumerate(table.get("columns") or []):
            if column.get("name") == "total_sessions":
                try:
                    return int(rows[0][index])
                except (TypeError, ValueError, IndexError):
                    return 0

        return 0

    async def _get_traffic(self, day: date, order_count: int) -> int:
        sessions = await self.get_store_sessions(day)
        if sessions > 0:
            return sessions

        if self.traffic_provider is not None:
            sessions = await self.traffic_provider.get_sessions(day)
            if sessions > 0:
                return sessions

        if order_count > 0:
            return round(order_count / ESTIMATED_CONVERSION_RATE)

        return 0

    @staticmethod
    def _is_new_customer_order(order: Dict[str, Any]) -> bool:
        customer = order.get("customer")
        if not customer:
            return False

        if customer.get("orders_count") == 1:
            return True

        # Customer created the same day as the order
        customer_created = customer.get("created_at")
        order_created = order.get("created_at")
        if customer_created and order_created:
            return customer_created[:10] == order_created[:10]

        return False

    async def _top_products(self, orders: List[Dict[str, Any]]) -> List[TopProductRow]:
        quantities: Dict[str, int] = defaultdict(int)
        titles: Dict[str, str] = {}

        for order in orders:
            for item in order.get("line_items") or []:
                if item.get("product_id") is None:
                    continue
                key = str(item["product_id"])
                quantities[key] += int(item.get("quantity") or 0)
                titles.setdefault(key, item.get("title") or "")

        ranked = sorted(quantities.items(), key=lambda kv: kv[1], reverse=True)[:TOP_PRODUCTS_LIMIT]
        if not ranked:
            return []

        products = await self.get_products([product_id for product_id, _ in ranked])
        inventory = {
            str(product["id"]): sum(int(v.get("inventory_quantity") or 0) for v in product.get("variants") or [])
            for product in products
        }

        return [
            TopProductRow(
                product_id=product_id,
                product_title=titles[product_id],
                quantity_sold=quantity,
                inventory_remaining=inventory.get(product_id, 0),
            )
            for product_id, quantity in ranked
        ]

    async def _fetch_day(self, day: date) -> StorefrontDailyMetrics:
        orders = await self.get_orders_for_date(day)

        order_count = len(orders)
        revenue = sum((Decimal(str(o.get("total_price") or "0")) for o in orders), Decimal("0"))
        new_customer_orders = sum(1 for o in orders if self._is_new_customer_order(o))

        top_products, traffic = await asyncio.gather(
            self._top_products(orders),
            self._get_traffic(day, order_count),
        )

        conversion_rate = safe_divide(order_count, traffic) * 100

        log.info(
            f"Shopify {day}: {order_count} orders, ${revenue:.2f} revenue, {traffic} sessions"
        )

        return StorefrontDailyMetrics(
            date=day,
            traffic=traffic,
            conversion_rate=conversion_rate,
            orders=order_count,
            new_customer_orders=new_customer_orders,
            revenue=revenue,
            top_products=top_products,
        )
