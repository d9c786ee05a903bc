"""
Aggregation Service

Summarizes stored daily rows over a date range into the dashboard document,
with year-over-year deltas.

Each column declares how it rolls up (Aggregate.SUM/AVERAGE/LATEST/MAX in
the column ``info``); summarize() dispatches on that policy so gauges are
never summed.

Rules:
- Missing rows count as zero for SUM fields
- AVERAGE is the plain mean of daily values (conversion_rate, roas)
- LATEST takes the newest non-null value from a non-fallback row
- Email open/click rates are derived from summed counts
- Blended ROAS = storefront revenue / total ad spend (0 when no spend)
- YoY delta is None when the prior period is zero or absent
"""
import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List

from metrics_dashboard.exceptions import AggregationError
from metrics_dashboard.models import (
    AdPlatform,
    AdPlatformDailyMetric,
    Aggregate,
    EmailDailyMetric,
    EmailDailySignups,
    ShopifyDailyMetric,
    ShopifyTopProduct,
    SocialDailyMetric,
)
from metrics_dashboard.schemas import STATUS_FALLBACK
from metrics_dashboard.services.metrics_store import MetricsStore
from metrics_dashboard.utils.helpers import (
    calculate_percentage_change,
    money_float,
    safe_divide,
    shift_year_back,
)
from metrics_dashboard.utils.logger import log

TOP_PRODUCTS_LIMIT = 10

DOMAINS = ("storefront", "ads", "email", "social", "top_products")

STOREFRONT_YOY_FIELDS = (
    "traffic", "orders", "new_customer_orders", "revenue", "contribution_margin", "conversion_rate"
)


def _policies(model) -> Dict[str, Aggregate]:
    return {
        column.name: column.info["aggregate"]
        for column in model.__table__.columns
        if "aggregate" in column.info
    }


def _is_money(model, field: str) -> bool:
    return model.__table__.columns[field].type.python_type is Decimal


def _newest_first(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda row: row["date"], reverse=True)


def summarize(rows: List[Dict[str, Any]], model) -> Dict[str, Any]:
    """Roll daily rows of ``model`` up to one value per aggregated column"""
    totals: Dict[str, Any] = {}
    measured = [row for row in rows if row.get("sync_status") != STATUS_FALLBACK]

    for field, policy in _policies(model).items():
        if policy == Aggregate.SUM:
            if _is_money(model, field):
                total = sum((Decimal(str(row.get(field) or 0)) for row in rows), Decimal("0"))
                totals[field] = money_float(total)
            else:
                totals[field] = sum(row.get(field) or 0 for row in rows)

        elif policy == Aggregate.AVERAGE:
            values = [float(row[field]) for row in measured if row.get(field) is not None]
            totals[field] = safe_divide(sum(values), len(values))

        elif policy == Aggregate.LATEST:
            latest = next(
                (row[field] for row in _newest_first(measured) if row.get(field) is not None),
                None
            )
            totals[field] = latest if latest is not None else 0

        elif policy == Aggregate.MAX:
            values = [row[field] for row in rows if row.get(field) is not None]
            totals[field] = max(values) if values else 0

    return totals


def serialize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-friendly copy of a stored row"""
    out = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        out[key] = value
    return out


class AggregationService:
    """Builds the metrics document for a date range"""

    def __init__(self, store: MetricsStore):
        self.store = store

    async def _query(self, model, start: date, end: date, descending: bool = True):
        # One worker thread (and session) per range query
        return await asyncio.to_thread(self.store.query_range, model, start, end, descending)

    # ------------------------------------------------------------------
    # Loaders: fetch rows for one domain
    # ------------------------------------------------------------------

    async def _load_storefront(self, start, end, yoy_start, yoy_end):
        current, prior = await asyncio.gather(
            self._query(ShopifyDailyMetric, start, end),
            self._query(ShopifyDailyMetric, yoy_start, yoy_end),
        )
        return {"current": current, "prior": prior}

    async def _load_ads(self, start, end, yoy_start, yoy_end):
        return {"current": await self._query(AdPlatformDailyMetric, start, end)}

    async def _load_email(self, start, end, yoy_start, yoy_end):
        current, prior, signups, prior_signups = await asyncio.gather(
            self._query(EmailDailyMetric, start, end),
            self._query(EmailDailyMetric, yoy_start, yoy_end),
            self._query(EmailDailySignups, start, end, descending=False),
            self._query(EmailDailySignups, yoy_start, yoy_end, descending=False),
        )
        return {"current": current, "prior": prior, "signups": signups, "prior_signups": prior_signups}

    async def _load_social(self, start, end, yoy_start, yoy_end):
        return {"current": await self._query(SocialDailyMetric, start, end)}

    async def _load_top_products(self, start, end, yoy_start, yoy_end):
        return {"current": await self._query(ShopifyTopProduct, start, end)}

    # ------------------------------------------------------------------
    # Builders: rows -> document section (empty rows give a zeroed section)
    # ------------------------------------------------------------------

    @staticmethod
    def _build_storefront(rows: Dict[str, List]) -> Dict[str, Any]:
        current = rows.get("current", [])
        prior = rows.get("prior", [])
        totals = summarize(current, ShopifyDailyMetric)
        prior_totals = summarize(prior, ShopifyDailyMetric) if prior else {}

        totals["yoy"] = {
            field: calculate_percentage_change(totals[field], prior_totals.get(field))
            for field in STOREFRONT_YOY_FIELDS
        }
        totals["daily"] = [serialize_row(row) for row in current]
        return totals

    @staticmethod
    def _build_ads(rows: Dict[str, List]) -> Dict[str, Any]:
        current = rows.get("current", [])
        by_platform: Dict[str, List] = {}
        for row in current:
            by_platform.setdefault(row["platform"], []).append(row)

        known = [p.value for p in AdPlatform]
        ordered = sorted(by_platform, key=lambda p: (known.index(p) if p in known else len(known), p))

        platforms = []
        for platform in ordered:
            summary = summarize(by_platform[platform], AdPlatformDailyMetric)
            platforms.append({"platform": platform, **summary})

        total_spend = money_float(sum(Decimal(str(p["spend"])) for p in platforms))
        return {
            "platforms": platforms,
            "total_spend": total_spend,
            "total_reach": sum(p["paid_reach"] for p in platforms),
            "daily": [serialize_row(row) for row in current],
        }

    @staticmethod
    def _build_email(rows: Dict[str, List]) -> Dict[str, Any]:
        current = rows.get("current", [])
        prior = rows.get("prior", [])
        signups = rows.get("signups", [])
        prior_signups = rows.get("prior_signups", [])

        totals = summarize(current, EmailDailyMetric)
        totals["open_rate"] = safe_divide(totals["emails_opened"], totals["emails_sent"]) * 100
        totals["click_rate"] = safe_divide(totals["emails_clicked"], totals["emails_sent"]) * 100

        prior_subscribers = summarize(prior, EmailDailyMetric)["subscriber_count"] if prior else None
        totals["subscriber_yoy"] = calculate_percentage_change(totals["subscriber_count"], prior_subscribers)

        signup_total = summarize(signups, EmailDailySignups)["unique_signups"]
        prior_signup_total = (
            summarize(prior_signups, EmailDailySignups)["unique_signups"] if prior_signups else None
        )
        totals["signups"] = {
            "total": signup_total,
            "daily": [{"date": row["date"].isoformat(), "signups": row["unique_signups"]} for row in signups],
            "yoy": calculate_percentage_change(signup_total, prior_signup_total),
        }
        totals["daily"] = [serialize_row(row) for row in current]
        return totals

    @staticmethod
    def _build_social(rows: Dict[str, List]) -> Dict[str, Any]:
        current = rows.get("current", [])
        totals = summarize(current, SocialDailyMetric)
        totals["daily"] = [serialize_row(row) for row in current]
        return totals

    @staticmethod
    def _build_top_products(rows: Dict[str, List]) -> List[Dict[str, Any]]:
        by_product: Dict[str, List] = {}
        for row in rows.get("current", []):
            by_product.setdefault(row["product_id"], []).append(row)

        products = []
        for product_id, product_rows in by_product.items():
            summary = summarize(product_rows, ShopifyTopProduct)
            products.append({
                "product_id": product_id,
                # Newest title wins if a product was renamed mid-range
                "product_title": _newest_first(product_rows)[0]["product_title"],
                **summary,
            })

        products.sort(key=lambda p: (-p["quantity_sold"], p["product_title"]))
        return products[:TOP_PRODUCTS_LIMIT]

    # ------------------------------------------------------------------

    async def get_aggregated_metrics(self, start: date, end: date) -> Dict[str, Any]:
        """
        Aggregate every domain over [start, end] inclusive.

        A domain whose query fails is rendered zeroed and listed under
        ``errors``. AggregationError is raised only when every domain fails.
        """
        yoy_start, yoy_end = shift_year_back(start), shift_year_back(end)

        loaders: Dict[str, Callable] = {
            "storefront": self._load_storefront,
            "ads": self._load_ads,
            "email": self._load_email,
            "social": self._load_social,
            "top_products": self._load_top_products,
        }
        builders: Dict[str, Callable] = {
            "storefront": self._build_storefront,
            "ads": self._build_ads,
            "email": self._build_email,
            "social": self._build_social,
            "top_products": self._build_top_products,
        }

        results = await asyncio.gather(
            *(loaders[domain](start, end, yoy_start, yoy_end) for domain in DOMAINS),
            return_exceptions=True
        )

        document: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        for domain, result in zip(DOMAINS, results):
            if isinstance(result, Exception):
                log.error(f"Failed to load {domain} metrics for {start} to {end}: {result}")
                errors[domain] = str(result)
                result = {}
            document[domain] = builders[domain](result)

        if len(errors) == len(DOMAINS):
            raise AggregationError(f"All metric queries failed: {errors}")

        # Cross-domain ratios
        ads = document["ads"]
        revenue = document["storefront"]["revenue"]
        new_customers = document["storefront"]["new_customer_orders"]
        ads["blended_roas"] = safe_divide(revenue, ads["total_spend"])
        ads["cost_per_new_customer"] = round(safe_divide(ads["total_spend"], new_customers), 2)

        document["errors"] = errors
        document["yoy_range"] = {"start_date": yoy_start.isoformat(), "end_date": yoy_end.isoformat()}
        return document
