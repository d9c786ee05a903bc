"""
Normalized per-day metrics produced by the platform connectors.

Each dataclass maps 1:1 onto a row in the persistence store via ``to_row()``.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from metrics_dashboard.utils.helpers import to_money

STATUS_OK = "ok"
STATUS_FALLBACK = "fallback"


def _status(is_fallback: bool) -> str:
    return STATUS_FALLBACK if is_fallback else STATUS_OK


@dataclass
class TopProductRow:
    product_id: str
    product_title: str
    quantity_sold: int = 0
    inventory_remaining: int = 0

    def to_row(self, day: date) -> Dict[str, Any]:
        return {
            "date": day,
            "product_id": str(self.product_id),
            "product_title": self.product_title,
            "quantity_sold": int(self.quantity_sold),
            "inventory_remaining": int(self.inventory_remaining),
        }


@dataclass
class StorefrontDailyMetrics:
    date: date
    traffic: int = 0
    conversion_rate: float = 0.0
    orders: int = 0
    new_customer_orders: int = 0
    revenue: Decimal = Decimal("0.00")
    contribution_margin: Decimal = Decimal("0.00")
    top_products: List[TopProductRow] = field(default_factory=list)
    is_fallback: bool = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "traffic": int(self.traffic),
            "conversion_rate": float(self.conversion_rate),
            "orders": int(self.orders),
            "new_customer_orders": int(self.new_customer_orders),
            "revenue": to_money(self.revenue),
            "contribution_margin": to_money(self.contribution_margin),
            "sync_status": _status(self.is_fallback),
        }


@dataclass
class AdDailyMetrics:
    date: date
    platform: str
    spend: Decimal = Decimal("0.00")
    roas: float = 0.0
    paid_reach: int = 0
    is_fallback: bool = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "platform": self.platform,
            "spend": to_money(self.spend),
            "roas": round(float(self.roas), 4),
            "paid_reach": int(self.paid_reach),
            "sync_status": _status(self.is_fallback),
        }


@dataclass
class EmailDailyMetrics:
    date: date
    campaigns_sent: int = 0
    emails_sent: int = 0
    emails_opened: int = 0
    emails_clicked: int = 0
    open_rate: float = 0.0
    click_rate: float = 0.0
    active_flows: Optional[int] = None
    subscriber_count: Optional[int] = None
    is_fallback: bool = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "campaigns_sent": int(self.campaigns_sent),
            "emails_sent": int(self.emails_sent),
            "emails_opened": int(self.emails_opened),
            "emails_clicked": int(self.emails_clicked),
            "open_rate": float(self.open_rate),
            "click_rate": float(self.click_rate),
            "active_flows": self.active_flows,
            "subscriber_count": self.subscriber_count,
            "sync_status": _status(self.is_fallback),
        }


@dataclass
class SocialDailyMetrics:
    date: date
    followers: Optional[int] = None
    reach: int = 0
    impressions: int = 0
    accounts_engaged: int = 0
    is_fallback: bool = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "followers": self.followers,
            "reach": int(self.reach),
            "impressions": int(self.impressions),
            "accounts_engaged": int(self.accounts_engaged),
            "sync_status": _status(self.is_fallback),
        }
