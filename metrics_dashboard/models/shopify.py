"""
Shopify Data Models

Daily storefront totals, the per-day top product snapshot and stored OAuth tokens.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Numeric, UniqueConstraint

from metrics_dashboard.models.base import Aggregate, Base


class ShopifyDailyMetric(Base):
    """One row per business day of storefront activity"""
    __tablename__ = "shopify_metrics"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, unique=True, index=True, nullable=False)

    # Traffic & conversion
    traffic = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    conversion_rate = Column(Float, default=0, nullable=False, info={"aggregate": Aggregate.AVERAGE})  # percent

    # Orders
    orders = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    new_customer_orders = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})

    # Money
    revenue = Column(Numeric(12, 2), default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    contribution_margin = Column(Numeric(12, 2), default=0, nullable=False, info={"aggregate": Aggregate.SUM})

    # Metadata
    sync_status = Column(String, default="ok", nullable=False)  # ok, fallback
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ShopifyDailyMetric {self.date}: {self.orders} orders>"


class ShopifyTopProduct(Base):
    """Top selling products for a day. Replaced as a set on every sync."""
    __tablename__ = "shopify_top_products"
    __table_args__ = (
        UniqueConstraint("date", "product_id", name="uq_shopify_top_products_date_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, index=True, nullable=False)
    product_id = Column(String, nullable=False)
    product_title = Column(String, nullable=False)

    quantity_sold = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    inventory_remaining = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.MAX})

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ShopifyTopProduct {self.date} {self.product_title}>"


class ShopifyToken(Base):
    """Access token obtained through the app install flow"""
    __tablename__ = "shopify_tokens"

    id = Column(Integer, primary_key=True, index=True)
    shop = Column(String, unique=True, index=True, nullable=False)
    access_token = Column(String, nullable=False)
    scope = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ShopifyToken {self.shop}>"
