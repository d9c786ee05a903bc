"""Database models for the metrics dashboard"""

from metrics_dashboard.models.base import Aggregate, Base

from metrics_dashboard.models.shopify import (
    ShopifyDailyMetric,
    ShopifyTopProduct,
    ShopifyToken
)

from metrics_dashboard.models.ad_metrics import (
    AdPlatform,
    AdPlatformDailyMetric
)

from metrics_dashboard.models.email import (
    EmailDailyMetric,
    EmailDailySignups
)

from metrics_dashboard.models.social import SocialDailyMetric

__all__ = [
    "Aggregate",
    "Base",
    "ShopifyDailyMetric",
    "ShopifyTopProduct",
    "ShopifyToken",
    "AdPlatform",
    "AdPlatformDailyMetric",
    "EmailDailyMetric",
    "EmailDailySignups",
    "SocialDailyMetric",
]
