"""Platform connectors for the metrics dashboard"""

from metrics_dashboard.connectors.base import BaseConnector
from metrics_dashboard.connectors.ga4 import GA4Config, GA4TrafficProvider
from metrics_dashboard.connectors.google_ads import GoogleAdsConfig, GoogleAdsConnector
from metrics_dashboard.connectors.instagram import InstagramConfig, InstagramConnector
from metrics_dashboard.connectors.klaviyo import KlaviyoConfig, KlaviyoConnector
from metrics_dashboard.connectors.meta_ads import MetaAdsConfig, MetaAdsConnector
from metrics_dashboard.connectors.shopify import ShopifyConfig, ShopifyConnector
from metrics_dashboard.connectors.snapchat_ads import SnapchatAdsConfig, SnapchatAdsConnector
from metrics_dashboard.connectors.tiktok_ads import TikTokAdsConfig, TikTokAdsConnector

__all__ = [
    "BaseConnector",
    "GA4Config",
    "GA4TrafficProvider",
    "GoogleAdsConfig",
    "GoogleAdsConnector",
    "InstagramConfig",
    "InstagramConnector",
    "KlaviyoConfig",
    "KlaviyoConnector",
    "MetaAdsConfig",
    "MetaAdsConnector",
    "ShopifyConfig",
    "ShopifyConnector",
    "SnapchatAdsConfig",
    "SnapchatAdsConnector",
    "TikTokAdsConfig",
    "TikTokAdsConnector",
]
