"""
Configuration management for the metrics dashboard
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Marketing Metrics Dashboard"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # Database
    database_url: str = "sqlite:///./metrics_dashboard.db"

    # Every day window (write and read path) is cut in this timezone
    business_timezone: str = "America/New_York"

    # Scheduled-trigger auth
    cron_secret: Optional[str] = None
    cron_header_name: str = "x-vercel-cron"

    # Shopify
    shopify_store_domain: Optional[str] = None
    shopify_access_token: Optional[str] = None
    shopify_client_id: Optional[str] = None
    shopify_client_secret: Optional[str] = None
    shopify_api_version: str = "2024-01"

    # Google Analytics 4 (traffic fallback for Shopify)
    ga4_property_id: Optional[str] = None
    ga4_credentials: Optional[str] = None  # service account JSON content

    # Google Ads
    google_ads_client_id: Optional[str] = None
    google_ads_client_secret: Optional[str] = None
    google_ads_refresh_token: Optional[str] = None
    google_ads_developer_token: Optional[str] = None
    google_ads_customer_id: Optional[str] = None
    google_ads_login_customer_id: Optional[str] = None
    google_ads_api_version: str = "v17"

    # Meta (Facebook) Ads
    meta_access_token: Optional[str] = None
    meta_ad_account_id: Optional[str] = None
    meta_api_version: str = "v19.0"

    # TikTok Ads
    tiktok_access_token: Optional[str] = None
    tiktok_advertiser_id: Optional[str] = None

    # Snapchat Ads
    snapchat_access_token: Optional[str] = None
    snapchat_ad_account_id: Optional[str] = None
    snapchat_client_id: Optional[str] = None
    snapchat_client_secret: Optional[str] = None
    snapchat_refresh_token: Optional[str] = None

    # Klaviyo
    klaviyo_api_key: Optional[str] = None
    klaviyo_revision: str = "2024-10-15"
    klaviyo_count_subscribers: bool = True  # False = carry forward last stored count
    klaviyo_signup_lookback_days: int = 7

    # Instagram (uses the Meta access token unless overridden)
    instagram_access_token: Optional[str] = None
    instagram_business_account_id: Optional[str] = None

    # Sync settings
    enable_scheduler: bool = True
    sync_latest_interval_minutes: int = 60
    backfill_batch_size: int = 30
    backfill_delay_seconds: float = 0.1  # Between calls to the same platform
    http_timeout_seconds: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
