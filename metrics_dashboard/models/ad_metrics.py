"""
Ad Platform Metrics

One row per (date, platform) across Meta, Google Ads, TikTok and Snapchat.
"""
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Numeric, UniqueConstraint

from metrics_dashboard.models.base import Aggregate, Base


class AdPlatform(str, enum.Enum):
    META = "meta"
    GOOGLE = "google"
    TIKTOK = "tiktok"
    SNAPCHAT = "snapchat"


class AdPlatformDailyMetric(Base):
    """Daily spend, ROAS and reach for one ad platform"""
    __tablename__ = "ad_metrics"
    __table_args__ = (
        UniqueConstraint("date", "platform", name="uq_ad_metrics_date_platform"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, index=True, nullable=False)
    platform = Column(String, index=True, nullable=False)  # see AdPlatform

    spend = Column(Numeric(12, 2), default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    roas = Column(Float, default=0, nullable=False, info={"aggregate": Aggregate.AVERAGE})
    paid_reach = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})

    # Metadata
    sync_status = Column(String, default="ok", nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AdPlatformDailyMetric {self.platform} {self.date}: ${self.spend}>"
