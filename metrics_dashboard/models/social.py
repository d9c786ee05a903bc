"""
Instagram account metrics
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Date, DateTime

from metrics_dashboard.models.base import Aggregate, Base


class SocialDailyMetric(Base):
    """Followers gauge and daily reach for the business account"""
    __tablename__ = "instagram_metrics"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, unique=True, index=True, nullable=False)

    followers = Column(Integer, nullable=True, info={"aggregate": Aggregate.LATEST})
    reach = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    impressions = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    accounts_engaged = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})

    sync_status = Column(String, default="ok", nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SocialDailyMetric {self.date}: {self.followers} followers>"
