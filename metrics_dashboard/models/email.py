"""
Klaviyo Email Metrics

Daily campaign/engagement totals plus the daily new-subscriber series.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, Date, DateTime

from metrics_dashboard.models.base import Aggregate, Base


class EmailDailyMetric(Base):
    """Klaviyo activity for one business day"""
    __tablename__ = "klaviyo_metrics"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, unique=True, index=True, nullable=False)

    # Volume
    campaigns_sent = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    emails_sent = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    emails_opened = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})
    emails_clicked = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})

    # Rates are recomputed from summed counts over a range
    open_rate = Column(Float, default=0, nullable=False)
    click_rate = Column(Float, default=0, nullable=False)

    # Gauges
    active_flows = Column(Integer, nullable=True, info={"aggregate": Aggregate.LATEST})
    subscriber_count = Column(Integer, nullable=True, info={"aggregate": Aggregate.LATEST})

    # Metadata
    sync_status = Column(String, default="ok", nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<EmailDailyMetric {self.date}: {self.emails_sent} sent>"


class EmailDailySignups(Base):
    """Unique profiles created per day"""
    __tablename__ = "klaviyo_daily_signups"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, unique=True, index=True, nullable=False)
    unique_signups = Column(Integer, default=0, nullable=False, info={"aggregate": Aggregate.SUM})

    sync_status = Column(String, default="ok", nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<EmailDailySignups {self.date}: {self.unique_signups}>"
