"""
Helper utilities
"""
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

import pytz
from dateutil.relativedelta import relativedelta

from metrics_dashboard.config import get_settings

PERIODS = ("daily", "weekly", "monthly", "quarterly")

_CENT = Decimal("0.01")


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def calculate_percentage_change(current: float, previous: Optional[float]) -> Optional[float]:
    """Calculate percentage change between two values.

    Returns None when there is no usable baseline (previous missing or zero).
    """
    if previous is None or previous == 0:
        return None
    return ((current - previous) / previous) * 100


def to_money(value) -> Decimal:
    """Coerce a number to a two-place Decimal"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def money_float(value) -> float:
    return float(to_money(value))


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string"""
    return datetime.strptime(value, "%Y-%m-%d").date()


def shift_year_back(day: date) -> date:
    """Same calendar day one year earlier; Feb 29 becomes Feb 28."""
    if day.month == 2 and day.day == 29:
        return date(day.year - 1, 2, 28)
    return day.replace(year=day.year - 1)


def business_timezone(tz_name: str = None):
    return pytz.timezone(tz_name or get_settings().business_timezone)


def business_today(tz_name: str = None, now: datetime = None) -> date:
    """Current calendar date in the business timezone"""
    tz = business_timezone(tz_name)
    now = now or datetime.now(pytz.utc)
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).date()


def day_bounds(day: date, tz_name: str = None) -> Tuple[datetime, datetime]:
    """Aware [start, end] datetimes covering one business day.

    The end is the last microsecond of the day so it can be used with
    inclusive upstream filters.
    """
    tz = business_timezone(tz_name)
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day, time.max))
    return start, end


def date_range(start: date, end: date) -> List[date]:
    """All dates from start to end inclusive, oldest first"""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def resolve_period(period: str, today: date) -> Tuple[date, date]:
    """Resolve a dashboard period keyword to an inclusive date range.

    daily: the last 7 days through today
    weekly: from the start of the week 4 weeks ago to the end of this week
    monthly: from the start of the month 3 months ago to the end of this month
    quarterly: from the start of the quarter 2 quarters ago to the end of this quarter

    Weeks start on Sunday. Unknown keywords fall back to daily.
    """
    if period == "weekly":
        # date.weekday(): Monday=0 .. Sunday=6
        days_since_sunday = (today.weekday() + 1) % 7
        week_start = today - timedelta(days=days_since_sunday)
        return week_start - timedelta(weeks=4), week_start + timedelta(days=6)

    if period == "monthly":
        month_start = today.replace(day=1)
        month_end = month_start + relativedelta(months=1) - timedelta(days=1)
        return month_start - relativedelta(months=3), month_end

    if period == "quarterly":
        quarter_start = date(today.year, 3 * ((today.month - 1) // 3) + 1, 1)
        quarter_end = quarter_start + relativedelta(months=3) - timedelta(days=1)
        return quarter_start - relativedelta(months=6), quarter_end

    return today - timedelta(days=7), today
