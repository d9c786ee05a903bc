"""
Metrics Store

Idempotent persistence of normalized daily metrics.

Every write is an insert-or-replace keyed by the row's natural key
((date) or (date, platform)) and refreshes synced_at. A fallback write never
replaces a row that was written from a successful fetch.
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from metrics_dashboard.models import (
    AdPlatformDailyMetric,
    EmailDailyMetric,
    EmailDailySignups,
    ShopifyDailyMetric,
    ShopifyToken,
    ShopifyTopProduct,
    SocialDailyMetric,
)
from metrics_dashboard.models.base import SessionLocal, build_engine, create_session_factory, ensure_schema
from metrics_dashboard.schemas import (
    STATUS_FALLBACK,
    AdDailyMetrics,
    EmailDailyMetrics,
    SocialDailyMetrics,
    StorefrontDailyMetrics,
    TopProductRow,
)
from metrics_dashboard.utils.logger import log

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.key) for column in row.__table__.columns}


class MetricsStore:
    """Read/write access to the daily metrics tables"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal
        self.bind = self.session_factory.kw["bind"]

    @classmethod
    def from_url(cls, database_url: str) -> "MetricsStore":
        return cls(create_session_factory(build_engine(database_url)))

    def ensure_schema(self):
        ensure_schema(self.bind)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _upsert(self, model, values: Dict[str, Any], key: Sequence[str]):
        values = {**values, "synced_at": datetime.utcnow()}
        update_columns = [name for name in values if name not in key]
        is_fallback = values.get("sync_status") == STATUS_FALLBACK
        insert = _DIALECT_INSERTS.get(self.bind.dialect.name)

        with self.session_factory.begin() as session:
            if insert is not None:
                stmt = insert(model).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(key),
                    set_={name: stmt.excluded[name] for name in update_columns},
                    # Fallback zeros only replace rows that are themselves fallback
                    where=(model.sync_status == STATUS_FALLBACK) if is_fallback else None,
                )
                session.execute(stmt)
                return

            # Dialects without ON CONFLICT
            existing = session.execute(
                select(model).filter_by(**{name: values[name] for name in key})
            ).scalar_one_or_none()
            if existing is None:
                session.add(model(**values))
            elif not is_fallback or existing.sync_status == STATUS_FALLBACK:
                for name in update_columns:
                    setattr(existing, name, values[name])

    def upsert_storefront(self, metrics: StorefrontDailyMetrics):
        self._upsert(ShopifyDailyMetric, metrics.to_row(), key=("date",))

    def upsert_ad_metrics(self, metrics: AdDailyMetrics):
        self._upsert(AdPlatformDailyMetric, metrics.to_row(), key=("date", "platform"))

    def upsert_email_metrics(self, metrics: EmailDailyMetrics):
        self._upsert(EmailDailyMetric, metrics.to_row(), key=("date",))

    def upsert_email_signups(self, day: date, unique_signups: int, is_fallback: bool = False):
        self._upsert(
            EmailDailySignups,
            {
                "date": day,
                "unique_signups": int(unique_signups),
                "sync_status": STATUS_FALLBACK if is_fallback else "ok",
            },
            key=("date",),
        )

    def upsert_social(self, metrics: SocialDailyMetrics):
        self._upsert(SocialDailyMetric, metrics.to_row(), key=("date",))

    def replace_top_products(self, day: date, products: Iterable[TopProductRow]):
        """Replace the day's top product snapshot as a set, in one transaction"""
        rows = [product.to_row(day) for product in products]
        synced_at = datetime.utcnow()

        with self.session_factory.begin() as session:
            session.execute(delete(ShopifyTopProduct).where(ShopifyTopProduct.date == day))
            session.add_all([ShopifyTopProduct(**row, synced_at=synced_at) for row in rows])

        log.debug(f"Stored {len(rows)} top products for {day}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_range(self, model, start: date, end: date, descending: bool = True) -> List[Dict[str, Any]]:
        """Rows with start <= date <= end, newest first by default"""
        order = model.date.desc() if descending else model.date.asc()
        with self.session_factory() as session:
            rows = session.execute(
                select(model).where(model.date >= start, model.date <= end).order_by(order, model.id)
            ).scalars().all()
            return [row_to_dict(row) for row in rows]

    def latest_value(self, model, field: str, on_or_before: date) -> Optional[Any]:
        """Newest non-null value of ``field`` from a row written by a successful fetch"""
        column = getattr(model, field)
        with self.session_factory() as session:
            return session.execute(
                select(column)
                .where(
                    model.date <= on_or_before,
                    column.is_not(None),
                    model.sync_status != STATUS_FALLBACK,
                )
                .order_by(model.date.desc())
                .limit(1)
            ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # OAuth tokens
    # ------------------------------------------------------------------

    def get_oauth_token(self, shop: str) -> Optional[str]:
        with self.session_factory() as session:
            return session.execute(
                select(ShopifyToken.access_token).where(ShopifyToken.shop == shop)
            ).scalar_one_or_none()

    def save_oauth_token(self, shop: str, access_token: str, scope: Optional[str] = None):
        with self.session_factory.begin() as session:
            token = session.execute(
                select(ShopifyToken).where(ShopifyToken.shop == shop)
            ).scalar_one_or_none()
            if token is None:
                session.add(ShopifyToken(shop=shop, access_token=access_token, scope=scope))
            else:
                token.access_token = access_token
                token.scope = scope
                token.updated_at = datetime.utcnow()
