"""
Base database model and session management
"""
import enum
import os

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from metrics_dashboard.config import get_settings
from metrics_dashboard.utils.logger import log


class Aggregate(str, enum.Enum):
    """How a daily column rolls up over a date range.

    Declared per column via ``Column(..., info={"aggregate": Aggregate.SUM})``.
    """
    SUM = "sum"
    AVERAGE = "average"
    LATEST = "latest"
    MAX = "max"


def build_engine(database_url: str):
    """Create an engine with the pool settings used across the app"""
    # Resolve relative SQLite paths to absolute so cwd changes can't break it
    if database_url.startswith("sqlite:///") and not database_url.startswith("sqlite:////"):
        rel_path = database_url[len("sqlite:///"):]
        database_url = "sqlite:///" + os.path.abspath(rel_path)

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
            pool_pre_ping=True
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
    )


def create_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


settings = get_settings()

engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = create_session_factory(engine)

# Base class for all models
Base = declarative_base()


def _migrate_missing_columns(bind):
    """Add columns defined in models but missing from existing DB tables.

    create_all() only creates missing *tables*; it cannot add new columns
    to tables that already exist. Never drops or alters existing columns.
    """
    inspector = inspect(bind)
    with bind.connect() as conn:
        for table_name, table in Base.metadata.tables.items():
            if not inspector.has_table(table_name):
                continue  # create_all will handle it
            existing = {c["name"] for c in inspector.get_columns(table_name)}
            for col in table.columns:
                if col.name in existing:
                    continue
                col_type = col.type.compile(dialect=bind.dialect)
                sql = f"ALTER TABLE {table_name} ADD COLUMN {col.name} {col_type}"
                log.info(f"Auto-migrating: {sql}")
                try:
                    conn.execute(text(sql))
                    conn.commit()
                except SQLAlchemyError:
                    # Another process may have added it between inspect and ALTER
                    conn.rollback()
                    current = {c["name"] for c in inspect(bind).get_columns(table_name)}
                    if col.name not in current:
                        raise


def ensure_schema(bind=None):
    """Create missing tables and add missing columns. Safe to re-run."""
    bind = bind if bind is not None else engine
    # Model modules register their tables on Base.metadata when imported
    import metrics_dashboard.models  # noqa: F401

    Base.metadata.create_all(bind=bind, checkfirst=True)
    _migrate_missing_columns(bind)
