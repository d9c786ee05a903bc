"""
Shared service instances for the routers and the scheduler

Overridable in tests through ``app.dependency_overrides``.
"""
from functools import lru_cache

from metrics_dashboard.config import get_settings
from metrics_dashboard.services.aggregation_service import AggregationService
from metrics_dashboard.services.metrics_store import MetricsStore
from metrics_dashboard.services.sync_service import SyncService
from metrics_dashboard.utils.token_cache import TokenCache


@lru_cache()
def get_store() -> MetricsStore:
    return MetricsStore()


@lru_cache()
def get_token_cache() -> TokenCache:
    """One token cache per process, shared by every connector"""
    return TokenCache()


@lru_cache()
def get_sync_service() -> SyncService:
    return SyncService.from_settings(get_settings(), get_store(), get_token_cache())


def get_aggregation_service() -> AggregationService:
    return AggregationService(get_store())
