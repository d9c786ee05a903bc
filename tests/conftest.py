"""
Shared fixtures.

Environment is pinned before the package is imported so cached settings,
the logger and the module-level engine never touch the working directory.
"""
import os
import tempfile

os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("CRON_SECRET", "test-secret")
os.environ.setdefault("BUSINESS_TIMEZONE", "America/New_York")
os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(tempfile.mkdtemp(), "metrics_dashboard.db")
)

import pytest  # noqa: E402

from metrics_dashboard.services.metrics_store import MetricsStore  # noqa: E402


@pytest.fixture
def store(tmp_path):
    metrics_store = MetricsStore.from_url(f"sqlite:///{tmp_path}/metrics.db")
    metrics_store.ensure_schema()
    return metrics_store


class FakeSleep:
    """Records requested delays instead of sleeping"""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fake_sleep():
    return FakeSleep()
