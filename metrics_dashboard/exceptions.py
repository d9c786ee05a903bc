"""
Error taxonomy for the metrics dashboard

ConfigurationError and TokenRefreshError are hard failures for one adapter.
UpstreamError is a per-day data gap: adapters convert it to a zero-valued metric.
AggregationError is a read-path failure surfaced to the dashboard caller.
"""


class DashboardError(Exception):
    """Base class for all dashboard errors"""


class ConfigurationError(DashboardError):
    """A required credential or identifier is missing or invalid"""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"{platform}: {message}")


class TokenRefreshError(ConfigurationError):
    """Access token could not be acquired or refreshed"""


class UpstreamError(DashboardError):
    """Third-party API returned an error or an unusable payload"""

    def __init__(self, platform: str, message: str, status_code: int = None):
        self.platform = platform
        self.status_code = status_code
        if status_code is not None:
            message = f"{status_code} - {message}"
        super().__init__(f"{platform} API error: {message}")


class AggregationError(DashboardError):
    """Metrics could not be read for the requested range"""
