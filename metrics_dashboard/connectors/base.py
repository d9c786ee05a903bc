"""
Base Connector Class

All platform connectors inherit from this base class.
Provides the shared request, retry, pagination and fallback behaviour.
"""
import asyncio
import decimal
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from metrics_dashboard.exceptions import ConfigurationError, UpstreamError
from metrics_dashboard.utils.logger import log
from metrics_dashboard.utils.retry import RetryContext
from metrics_dashboard.utils.token_cache import TokenCache

# Failures that become a zero-valued metric instead of propagating.
# Everything after httpx.HTTPError is a malformed payload.
FALLBACK_ERRORS = (
    UpstreamError,
    httpx.HTTPError,
    KeyError,
    ValueError,
    TypeError,
    AttributeError,
    decimal.InvalidOperation,
)


class BaseConnector(ABC):
    """
    Base class for all platform connectors

    Implements common patterns:
    - Config validation before any network call
    - HTTP requests with retry on transient failures
    - Cursor pagination with a record cap
    - Zero-valued fallback when the upstream fails
    """

    platform: str = ""

    # Retry configuration (can be overridden by subclasses)
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 1.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds

    # Stop following cursors past this many records
    MAX_PAGINATED_RECORDS = 50000

    def __init__(
        self,
        config,
        token_cache: Optional[TokenCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        tz_name: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize connector

        Args:
            config: Platform config dataclass
            token_cache: Shared access token cache (one per process)
            client: Optional shared httpx client; a short-lived one is used per request otherwise
            timeout: Request timeout in seconds
            tz_name: Business timezone used to cut day windows
            sleep: Awaitable sleep used between retries
        """
        self.config = config
        self.token_cache = token_cache or TokenCache()
        self.timeout = timeout
        self.tz_name = tz_name
        self._client = client
        self._sleep = sleep

    @abstractmethod
    def validate_config(self):
        """Raise ConfigurationError if a required credential is missing"""

    @abstractmethod
    async def _fetch_day(self, day: date):
        """Fetch and normalize metrics for one business day"""

    @abstractmethod
    def zero_metric(self, day: date):
        """Zero-valued metric for a day whose fetch failed"""

    async def fetch_daily_metrics(self, day: date):
        """
        Fetch normalized metrics for one business day.

        Configuration and token errors propagate. Upstream failures are logged
        and a zero-valued metric flagged as fallback is returned.
        """
        self.validate_config()
        try:
            return await self._fetch_day(day)
        except ConfigurationError:
            raise
        except FALLBACK_ERRORS as e:
            log.error(f"{self.platform} fetch failed for {day}: {type(e).__name__}: {e}")
            return self.zero_metric(day)

    def _require(self, **values):
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ConfigurationError(self.platform, f"missing {', '.join(missing)}")

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            response = await self._client.request(method, url, timeout=self.timeout, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, **kwargs)

        if response.status_code >= 400:
            raise UpstreamError(self.platform, response.text[:500], status_code=response.status_code)

        return response

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures with backoff"""
        retry = RetryContext(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            base_delay=self.RETRY_BASE_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
            sleep=self._sleep
        )
        return await retry.execute(self._send, method, url, **kwargs)

    async def _get_json(self, url: str, **kwargs) -> Dict[str, Any]:
        response = await self._request("GET", url, **kwargs)
        return response.json()

    async def _post_json(self, url: str, **kwargs) -> Dict[str, Any]:
        response = await self._request("POST", url, **kwargs)
        return response.json()

    async def _collect_pages(
        self,
        fetch_page: Callable[[Optional[Any]], Awaitable[Tuple[List[Any], Optional[Any]]]],
        label: str = "records"
    ) -> List[Any]:
        """
        Follow a cursor until it is exhausted or MAX_PAGINATED_RECORDS is reached.

        Args:
            fetch_page: Called with the current cursor (None first); returns (records, next_cursor)
            label: Name used in the cap warning
        """
        records: List[Any] = []
        cursor = None

        while True:
            page, cursor = await fetch_page(cursor)
            records.extend(page)

            if len(records) >= self.MAX_PAGINATED_RECORDS:
                log.warning(
                    f"{self.platform}: stopped paging {label} at {self.MAX_PAGINATED_RECORDS} records"
                )
                return records[:self.MAX_PAGINATED_RECORDS]

            if not cursor:
                return records
