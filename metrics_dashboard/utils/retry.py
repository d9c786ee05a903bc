"""
Backoff and retry for platform API calls.

Only transient failures are retried: transport errors, HTTP 429 and 5xx.
Missing credentials and 4xx responses fail on the first attempt.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple, Type

import httpx

from metrics_dashboard.exceptions import ConfigurationError, UpstreamError
from metrics_dashboard.utils.logger import log

TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)

RETRYABLE_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)

# Cap on error strings kept per operation
MAX_RECORDED_ERRORS = 5


@dataclass
class RetryStats:
    """Attempt history for one call, logged when it gives up"""
    attempts: int = 0
    waited_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)
    success: bool = False

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None

    def record(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.attempts += 1
        self.waited_seconds += delay
        if error is not None and len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(f"{type(error).__name__}: {error}")

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "waited_seconds": round(self.waited_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
        }


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Seconds to wait before the next attempt.

    Args:
        attempt: Attempt that just failed (1-indexed)
        base_delay: Wait after the first failure
        max_delay: Upper bound before jitter
        exponential_base: Growth factor per attempt
        jitter: Add up to 25% so concurrent platforms don't retry in lockstep
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay *= 1 + random.uniform(0, 0.25)
    return delay


def is_retryable_error(
    error: Exception,
    transient: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES
) -> bool:
    if isinstance(error, ConfigurationError):
        return False

    if isinstance(error, transient):
        return True

    if isinstance(error, UpstreamError):
        if error.status_code is not None:
            return error.status_code in status_codes
        # In-band errors (HTTP 200 with an error body) only retry on throttling
        message = str(error).lower()
        return "rate limit" in message or "too many requests" in message

    return False


class RetryContext:
    """
    Runs one coroutine function with retries and keeps its RetryStats.

    Usage:
        retry = RetryContext(max_attempts=3, sleep=fake_sleep)
        response = await retry.execute(client.get, url)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        transient: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.transient = transient
        self.sleep = sleep
        self.stats = RetryStats()

    async def execute(self, func: Callable, *args, **kwargs):
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                final = attempt >= self.max_attempts or not is_retryable_error(e, self.transient)
                if final:
                    self.stats.record(error=e)
                    if attempt > 1:
                        log.warning(f"Giving up after {attempt} attempts: {self.stats.to_dict()}")
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.base_delay,
                    max_delay=self.max_delay,
                    exponential_base=self.exponential_base
                )
                self.stats.record(error=e, delay=delay)
                log.warning(f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s...")
                await self.sleep(delay)
                continue

            self.stats.record()
            self.stats.success = True
            return result
