"""
In-process cache for short-lived OAuth access tokens
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Tuple

from metrics_dashboard.utils.logger import log

# Default refresh safety margin
DEFAULT_BUFFER_SECONDS = 60


@dataclass
class CachedToken:
    access_token: str
    expires_at: float  # clock() value

    def is_fresh(self, now: float, buffer_seconds: float) -> bool:
        return now < self.expires_at - buffer_seconds


class TokenCache:
    """
    Cache of access tokens keyed by an arbitrary string (usually the platform name).

    A token is reused until it is within ``buffer_seconds`` of expiry. Refresh for
    a key is serialized through an asyncio.Lock and re-checked after the lock is
    acquired, so concurrent callers trigger at most one refresh.

    The refresh callable returns ``(access_token, expires_in_seconds)``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._tokens: Dict[str, CachedToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get_token(
        self,
        key: str,
        refresh: Callable[[], Awaitable[Tuple[str, float]]],
        buffer_seconds: float = DEFAULT_BUFFER_SECONDS
    ) -> str:
        cached = self._tokens.get(key)
        if cached and cached.is_fresh(self._clock(), buffer_seconds):
            return cached.access_token

        async with self._lock_for(key):
            # Another task may have refreshed while we waited
            cached = self._tokens.get(key)
            if cached and cached.is_fresh(self._clock(), buffer_seconds):
                return cached.access_token

            log.debug(f"Refreshing access token for {key}")
            access_token, expires_in = await refresh()
            self._tokens[key] = CachedToken(
                access_token=access_token,
                expires_at=self._clock() + float(expires_in)
            )
            return access_token
