"""
Single-worker task queue with a fixed delay between tasks.

Used by backfill to stay under per-platform rate limits.
"""
import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Tuple


class PacedTaskQueue:
    """Run coroutine factories one at a time, sleeping ``delay_seconds`` between them.

    Each item's outcome is captured as ``(item, result, error)`` so one failure
    does not stop the rest of the batch.
    """

    def __init__(
        self,
        delay_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def run(
        self,
        items: Iterable[Any],
        task: Callable[[Any], Awaitable[Any]]
    ) -> List[Tuple[Any, Any, Exception]]:
        outcomes = []
        for index, item in enumerate(items):
            if index and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)
            try:
                outcomes.append((item, await task(item), None))
            except Exception as e:
                outcomes.append((item, None, e))
        return outcomes
