"""
Bounded in-process background work: cache eviction sweeps and deletions
triggered by reads. Callers never wait for submitted work.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskQueue:
    """Runs fire-and-forget coroutines with bounded concurrency."""

    def __init__(self, max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, work: Callable[[], Awaitable[None]], name: str = "background") -> Optional[asyncio.Task]:
        """Schedule ``work()`` on the running loop; returns the task or None without a loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, dropping background work: {name}")
            return None

        task = loop.create_task(self._run(work, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, work: Callable[[], Awaitable[None]], name: str) -> None:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        async with self._semaphore:
            try:
                await work()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(f"Background task failed: {name}", exc_info=True)

    async def drain(self) -> None:
        """Wait for all submitted work, including work submitted while draining."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
