"""
Periodic refresh scheduler.

Re-runs the cache manager's freshness check on a fixed interval for the
lifetime of the context.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from common.constants import CHECK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Background task that awaits refresh_fn every interval seconds.

    The first run happens one interval after start(); boot-time freshness is
    the caller's job. Errors are logged and the loop keeps going.
    """

    def __init__(
        self,
        refresh_fn: Callable[[], Awaitable[None]],
        interval: float = CHECK_INTERVAL_SECONDS
    ):
        if interval <= 0:
            raise ValueError("Interval must be positive")
        self.refresh_fn = refresh_fn
        self.interval = interval
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self.runs = 0

    async def start(self):
        """Start the refresh background task."""
        if self.running:
            logger.warning("Refresh scheduler already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._refresh_loop())
        logger.info(f"Refresh scheduler started [interval={self.interval}s]")

    async def stop(self):
        """Stop the refresh background task."""
        if not self.running:
            return

        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        logger.info("Refresh scheduler stopped")

    async def _refresh_loop(self):
        while self.running:
            await asyncio.sleep(self.interval)
            try:
                await self.refresh_fn()
            except Exception as e:
                logger.error(f"Error in scheduled refresh: {e}", exc_info=True)
            self.runs += 1
