"""Periodic purge of old signals."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

PurgeCallback = Callable[[datetime], Awaitable[int]]


class PurgeService:
    """Deletes signals older than the retention period on a fixed interval."""

    def __init__(
        self,
        purge: PurgeCallback,
        interval_ms: int = 6 * 60 * 60 * 1000,
        retention_hours: int = 6,
    ):
        """
        Args:
            purge: Deletes rows created before the given threshold, returns count
            interval_ms: Time between purges
            retention_hours: Age after which signals are removed
        """
        self._purge = purge
        self.interval = interval_ms / 1000
        self.retention = timedelta(hours=retention_hours)
        self._task: asyncio.Task | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """Run an initial purge and start the periodic loop."""
        if self._initialized:
            logger.warning("Purge service already initialized, skipping")
            return

        await self.purge_once()
        self._task = asyncio.create_task(self._run())
        self._initialized = True
        logger.info(
            f"Purge service initialized: every {self.interval / 3600:g} hours, "
            f"retention {self.retention.total_seconds() / 3600:g} hours"
        )

    async def purge_once(self, now: datetime | None = None) -> int:
        """Delete everything older than the retention period."""
        threshold = (now or datetime.now(timezone.utc)) - self.retention
        logger.info(f"Starting signal purge, removing data older than {threshold.isoformat()}")
        deleted = await self._purge(threshold)
        logger.info(f"Signal purge completed: {deleted} rows removed")
        return deleted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.purge_once()
            except Exception as e:
                logger.error(f"Failed during periodic purge: {e}")

    async def stop(self) -> None:
        """Stop the periodic loop."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._initialized = False
