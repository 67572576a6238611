"""
Periodic cache persistence using APScheduler.

Writes between the batched flushes are at most one interval away from disk.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from knowledge_broker.services.broker import KnowledgeBroker
from knowledge_broker.utils import logged_job


class CacheFlushScheduler:
    """Flushes the broker's caches on a fixed interval."""

    JOB_ID = "cache_flush_job"

    def __init__(self, broker: KnowledgeBroker, interval_minutes: int | None = None):
        self.broker = broker
        self.interval_minutes = (
            interval_minutes or broker.config.cache_flush_interval_minutes
        )
        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    @logged_job
    async def flush_cache(self) -> bool:
        """Cache flush task"""
        written = await self.broker.flush_cache()
        if written:
            logger.info(f"Scheduled cache flush wrote {self.broker.cache.size()} entries")
        return written

    def start(self) -> None:
        """Start the scheduler. Needs a running event loop."""
        if self._is_running:
            logger.warning("Cache flush scheduler is already running")
            return

        self.scheduler.add_job(
            self.flush_cache,
            trigger="interval",
            minutes=self.interval_minutes,
            id=self.JOB_ID,
            name="Knowledge Cache Flusher",
            replace_existing=True,
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Cache flush scheduler started: flushing every {self.interval_minutes} minutes"
        )

    def stop(self) -> None:
        if not self._is_running:
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Cache flush scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running
