from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from tallybox.service import ContestService


async def expire_idle_contests(service: ContestService, max_idle_seconds: float) -> int:
    logger.debug("Running scheduled contest expiry check")
    expired = await service.expire_idle(max_idle_seconds)
    if not expired:
        logger.debug("No contests to expire")
        return 0
    logger.info(f"Expired {len(expired)} idle contest(s)")
    return len(expired)


class ExpiryScheduler:
    def __init__(
        self,
        service: ContestService,
        expire_after_minutes: int,
        interval_minutes: int = 1,
    ):
        self.service = service
        self.expire_after_minutes = expire_after_minutes
        self.interval_minutes = interval_minutes
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.expire_after_minutes <= 0:
            logger.info("Contest expiry disabled")
            return

        max_idle_seconds = self.expire_after_minutes * 60

        async def job():
            await expire_idle_contests(self.service, max_idle_seconds)

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="expire_contests",
            replace_existing=True,
            next_run_time=datetime.now(),
        )
        self._scheduler.start()
        logger.info(
            f"Contest expiry scheduler started (interval: {self.interval_minutes}m, idle limit: {self.expire_after_minutes}m)"
        )

    def stop(self) -> None:
        scheduler = self._scheduler
        self._scheduler = None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Contest expiry scheduler stopped")
