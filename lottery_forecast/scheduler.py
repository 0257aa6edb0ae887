"""APScheduler interval jobs: reconciliation sweep and cache purge."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from lottery_forecast.config import Settings
from lottery_forecast.errors import LotteryForecastError
from lottery_forecast.services.forecast_service import ForecastEngine

_scheduler: AsyncIOScheduler | None = None


async def _reconcile(engine: ForecastEngine):
    """Resolve predictions whose target drawing was verified since the last sweep."""
    try:
        results = await engine.reconcile_pending()
    except LotteryForecastError as e:
        logger.error("Scheduled reconciliation failed: {}", e)
        return
    if results:
        logger.info(
            "Scheduled reconciliation: {} drawings, {} predictions resolved",
            len(results), sum(r.resolved for r in results),
        )


async def _purge_cache(engine: ForecastEngine):
    purged = engine.cache.purge_expired()
    if purged:
        logger.debug("Purged {} expired cache entries", purged)


def start_scheduler(engine: ForecastEngine, settings: Settings):
    """Start the APScheduler with the engine's housekeeping jobs."""
    global _scheduler
    if _scheduler is not None:
        return

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        _reconcile, "interval",
        args=[engine],
        minutes=settings.RECONCILE_INTERVAL_MINUTES,
        id="reconcile_predictions",
        max_instances=1,
        coalesce=True,
    )

    _scheduler.add_job(
        _purge_cache, "interval",
        args=[engine],
        minutes=settings.CACHE_PURGE_INTERVAL_MINUTES,
        id="purge_cache",
        coalesce=True,
    )

    _scheduler.start()
    logger.info(
        "Housekeeping scheduler started: reconcile every {} min, cache purge every {} min",
        settings.RECONCILE_INTERVAL_MINUTES, settings.CACHE_PURGE_INTERVAL_MINUTES,
    )


def stop_scheduler():
    global _scheduler
    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Housekeeping scheduler stopped")


def get_scheduler_status() -> list[dict]:
    """Housekeeping jobs with their interval trigger and next fire time."""
    if _scheduler is None:
        return []
    return [
        {
            "id": job.id,
            "trigger": str(job.trigger),
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "max_instances": job.max_instances,
        }
        for job in _scheduler.get_jobs()
    ]
