"""FastAPI application entry point."""

import sys
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from lottery_forecast.api.errors import register_exception_handlers
from lottery_forecast.api.v1.router import api_router
from lottery_forecast.config import settings
from lottery_forecast.scheduler import get_scheduler_status, start_scheduler, stop_scheduler
from lottery_forecast.services.forecast_service import ForecastEngine

# Windows asyncio policy for asyncpg compatibility
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configure loguru
logger.remove()
logger.add(sys.stderr, level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger.add(settings.LOG_FILE, rotation="10 MB", retention="7 days", level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting {} ({}) ...", settings.APP_NAME, settings.APP_ENV)

    engine = ForecastEngine(settings)
    await engine.start()
    app.state.engine = engine

    if settings.SCHEDULER_ENABLED:
        start_scheduler(engine, settings)

    yield

    if settings.SCHEDULER_ENABLED:
        stop_scheduler()
    await engine.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Lottery number forecasting engine",
    lifespan=lifespan,
)

register_exception_handlers(app)
app.include_router(api_router, prefix="/api/v1")


@app.get("/health", include_in_schema=False)
async def health():
    return {
        "status": "ok",
        "cache": app.state.engine.cache.stats(),
        "jobs": get_scheduler_status(),
    }
