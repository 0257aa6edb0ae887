"""Mapping of engine errors onto HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from lottery_forecast.errors import (
    ArtifactNotFound,
    InsufficientData,
    InvalidParameters,
    LotteryForecastError,
    TrainingInProgress,
    UnknownAlgorithm,
    UnknownDrawing,
    UnknownLotteryType,
    UnknownStrategy,
    UnknownTrainingJob,
)

# First match wins; order subclasses before their bases
STATUS_CODES: tuple[tuple[type[LotteryForecastError], int], ...] = (
    (UnknownLotteryType, 404),
    (UnknownAlgorithm, 404),
    (UnknownStrategy, 404),
    (UnknownTrainingJob, 404),
    (UnknownDrawing, 404),
    (ArtifactNotFound, 404),
    (TrainingInProgress, 409),
    (InvalidParameters, 422),
    (InsufficientData, 422),
)


def status_for(error: LotteryForecastError) -> int:
    for error_type, status in STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


async def _handle_forecast_error(request: Request, exc: LotteryForecastError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("{} {} failed: {}: {}", request.method, request.url.path, type(exc).__name__, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LotteryForecastError, _handle_forecast_error)
