"""Dependency injection for FastAPI."""

from fastapi import Request

from lottery_forecast.services.forecast_service import ForecastEngine


def get_engine(request: Request) -> ForecastEngine:
    """The process-wide engine created in the application lifespan."""
    return request.app.state.engine
