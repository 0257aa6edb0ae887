"""Aggregate API v1 router."""

from fastapi import APIRouter

from lottery_forecast.api.v1.endpoints import drawings, forecast, training

api_router = APIRouter()

api_router.include_router(forecast.router, prefix="/forecast", tags=["forecast"])
api_router.include_router(training.router, prefix="/training", tags=["training"])
api_router.include_router(drawings.router, prefix="/drawings", tags=["drawings"])
