"""Prediction and algorithm catalogue endpoints."""

from fastapi import APIRouter, Depends, Query

from lottery_forecast.api.deps import get_engine
from lottery_forecast.schemas.prediction import AlgorithmInfo, AlgorithmRanking, PredictionResultSchema, PredictRequest
from lottery_forecast.schemas.strategy import StrategySchema
from lottery_forecast.services.forecast_service import ForecastEngine

router = APIRouter()


@router.post("/predict", response_model=PredictionResultSchema)
async def predict(
    request: PredictRequest,
    strategy_id: int | None = None,
    engine: ForecastEngine = Depends(get_engine),
):
    """Predict the numbers of the next (or the given) draw."""
    return await engine.predict_numbers(
        request.lottery_type,
        request.algorithm,
        request.use_ensemble,
        request.ensemble_algorithms,
        request.historical_days,
        target_date=request.target_date,
        prediction_type=request.prediction_type,
        strategy_id=strategy_id,
    )


@router.get("/predictions/{lottery_type}", response_model=list[PredictionResultSchema])
async def prediction_history(
    lottery_type: str,
    strategy_id: int | None = None,
    limit: int = Query(default=20, ge=1, le=500),
    engine: ForecastEngine = Depends(get_engine),
):
    return await engine.get_prediction_history(lottery_type, strategy_id=strategy_id, limit=limit)


@router.get("/algorithms", response_model=list[AlgorithmInfo])
async def algorithm_info(
    kind: str | None = None,
    engine: ForecastEngine = Depends(get_engine),
):
    return await engine.get_algorithm_info(kind)


@router.get("/algorithms/{lottery_type}", response_model=list[str])
async def available_algorithms(
    lottery_type: str,
    engine: ForecastEngine = Depends(get_engine),
):
    """Algorithm kinds usable for a lottery type."""
    return await engine.get_available_algorithms(lottery_type)


@router.get("/rankings", response_model=list[AlgorithmRanking])
async def algorithm_rankings(engine: ForecastEngine = Depends(get_engine)):
    """Algorithm kinds ordered by the accuracy of their best trained strategy."""
    return await engine.compare_algorithms()


@router.get("/strategies", response_model=list[StrategySchema])
async def list_strategies(
    algorithm_type: str | None = None,
    engine: ForecastEngine = Depends(get_engine),
):
    return await engine.list_strategies(algorithm_type)


@router.get("/cache/stats")
async def cache_stats(engine: ForecastEngine = Depends(get_engine)):
    return engine.cache.stats()
