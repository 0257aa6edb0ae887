"""Training endpoints."""

from fastapi import APIRouter, Depends, status

from lottery_forecast.api.deps import get_engine
from lottery_forecast.schemas.prediction import TrainRequest, TrainResponse
from lottery_forecast.schemas.training import TrainingJobAccepted, TrainingJobRequest, TrainingRecordSchema
from lottery_forecast.services.forecast_service import ForecastEngine

router = APIRouter()


@router.post("/train", response_model=TrainResponse)
async def train_algorithms(
    request: TrainRequest,
    engine: ForecastEngine = Depends(get_engine),
):
    """Train the system strategy of each algorithm and wait for the results."""
    accuracies = await engine.train_algorithms(
        request.lottery_type,
        request.algorithms,
        request.historical_days,
        request.validation_split,
    )
    return TrainResponse(lottery_type=request.lottery_type, accuracies=accuracies)


@router.post("/jobs", response_model=TrainingJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    request: TrainingJobRequest,
    engine: ForecastEngine = Depends(get_engine),
):
    """Queue a training job for one strategy without waiting for it."""
    job_id = await engine.submit_training(
        request.strategy_id,
        request.lottery_type,
        request.historical_days,
        request.validation_split,
    )
    return TrainingJobAccepted(job_id=job_id, strategy_id=request.strategy_id)


@router.get("/jobs/{job_id}", response_model=TrainingRecordSchema)
async def job_status(job_id: int, engine: ForecastEngine = Depends(get_engine)):
    return await engine.get_training_job(job_id)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: int, engine: ForecastEngine = Depends(get_engine)):
    return {"job_id": job_id, "cancelled": await engine.cancel_training(job_id)}
