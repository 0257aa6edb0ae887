"""Drawing ingestion and reconciliation endpoints."""

from fastapi import APIRouter, Depends, status

from lottery_forecast.api.deps import get_engine
from lottery_forecast.schemas.lottery import DrawingCreate, DrawingSchema, VerificationStatus
from lottery_forecast.schemas.prediction import DrawingReconciliation
from lottery_forecast.services.forecast_service import ForecastEngine

router = APIRouter()


@router.post("", response_model=DrawingSchema, status_code=status.HTTP_201_CREATED)
async def store_drawing(
    drawing: DrawingCreate,
    engine: ForecastEngine = Depends(get_engine),
):
    """Store a drawing; verified drawings trigger reconciliation in the background."""
    return await engine.store_drawing(drawing)


@router.post("/{drawing_id}/verify", response_model=DrawingSchema)
async def verify_drawing(
    drawing_id: int,
    verification_status: VerificationStatus = VerificationStatus.VERIFIED,
    engine: ForecastEngine = Depends(get_engine),
):
    return await engine.verify_drawing(drawing_id, verification_status)


@router.post("/reconcile", response_model=list[DrawingReconciliation])
async def reconcile(engine: ForecastEngine = Depends(get_engine)):
    return await engine.reconcile_pending()
