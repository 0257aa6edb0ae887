"""CRUD operations for prediction results."""

from datetime import date

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.models.prediction import PredictionRecord


async def create_prediction(session: AsyncSession, prediction: dict) -> PredictionRecord:
    expected = len(prediction["predicted_numbers"]) + len(prediction.get("predicted_special_numbers") or [])
    if len(prediction["confidence_scores"]) != expected:
        raise ValueError(
            f"confidence_scores length {len(prediction['confidence_scores'])} != {expected}"
        )
    obj = PredictionRecord(**prediction)
    session.add(obj)
    await session.flush()
    return obj


async def get_prediction(session: AsyncSession, prediction_id: int) -> PredictionRecord | None:
    return await session.get(PredictionRecord, prediction_id)


async def list_unresolved_for_date(
    session: AsyncSession, lottery_type: str, target_date: date
) -> list[PredictionRecord]:
    result = await session.execute(
        select(PredictionRecord)
        .where(
            PredictionRecord.lottery_type == lottery_type,
            PredictionRecord.target_draw_date == target_date,
            PredictionRecord.actual_draw_id.is_(None),
        )
        .order_by(PredictionRecord.id)
    )
    return list(result.scalars().all())


async def resolve_prediction(session: AsyncSession, prediction_id: int, values: dict) -> bool:
    """Write evaluation results once.

    The update only matches while actual_draw_id is unset, so a replay is a no-op.
    Returns True if this call resolved the prediction.
    """
    result = await session.execute(
        update(PredictionRecord)
        .where(
            PredictionRecord.id == prediction_id,
            PredictionRecord.actual_draw_id.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_predictions(
    session: AsyncSession,
    lottery_type: str,
    *,
    strategy_id: int | None = None,
    limit: int = 20,
) -> list[PredictionRecord]:
    query = (
        select(PredictionRecord)
        .where(PredictionRecord.lottery_type == lottery_type)
        .order_by(desc(PredictionRecord.prediction_date), desc(PredictionRecord.id))
        .limit(limit)
    )
    if strategy_id is not None:
        query = query.where(PredictionRecord.strategy_id == strategy_id)
    result = await session.execute(query)
    return list(result.scalars().all())
