"""CRUD operations for prediction strategies."""

from datetime import datetime

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.models.strategy import PredictionStrategy


async def create_strategy(session: AsyncSession, strategy: dict) -> PredictionStrategy:
    obj = PredictionStrategy(**strategy)
    session.add(obj)
    await session.flush()
    return obj


async def get_strategy(session: AsyncSession, strategy_id: int) -> PredictionStrategy | None:
    return await session.get(PredictionStrategy, strategy_id)


async def get_system_strategy(session: AsyncSession, algorithm_type: str) -> PredictionStrategy | None:
    result = await session.execute(
        select(PredictionStrategy)
        .where(
            PredictionStrategy.algorithm_type == algorithm_type,
            PredictionStrategy.is_system == True,  # noqa: E712
            PredictionStrategy.is_active == True,  # noqa: E712
        )
        .order_by(PredictionStrategy.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_strategies(
    session: AsyncSession, *, algorithm_type: str | None = None, active_only: bool = True
) -> list[PredictionStrategy]:
    query = select(PredictionStrategy).order_by(desc(PredictionStrategy.accuracy_rate), PredictionStrategy.id)
    if algorithm_type:
        query = query.where(PredictionStrategy.algorithm_type == algorithm_type)
    if active_only:
        query = query.where(PredictionStrategy.is_active == True)  # noqa: E712
    result = await session.execute(query)
    return list(result.scalars().all())


async def deactivate_strategy(session: AsyncSession, strategy_id: int) -> None:
    """Soft delete; predictions keep referencing the row."""
    strategy = await session.get(PredictionStrategy, strategy_id)
    if strategy:
        strategy.is_active = False


async def apply_training_result(
    session: AsyncSession,
    strategy_id: int,
    *,
    accuracy: float,
    precision: float | None,
    recall: float | None,
    f1: float | None,
    model_hash: str,
    model_size_bytes: int,
    trained_at: datetime,
) -> PredictionStrategy | None:
    """Fold one completed training run into the strategy's running statistics."""
    strategy = await session.get(PredictionStrategy, strategy_id)
    if strategy is None:
        return None

    runs = strategy.total_trainings or 0
    previous = strategy.accuracy_rate if strategy.accuracy_rate is not None else accuracy
    rolling = (previous * runs + accuracy) / (runs + 1)
    strategy.accuracy_rate = round(min(max(rolling, 0.0), 100.0), 4)
    if precision is not None:
        strategy.precision_rate = round(precision, 4)
    if recall is not None:
        strategy.recall_rate = round(recall, 4)
    if f1 is not None:
        strategy.f1_score = round(f1, 4)
    strategy.total_trainings = runs + 1
    strategy.last_training_date = trained_at
    strategy.model_hash = model_hash
    strategy.model_size_bytes = model_size_bytes
    await session.flush()
    return strategy


async def record_prediction_outcome(session: AsyncSession, strategy_id: int, *, is_winner: bool) -> None:
    strategy = await session.get(PredictionStrategy, strategy_id)
    if strategy is None:
        return
    strategy.total_predictions = (strategy.total_predictions or 0) + 1
    if is_winner:
        strategy.successful_predictions = (strategy.successful_predictions or 0) + 1
    await session.flush()
