"""CRUD operations for model training records."""

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.models.training_record import ModelTrainingRecord
from lottery_forecast.schemas.training import TrainingStatus


async def create_record(session: AsyncSession, record: dict) -> ModelTrainingRecord:
    obj = ModelTrainingRecord(status=TrainingStatus.PENDING.value, **record)
    session.add(obj)
    await session.flush()
    return obj


async def get_record(session: AsyncSession, record_id: int) -> ModelTrainingRecord | None:
    return await session.get(ModelTrainingRecord, record_id)


async def transition(
    session: AsyncSession, record_id: int, target: TrainingStatus, **values
) -> ModelTrainingRecord:
    """Advance a record's status, refusing backwards or repeated transitions."""
    record = await session.get(ModelTrainingRecord, record_id)
    if record is None:
        raise LookupError(f"Training record {record_id} not found")
    current = TrainingStatus(record.status)
    if not current.can_transition_to(target):
        raise ValueError(f"Illegal training status transition {current} -> {target}")
    record.status = target.value
    for key, value in values.items():
        setattr(record, key, value)
    await session.flush()
    return record


async def get_latest_completed(
    session: AsyncSession, strategy_id: int, lottery_type: str
) -> ModelTrainingRecord | None:
    result = await session.execute(
        select(ModelTrainingRecord)
        .where(
            ModelTrainingRecord.strategy_id == strategy_id,
            ModelTrainingRecord.lottery_type == lottery_type,
            ModelTrainingRecord.status == TrainingStatus.COMPLETED.value,
            ModelTrainingRecord.model_hash.is_not(None),
        )
        .order_by(desc(ModelTrainingRecord.completed_at), desc(ModelTrainingRecord.id))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_records(
    session: AsyncSession, strategy_id: int | None = None, *, limit: int = 50
) -> list[ModelTrainingRecord]:
    query = select(ModelTrainingRecord).order_by(desc(ModelTrainingRecord.id)).limit(limit)
    if strategy_id is not None:
        query = query.where(ModelTrainingRecord.strategy_id == strategy_id)
    result = await session.execute(query)
    return list(result.scalars().all())
