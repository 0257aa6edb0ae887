"""CRUD operations for historical drawings."""

from datetime import date

from sqlalchemy import desc, exists, select, type_coerce, update, ARRAY, Integer
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.models.drawing import LotteryDrawing
from lottery_forecast.db.models.prediction import PredictionRecord

# Drawings rejected by verification never enter a history window
_EXCLUDED_STATUSES = ("failed", "duplicate")


async def create_drawing(session: AsyncSession, drawing: dict) -> LotteryDrawing:
    obj = LotteryDrawing(**drawing)
    session.add(obj)
    await session.flush()
    return obj


async def get_drawing(session: AsyncSession, drawing_id: int) -> LotteryDrawing | None:
    return await session.get(LotteryDrawing, drawing_id)


async def get_by_number(
    session: AsyncSession, lottery_type: str, draw_number: str
) -> LotteryDrawing | None:
    result = await session.execute(
        select(LotteryDrawing).where(
            LotteryDrawing.lottery_type == lottery_type,
            LotteryDrawing.draw_number == draw_number,
        )
    )
    return result.scalar_one_or_none()


async def get_latest(session: AsyncSession, lottery_type: str) -> LotteryDrawing | None:
    result = await session.execute(
        select(LotteryDrawing)
        .where(LotteryDrawing.lottery_type == lottery_type)
        .order_by(desc(LotteryDrawing.draw_date))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_window(
    session: AsyncSession,
    lottery_type: str,
    *,
    before: date | None = None,
    since: date | None = None,
    until: date | None = None,
    limit: int | None = None,
) -> list[LotteryDrawing]:
    """Range scan of drawings, returned in chronological order.

    `before` is exclusive, `since` and `until` are inclusive. With `limit`, only
    the most recent matching drawings are kept.
    """
    query = select(LotteryDrawing).where(
        LotteryDrawing.lottery_type == lottery_type,
        LotteryDrawing.verification_status.not_in(_EXCLUDED_STATUSES),
    )
    if before is not None:
        query = query.where(LotteryDrawing.draw_date < before)
    if since is not None:
        query = query.where(LotteryDrawing.draw_date >= since)
    if until is not None:
        query = query.where(LotteryDrawing.draw_date <= until)
    query = query.order_by(desc(LotteryDrawing.draw_date))
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    rows = list(result.scalars().all())
    rows.reverse()
    return rows


async def list_drawings_containing(
    session: AsyncSession, lottery_type: str, number: int, *, limit: int = 100
) -> list[LotteryDrawing]:
    """Drawings whose winning numbers include `number`, newest first."""
    query = (
        select(LotteryDrawing)
        .where(LotteryDrawing.lottery_type == lottery_type)
        .order_by(desc(LotteryDrawing.draw_date))
    )
    if session.bind.dialect.name == "postgresql":
        query = query.where(
            type_coerce(LotteryDrawing.winning_numbers, ARRAY(Integer)).contains([number])
        ).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    # JSON-backed arrays elsewhere: filter client side
    result = await session.execute(query)
    return [d for d in result.scalars().all() if number in d.winning_numbers][:limit]


async def set_verification_status(session: AsyncSession, drawing_id: int, status: str) -> None:
    await session.execute(
        update(LotteryDrawing)
        .where(LotteryDrawing.id == drawing_id)
        .values(verification_status=status)
    )


async def list_verified_with_unresolved(session: AsyncSession) -> list[LotteryDrawing]:
    """Verified drawings that still have unresolved predictions targeting their date."""
    pending = exists().where(
        PredictionRecord.lottery_type == LotteryDrawing.lottery_type,
        PredictionRecord.target_draw_date == LotteryDrawing.draw_date,
        PredictionRecord.actual_draw_id.is_(None),
    )
    result = await session.execute(
        select(LotteryDrawing)
        .where(LotteryDrawing.verification_status == "verified", pending)
        .order_by(LotteryDrawing.draw_date)
    )
    return list(result.scalars().all())
