"""CRUD operations for lottery rule sets."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.models.lottery_rule import LotteryRuleRecord
from lottery_forecast.schemas.lottery import LotteryRuleSet


def to_rule_set(record: LotteryRuleRecord) -> LotteryRuleSet:
    special_range = None
    if record.special_range_start is not None and record.special_range_end is not None:
        special_range = (record.special_range_start, record.special_range_end)
    return LotteryRuleSet(
        identifier=record.identifier,
        display_name=record.display_name,
        category=record.category,
        main_count=record.main_count,
        special_count=record.special_count,
        main_range=(record.main_range_start, record.main_range_end),
        special_range=special_range,
        tiers=record.tiers,
        distribution=record.distribution,
        allow_repeats=record.allow_repeats,
    )


async def get_rule(session: AsyncSession, identifier: str) -> LotteryRuleRecord | None:
    result = await session.execute(
        select(LotteryRuleRecord).where(LotteryRuleRecord.identifier == identifier)
    )
    return result.scalar_one_or_none()


async def list_rules(session: AsyncSession, *, active_only: bool = True) -> list[LotteryRuleRecord]:
    query = select(LotteryRuleRecord).order_by(LotteryRuleRecord.identifier)
    if active_only:
        query = query.where(LotteryRuleRecord.is_active == True)  # noqa: E712
    result = await session.execute(query)
    return list(result.scalars().all())


async def insert_if_missing(session: AsyncSession, rule: LotteryRuleSet) -> bool:
    """Insert a rule set unless one with the same identifier exists.

    Returns True if a row was inserted. Existing rows are never rewritten.
    """
    if await get_rule(session, rule.identifier) is not None:
        return False
    session.add(LotteryRuleRecord(
        identifier=rule.identifier,
        display_name=rule.display_name,
        category=rule.category,
        main_count=rule.main_count,
        special_count=rule.special_count,
        main_range_start=rule.main_range[0],
        main_range_end=rule.main_range[1],
        special_range_start=rule.special_range[0] if rule.special_range else None,
        special_range_end=rule.special_range[1] if rule.special_range else None,
        distribution=str(rule.distribution),
        allow_repeats=rule.allow_repeats,
        tiers=[t.model_dump(mode="json") for t in rule.tiers],
    ))
    await session.flush()
    return True
