"""CRUD operations for extracted feature records."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.models.feature import AnalysisFeature


async def get_by_hash(session: AsyncSession, feature_hash: str) -> AnalysisFeature | None:
    result = await session.execute(
        select(AnalysisFeature).where(
            AnalysisFeature.feature_hash == feature_hash,
            AnalysisFeature.is_valid == True,  # noqa: E712
        )
    )
    return result.scalar_one_or_none()


async def create_feature(session: AsyncSession, feature: dict) -> AnalysisFeature:
    obj = AnalysisFeature(**feature)
    session.add(obj)
    await session.flush()
    return obj
