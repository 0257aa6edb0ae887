"""Pydantic schemas for extracted features."""

from datetime import date
from enum import StrEnum

from pydantic import BaseModel


class FeatureKind(StrEnum):
    FREQUENCY = "frequency"
    TREND = "trend"
    STATISTICAL = "statistical"
    PATTERN = "pattern"
    TEMPORAL = "temporal"


ALL_FEATURE_KINDS: tuple[FeatureKind, ...] = tuple(FeatureKind)


class FeatureConfig(BaseModel):
    kinds: list[FeatureKind] = list(ALL_FEATURE_KINDS)
    window_size: int = 50
    include_special: bool = True


class FeatureRecordSchema(BaseModel):
    model_config = {"from_attributes": True}

    id: int | None = None
    lottery_type: str
    drawing_id: int | None = None
    feature_type: FeatureKind
    feature_name: str
    feature_data: dict
    feature_vector: list[float]
    feature_hash: str
    as_of_date: date
    data_points: int
    calculation_time_ms: int | None = None
    algorithm_version: str = "1.0.0"
