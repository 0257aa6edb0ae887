"""Pydantic schemas for predictions and the forecast command surface."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

PredictionType = Literal["standard", "quick", "detailed", "batch"]


class PredictionResultSchema(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    strategy_id: int
    lottery_type: str
    predicted_numbers: list[int]
    predicted_special_numbers: list[int] = []
    confidence_scores: list[float]
    target_draw_date: date
    prediction_type: PredictionType = "standard"
    computation_time_ms: int | None = None
    actual_draw_id: int | None = None
    accuracy_score: float | None = None
    match_count: int = 0
    special_match_count: int = 0
    is_winner: bool = False
    prize_tier: int | None = None
    prize_amount: float | None = None
    feature_vector: list[float] | None = None
    details: dict | None = None
    prediction_date: datetime | None = None
    validation_date: datetime | None = None

    @model_validator(mode="after")
    def _check_confidence_length(self) -> "PredictionResultSchema":
        expected = len(self.predicted_numbers) + len(self.predicted_special_numbers)
        if len(self.confidence_scores) != expected:
            raise ValueError(
                f"confidence_scores has {len(self.confidence_scores)} entries, expected {expected}"
            )
        if any(not 0.0 <= c <= 1.0 for c in self.confidence_scores):
            raise ValueError("confidence scores must lie in [0, 1]")
        return self


class PredictRequest(BaseModel):
    lottery_type: str
    algorithm: str = "statistical"
    use_ensemble: bool = False
    ensemble_algorithms: list[str] | None = None
    historical_days: int = Field(default=365, ge=1)
    target_date: date | None = None
    prediction_type: PredictionType = "standard"


class TrainRequest(BaseModel):
    lottery_type: str
    algorithms: list[str] = Field(min_length=1)
    historical_days: int = Field(default=365, ge=1)
    validation_split: float = Field(default=0.2, gt=0.0, lt=0.9)


class TrainResponse(BaseModel):
    lottery_type: str
    accuracies: dict[str, float]


class AlgorithmInfo(BaseModel):
    kind: str
    name: str
    description: str
    required_data_size: int
    accuracy_range: tuple[float, float]
    supports_training: bool = True


class AlgorithmRanking(BaseModel):
    """Best trained strategy of one algorithm kind."""

    kind: str
    accuracy_rate: float
    strategy_id: int
    strategy_name: str
    total_trainings: int


class DrawingReconciliation(BaseModel):
    drawing_id: int
    lottery_type: str
    draw_date: date
    visited: int
    resolved: int
    winners: int
