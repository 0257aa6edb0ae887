"""Pydantic schemas for training jobs."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class TrainingStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TrainingStatus.COMPLETED, TrainingStatus.FAILED, TrainingStatus.CANCELLED)

    def can_transition_to(self, target: "TrainingStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[TrainingStatus, frozenset[TrainingStatus]] = {
    TrainingStatus.PENDING: frozenset(
        {TrainingStatus.RUNNING, TrainingStatus.FAILED, TrainingStatus.CANCELLED}
    ),
    TrainingStatus.RUNNING: frozenset(
        {TrainingStatus.COMPLETED, TrainingStatus.FAILED, TrainingStatus.CANCELLED}
    ),
    TrainingStatus.COMPLETED: frozenset(),
    TrainingStatus.FAILED: frozenset(),
    TrainingStatus.CANCELLED: frozenset(),
}


class TrainingWindow(BaseModel):
    """Date-bounded slice of history used by one training job."""

    lottery_type: str
    start_date: date
    end_date: date  # inclusive
    validation_split: float = 0.2
    test_split: float = 0.1

    @model_validator(mode="after")
    def _check(self) -> "TrainingWindow":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        if not 0.0 < self.validation_split < 1.0:
            raise ValueError("validation_split must lie in (0, 1)")
        if not 0.0 <= self.test_split < 1.0 or self.validation_split + self.test_split >= 1.0:
            raise ValueError("validation_split + test_split must be below 1")
        return self


class TrainingRecordSchema(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    strategy_id: int
    lottery_type: str
    training_data_start: date
    training_data_end: date
    training_samples: int = 0
    validation_samples: int = 0
    test_samples: int = 0
    model_parameters: dict = {}
    feature_config: dict = {}
    training_accuracy: float | None = None
    validation_accuracy: float | None = None
    test_accuracy: float | None = None
    training_loss: float | None = None
    validation_loss: float | None = None
    model_metrics: dict = {}
    model_hash: str | None = None
    model_size_bytes: int | None = None
    training_duration_ms: int | None = None
    status: TrainingStatus
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class TrainingJobRequest(BaseModel):
    strategy_id: int
    lottery_type: str
    historical_days: int | None = Field(default=None, ge=1)
    validation_split: float = Field(default=0.2, gt=0.0, lt=0.9)


class TrainingJobAccepted(BaseModel):
    job_id: int
    strategy_id: int
