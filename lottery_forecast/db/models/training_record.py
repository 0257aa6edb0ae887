"""Model training record ORM model."""

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from lottery_forecast.db.base import Base, JSONDoc


class ModelTrainingRecord(Base):
    """One training job; status only moves forward."""

    __tablename__ = "model_training_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    strategy_id: Mapped[int] = mapped_column(Integer, ForeignKey("prediction_strategies.id"), nullable=False)
    lottery_type: Mapped[str] = mapped_column(
        String(50), ForeignKey("lottery_rules.identifier"), nullable=False
    )
    training_data_start: Mapped[date] = mapped_column(Date, nullable=False)
    training_data_end: Mapped[date] = mapped_column(Date, nullable=False)
    training_samples: Mapped[int] = mapped_column(Integer, default=0)
    validation_samples: Mapped[int] = mapped_column(Integer, default=0)
    test_samples: Mapped[int] = mapped_column(Integer, default=0)
    model_parameters: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    feature_config: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)

    training_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    validation_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    test_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    training_loss: Mapped[float | None] = mapped_column(Float, nullable=True)
    validation_loss: Mapped[float | None] = mapped_column(Float, nullable=True)
    model_metrics: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)

    model_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    training_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_training_status",
        ),
        Index("ix_training_strategy_created", "strategy_id", "created_at"),
        Index("ix_training_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<ModelTrainingRecord {self.id} strategy={self.strategy_id} status={self.status}>"
