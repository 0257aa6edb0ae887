"""Prediction strategy ORM model."""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from lottery_forecast.db.base import Base, JSONDoc


class PredictionStrategy(Base):
    """A configured algorithm plus its running accuracy statistics.

    Never deleted while predictions reference it; set is_active=False instead.
    """

    __tablename__ = "prediction_strategies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    algorithm_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    parameters: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    hyperparameters: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    feature_config: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)

    # Running statistics (percentages)
    accuracy_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    precision_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    recall_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    f1_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_predictions: Mapped[int] = mapped_column(Integer, default=0)
    successful_predictions: Mapped[int] = mapped_column(Integer, default=0)
    total_trainings: Mapped[int] = mapped_column(Integer, default=0)
    last_training_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    model_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[str] = mapped_column(String(20), default="1.0.0")
    parent_strategy_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("prediction_strategies.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "accuracy_rate IS NULL OR (accuracy_rate >= 0 AND accuracy_rate <= 100)",
            name="ck_strategy_accuracy_rate",
        ),
        Index("ix_strategy_performance", "algorithm_type", "accuracy_rate"),
    )

    def __repr__(self) -> str:
        return f"<PredictionStrategy {self.id} {self.name} ({self.algorithm_type})>"
