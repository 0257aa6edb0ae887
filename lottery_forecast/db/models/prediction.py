"""Prediction result ORM model."""

from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from lottery_forecast.db.base import Base, FloatArray, IntArray, JSONDoc


class PredictionRecord(Base):
    """Stored prediction; resolved exactly once against the actual drawing."""

    __tablename__ = "prediction_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    strategy_id: Mapped[int] = mapped_column(Integer, ForeignKey("prediction_strategies.id"), nullable=False)
    lottery_type: Mapped[str] = mapped_column(
        String(50), ForeignKey("lottery_rules.identifier"), nullable=False
    )
    actual_draw_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("lottery_drawings.id"), nullable=True
    )

    predicted_numbers: Mapped[list[int]] = mapped_column(IntArray, nullable=False)
    predicted_special_numbers: Mapped[list[int]] = mapped_column(IntArray, nullable=False, default=list)
    confidence_scores: Mapped[list[float]] = mapped_column(FloatArray, nullable=False)

    target_draw_date: Mapped[date] = mapped_column(Date, nullable=False)
    prediction_type: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")

    accuracy_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    match_count: Mapped[int] = mapped_column(Integer, default=0)
    special_match_count: Mapped[int] = mapped_column(Integer, default=0)
    is_winner: Mapped[bool] = mapped_column(Boolean, default=False)
    prize_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prize_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    computation_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feature_vector: Mapped[list[float] | None] = mapped_column(FloatArray, nullable=True)
    details: Mapped[dict | None] = mapped_column("metadata", JSONDoc, nullable=True)
    prediction_date: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    validation_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "prediction_type IN ('standard', 'quick', 'detailed', 'batch')",
            name="ck_prediction_type",
        ),
        Index("ix_predictions_strategy_target", "strategy_id", "target_draw_date"),
        Index("ix_predictions_type_target", "lottery_type", "target_draw_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<PredictionRecord {self.id} {self.lottery_type} {self.predicted_numbers}"
            f"+{self.predicted_special_numbers} target={self.target_draw_date}>"
        )
