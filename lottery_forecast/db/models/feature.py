"""Extracted feature ORM model."""

from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from lottery_forecast.db.base import Base, FloatArray, JSONDoc


class AnalysisFeature(Base):
    __tablename__ = "analysis_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lottery_type: Mapped[str] = mapped_column(
        String(50), ForeignKey("lottery_rules.identifier"), nullable=False
    )
    drawing_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("lottery_drawings.id"), nullable=True)
    feature_type: Mapped[str] = mapped_column(String(50), nullable=False)
    feature_name: Mapped[str] = mapped_column(String(100), nullable=False)
    feature_data: Mapped[dict] = mapped_column(JSONDoc, nullable=False)
    feature_vector: Mapped[list[float]] = mapped_column(FloatArray, nullable=False)
    feature_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    data_points: Mapped[int] = mapped_column(Integer, nullable=False)
    calculation_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    algorithm_version: Mapped[str] = mapped_column(String(20), default="1.0.0")
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "feature_type IN ('frequency', 'trend', 'statistical', 'pattern', 'temporal')",
            name="ck_feature_type",
        ),
        Index("ix_features_type_kind", "lottery_type", "feature_type"),
    )

    def __repr__(self) -> str:
        return f"<AnalysisFeature {self.lottery_type} {self.feature_type} as_of={self.as_of_date}>"
