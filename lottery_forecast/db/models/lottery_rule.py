"""Lottery rule set ORM model."""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from lottery_forecast.db.base import Base, JSONDoc


class LotteryRuleRecord(Base):
    """Persisted game definition; immutable once drawings reference it."""

    __tablename__ = "lottery_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    main_count: Mapped[int] = mapped_column(Integer, nullable=False)
    special_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    main_range_start: Mapped[int] = mapped_column(Integer, nullable=False)
    main_range_end: Mapped[int] = mapped_column(Integer, nullable=False)
    special_range_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    special_range_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    distribution: Mapped[str] = mapped_column(String(20), nullable=False)
    allow_repeats: Mapped[bool] = mapped_column(Boolean, default=False)
    tiers: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        CheckConstraint("category IN ('welfare', 'sports', 'local')", name="ck_rule_category"),
        CheckConstraint("main_range_end > main_range_start", name="ck_rule_main_range"),
    )

    def __repr__(self) -> str:
        return f"<LotteryRuleRecord {self.identifier} {self.main_count}+{self.special_count}>"
