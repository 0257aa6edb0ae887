"""Historical drawing ORM model."""

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from lottery_forecast.db.base import Base, IntArray, JSONDoc


class LotteryDrawing(Base):
    """One realized outcome for a game, supplied by the data-acquisition side."""

    __tablename__ = "lottery_drawings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lottery_type: Mapped[str] = mapped_column(
        String(50), ForeignKey("lottery_rules.identifier"), nullable=False
    )
    draw_number: Mapped[str] = mapped_column(String(20), nullable=False)
    draw_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Draw order is kept; digit games depend on position
    winning_numbers: Mapped[list[int]] = mapped_column(IntArray, nullable=False)
    special_numbers: Mapped[list[int]] = mapped_column(IntArray, nullable=False, default=list)

    jackpot_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    sales_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    prize_distribution: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)

    data_source: Mapped[str] = mapped_column(String(50), nullable=False, default="manual")
    verification_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("lottery_type", "draw_number", name="uq_drawing_type_number"),
        UniqueConstraint("lottery_type", "draw_date", name="uq_drawing_type_date"),
        CheckConstraint(
            "verification_status IN ('pending', 'verified', 'failed', 'duplicate')",
            name="ck_drawing_verification_status",
        ),
        Index("ix_drawings_winning_numbers", "winning_numbers", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return f"<LotteryDrawing {self.lottery_type} #{self.draw_number} {self.winning_numbers}+{self.special_numbers}>"


Index("ix_drawings_type_date", LotteryDrawing.lottery_type, LotteryDrawing.draw_date.desc())
