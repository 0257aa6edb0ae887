"""Pydantic schemas for lottery rules and drawings."""

from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Distribution(StrEnum):
    PARI_MUTUEL = "pari-mutuel"
    FIXED = "fixed"


class VerificationStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    DUPLICATE = "duplicate"


# --- Prize tiers ---

class CountRequirement(BaseModel):
    """Tier reached when at least `main_match` main and `special_match` special numbers match."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["count"] = "count"
    main_match: int = Field(ge=0)
    special_match: int = Field(default=0, ge=0)


class DigitRequirement(BaseModel):
    """Digit-game tier.

    match="exact", order="exact": same digits in the same positions.
    match="exact", order="any":   same digits (as a multiset) in any order.
    match="group", order="any":   every drawn digit appears among the predicted digits.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["digit"] = "digit"
    match: Literal["exact", "group"]
    order: Literal["exact", "any"]


TierRequirement = Annotated[CountRequirement | DigitRequirement, Field(discriminator="kind")]


class PrizeTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: int = Field(ge=1)
    requirement: TierRequirement
    prize_amount: float | None = None  # fixed-distribution games only


# --- Rule sets ---

class LotteryRuleSet(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    identifier: str
    display_name: str
    category: Literal["welfare", "sports", "local"]
    main_count: int = Field(gt=0)
    special_count: int = Field(default=0, ge=0)
    main_range: tuple[int, int]
    special_range: tuple[int, int] | None = None
    tiers: tuple[PrizeTier, ...] = ()
    distribution: Distribution = Distribution.PARI_MUTUEL
    allow_repeats: bool = False  # digit games draw each position independently

    @model_validator(mode="after")
    def _check_ranges(self) -> "LotteryRuleSet":
        start, end = self.main_range
        if end <= start:
            raise ValueError("main_range end must be greater than start")
        if self.main_count > end - start + 1:
            raise ValueError("main_count exceeds the size of main_range")
        if self.special_count:
            if self.special_range is None:
                raise ValueError("special_range is required when special_count > 0")
            s_start, s_end = self.special_range
            if s_end <= s_start:
                raise ValueError("special_range end must be greater than start")
            if self.special_count > s_end - s_start + 1:
                raise ValueError("special_count exceeds the size of special_range")
        numbers = [t.tier for t in self.tiers]
        if numbers != sorted(set(numbers)):
            raise ValueError("prize tiers must be unique and in ascending order")
        return self

    @property
    def main_start(self) -> int:
        return self.main_range[0]

    @property
    def main_size(self) -> int:
        return self.main_range[1] - self.main_range[0] + 1

    @property
    def special_start(self) -> int:
        return self.special_range[0] if self.special_range else 0

    @property
    def special_size(self) -> int:
        if not self.special_count or self.special_range is None:
            return 0
        return self.special_range[1] - self.special_range[0] + 1

    @property
    def is_digit_game(self) -> bool:
        return any(t.requirement.kind == "digit" for t in self.tiers)

    def validate_numbers(self, numbers: list[int], special_numbers: list[int]) -> None:
        """Raise ValueError if a draw does not fit this rule."""
        if len(numbers) != self.main_count:
            raise ValueError(f"{self.identifier}: expected {self.main_count} main numbers, got {len(numbers)}")
        if len(special_numbers) != self.special_count:
            raise ValueError(
                f"{self.identifier}: expected {self.special_count} special numbers, got {len(special_numbers)}"
            )
        lo, hi = self.main_range
        if any(n < lo or n > hi for n in numbers):
            raise ValueError(f"{self.identifier}: main numbers must lie in {lo}..{hi}")
        if not self.allow_repeats and len(set(numbers)) != len(numbers):
            raise ValueError(f"{self.identifier}: main numbers must be unique")
        if special_numbers:
            s_lo, s_hi = self.special_range
            if any(n < s_lo or n > s_hi for n in special_numbers):
                raise ValueError(f"{self.identifier}: special numbers must lie in {s_lo}..{s_hi}")
            if len(set(special_numbers)) != len(special_numbers):
                raise ValueError(f"{self.identifier}: special numbers must be unique")


# --- Drawings ---

class DrawingCreate(BaseModel):
    lottery_type: str
    draw_number: str
    draw_date: date
    winning_numbers: list[int]
    special_numbers: list[int] = []
    jackpot_amount: float | None = None
    sales_amount: float | None = None
    prize_distribution: dict[str, float] = {}
    data_source: str = "manual"
    verification_status: VerificationStatus = VerificationStatus.PENDING


class DrawingSchema(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    lottery_type: str
    draw_number: str
    draw_date: date
    winning_numbers: list[int]
    special_numbers: list[int]
    jackpot_amount: float | None = None
    sales_amount: float | None = None
    prize_distribution: dict[str, float] | None = None
    data_source: str
    verification_status: VerificationStatus
    created_at: datetime | None = None
