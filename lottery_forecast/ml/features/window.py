"""In-memory draw windows shared by feature extraction and the algorithms."""

from dataclasses import dataclass, field
from datetime import date

import numpy as np

from lottery_forecast.schemas.features import FeatureKind
from lottery_forecast.schemas.lottery import LotteryRuleSet


@dataclass(frozen=True)
class Draw:
    draw_number: str
    draw_date: date
    numbers: tuple[int, ...]
    specials: tuple[int, ...] = ()
    drawing_id: int | None = None

    @classmethod
    def from_record(cls, record) -> "Draw":
        return cls(
            draw_number=record.draw_number,
            draw_date=record.draw_date,
            numbers=tuple(record.winning_numbers),
            specials=tuple(record.special_numbers or ()),
            drawing_id=record.id,
        )


@dataclass(frozen=True)
class DrawWindow:
    """Chronologically ordered drawings of one game."""

    rule: LotteryRuleSet
    draws: tuple[Draw, ...]

    def __len__(self) -> int:
        return len(self.draws)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return DrawWindow(self.rule, self.draws[item])
        return self.draws[item]

    def __add__(self, other: "DrawWindow") -> "DrawWindow":
        return DrawWindow(self.rule, self.draws + other.draws)

    @property
    def start_date(self) -> date | None:
        return self.draws[0].draw_date if self.draws else None

    @property
    def end_date(self) -> date | None:
        return self.draws[-1].draw_date if self.draws else None

    def split(self, validation_split: float, test_split: float = 0.0) -> tuple["DrawWindow", "DrawWindow", "DrawWindow"]:
        """Chronological train / validation / test split."""
        n = len(self.draws)
        n_test = int(n * test_split)
        n_val = int(n * validation_split)
        train_end = n - n_val - n_test
        val_end = n - n_test
        return self[:train_end], self[train_end:val_end], self[val_end:]


@dataclass(frozen=True)
class FeatureSet:
    """Features for one prediction: the window they came from plus one vector per kind."""

    rule: LotteryRuleSet
    as_of_date: date
    window: DrawWindow
    vectors: dict[FeatureKind, np.ndarray] = field(default_factory=dict)

    @property
    def vector(self) -> np.ndarray:
        if not self.vectors:
            return np.zeros(0, dtype=np.float64)
        return np.concatenate([self.vectors[k] for k in sorted(self.vectors)])
