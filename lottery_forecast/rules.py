"""Lottery rule registry and preset game definitions."""

import threading
from collections.abc import Iterable

from lottery_forecast.errors import UnknownLotteryType
from lottery_forecast.schemas.lottery import (
    CountRequirement,
    DigitRequirement,
    Distribution,
    LotteryRuleSet,
    PrizeTier,
)


def _count_tiers(*requirements: tuple[int, int]) -> tuple[PrizeTier, ...]:
    return tuple(
        PrizeTier(tier=i, requirement=CountRequirement(main_match=m, special_match=s))
        for i, (m, s) in enumerate(requirements, start=1)
    )


_DIGIT_TIERS = (
    PrizeTier(tier=1, requirement=DigitRequirement(match="exact", order="exact"), prize_amount=1040.0),
    PrizeTier(tier=2, requirement=DigitRequirement(match="exact", order="any"), prize_amount=346.0),
    PrizeTier(tier=3, requirement=DigitRequirement(match="group", order="any"), prize_amount=173.0),
)

PRESET_RULES: tuple[LotteryRuleSet, ...] = (
    LotteryRuleSet(
        identifier="ssq",
        display_name="双色球",
        category="welfare",
        main_count=6,
        special_count=1,
        main_range=(1, 33),
        special_range=(1, 16),
        tiers=_count_tiers((6, 1), (6, 0), (5, 1), (5, 0), (4, 1), (4, 0)),
        distribution=Distribution.PARI_MUTUEL,
    ),
    LotteryRuleSet(
        identifier="dlt",
        display_name="大乐透",
        category="sports",
        main_count=5,
        special_count=2,
        main_range=(1, 35),
        special_range=(1, 12),
        tiers=_count_tiers(
            (5, 2), (5, 1), (5, 0), (4, 2), (4, 1), (3, 2), (4, 0), (3, 1), (2, 2),
        ),
        distribution=Distribution.PARI_MUTUEL,
    ),
    LotteryRuleSet(
        identifier="fc3d",
        display_name="福彩3D",
        category="welfare",
        main_count=3,
        main_range=(0, 9),
        tiers=_DIGIT_TIERS,
        distribution=Distribution.FIXED,
        allow_repeats=True,
    ),
    LotteryRuleSet(
        identifier="pl3",
        display_name="排列三",
        category="sports",
        main_count=3,
        main_range=(0, 9),
        tiers=_DIGIT_TIERS,
        distribution=Distribution.FIXED,
        allow_repeats=True,
    ),
    LotteryRuleSet(
        identifier="pl5",
        display_name="排列五",
        category="sports",
        main_count=5,
        main_range=(0, 9),
        tiers=(
            PrizeTier(
                tier=1,
                requirement=DigitRequirement(match="exact", order="exact"),
                prize_amount=100000.0,
            ),
        ),
        distribution=Distribution.FIXED,
        allow_repeats=True,
    ),
)


class RuleRegistry:
    """Immutable-per-entry lookup of game rules, safe for concurrent reads."""

    def __init__(self, rules: Iterable[LotteryRuleSet] = PRESET_RULES):
        self._rules: dict[str, LotteryRuleSet] = {r.identifier: r for r in rules}
        self._write_lock = threading.Lock()

    def get_rule(self, lottery_type: str) -> LotteryRuleSet:
        try:
            return self._rules[lottery_type]
        except KeyError:
            raise UnknownLotteryType(lottery_type) from None

    def register(self, rule: LotteryRuleSet) -> None:
        """Add a rule at configuration time. Existing identifiers cannot be redefined."""
        with self._write_lock:
            existing = self._rules.get(rule.identifier)
            if existing is not None and existing != rule:
                raise ValueError(f"Rule {rule.identifier} is already registered with different settings")
            # copy-on-write so readers never observe a dict mid-update
            rules = dict(self._rules)
            rules[rule.identifier] = rule
            self._rules = rules

    def list_rules(self) -> list[LotteryRuleSet]:
        return sorted(self._rules.values(), key=lambda r: r.identifier)

    def __contains__(self, lottery_type: str) -> bool:
        return lottery_type in self._rules
