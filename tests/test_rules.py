import pytest

from lottery_forecast.errors import UnknownLotteryType
from lottery_forecast.rules import PRESET_RULES, RuleRegistry
from lottery_forecast.schemas.lottery import CountRequirement, LotteryRuleSet, PrizeTier


def test_presets_are_registered(rules):
    assert {r.identifier for r in rules.list_rules()} >= {"ssq", "dlt", "fc3d", "pl3", "pl5"}
    assert len(rules.list_rules()) == len(PRESET_RULES)


def test_unknown_lottery_type(rules):
    with pytest.raises(UnknownLotteryType):
        rules.get_rule("powerball")
    assert "powerball" not in rules


def test_ssq_shape(ssq):
    assert ssq.main_size == 33
    assert ssq.special_size == 16
    assert not ssq.is_digit_game
    assert [t.tier for t in ssq.tiers] == [1, 2, 3, 4, 5, 6]


def test_validate_numbers_rejects_bad_draws(ssq):
    ssq.validate_numbers([1, 5, 9, 14, 22, 33], [7])
    with pytest.raises(ValueError, match="expected 6 main numbers"):
        ssq.validate_numbers([1, 2, 3], [7])
    with pytest.raises(ValueError, match="must lie in"):
        ssq.validate_numbers([0, 5, 9, 14, 22, 33], [7])
    with pytest.raises(ValueError, match="unique"):
        ssq.validate_numbers([1, 1, 9, 14, 22, 33], [7])
    with pytest.raises(ValueError, match="special"):
        ssq.validate_numbers([1, 5, 9, 14, 22, 33], [17])


def test_digit_games_allow_repeated_digits(fc3d):
    assert fc3d.is_digit_game
    fc3d.validate_numbers([7, 7, 0], [])


def test_rule_set_validation():
    with pytest.raises(ValueError):
        LotteryRuleSet(
            identifier="bad", display_name="bad", category="local",
            main_count=10, main_range=(1, 5),
        )
    with pytest.raises(ValueError):
        LotteryRuleSet(
            identifier="bad", display_name="bad", category="local",
            main_count=2, special_count=1, main_range=(1, 10),
        )


def test_register_custom_rule():
    registry = RuleRegistry()
    custom = LotteryRuleSet(
        identifier="kl8_mini",
        display_name="Mini keno",
        category="local",
        main_count=4,
        main_range=(1, 20),
        tiers=(PrizeTier(tier=1, requirement=CountRequirement(main_match=4)),),
    )
    registry.register(custom)
    assert registry.get_rule("kl8_mini") is custom
