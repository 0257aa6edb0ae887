import math

import numpy as np
import pytest

from lottery_forecast.errors import InvalidEnsembleWeights, InvalidParameters, UnknownAlgorithm
from lottery_forecast.ml.features.window import FeatureSet
from lottery_forecast.ml.inference.algorithm_registry import AlgorithmRegistry
from lottery_forecast.ml.models.base_model import AlgorithmParams, BaseForecastAlgorithm, TrainingMetrics
from lottery_forecast.ml.models.ensemble import HybridEnsemble, HybridParams, check_weights, equal_weights

from conftest import make_window


class FixedScores(BaseForecastAlgorithm):
    """Scores a fixed set of favourite numbers at 1 and everything else at 0."""

    kind = "fixed"

    def __init__(self, favourites, special_favourites=(1,)):
        super().__init__(AlgorithmParams())
        self.favourites = favourites
        self.special_favourites = special_favourites

    def train(self, training_window, validation_window, should_stop=None):
        return TrainingMetrics(train_accuracy=0.0)

    def score_numbers(self, features, rule):
        main = np.zeros(rule.main_size)
        main[[n - rule.main_start for n in self.favourites]] = 1.0
        special = np.zeros(rule.special_size)
        special[[n - rule.special_start for n in self.special_favourites]] = 1.0
        return main, special

    def serialize(self):
        return b""

    def deserialize(self, data):
        pass


@pytest.fixture
def features(ssq):
    window = make_window(ssq, 30)
    return FeatureSet(rule=ssq, as_of_date=window.end_date, window=window)


def test_weights_must_sum_to_one():
    check_weights([0.3, 0.4, 0.3])
    check_weights([1.5, -0.5])
    with pytest.raises(InvalidEnsembleWeights):
        check_weights([0.3, 0.4, 0.2])
    with pytest.raises(InvalidEnsembleWeights):
        check_weights([])
    with pytest.raises(InvalidEnsembleWeights):
        check_weights([float("nan"), 1.0])


@pytest.mark.parametrize("n", [1, 3, 7])
def test_equal_weights_sum_exactly(n):
    weights = equal_weights(n)
    assert len(weights) == n
    assert math.fsum(weights) == 1.0


def test_heavier_member_dominates(ssq, features):
    low, high = FixedScores(range(1, 7)), FixedScores(range(28, 34), (16,))
    ensemble = HybridEnsemble(HybridParams(models=("statistical", "arima")), [(low, 0.7), (high, 0.3)])
    output = ensemble.predict(features, ssq)
    assert output.numbers == [1, 2, 3, 4, 5, 6]
    assert output.special_numbers == [1]
    assert output.confidence_scores == pytest.approx([0.7] * 7)
    assert output.details["weights"] == [0.7, 0.3]


def test_ties_go_to_lowest_number(ssq, features):
    high, low = FixedScores(range(28, 34)), FixedScores(range(1, 7))
    ensemble = HybridEnsemble(HybridParams(models=("statistical", "arima")), [(high, 0.5), (low, 0.5)])
    assert ensemble.predict(features, ssq).numbers == [1, 2, 3, 4, 5, 6]


def _three_members():
    return [
        (FixedScores(range(1, 7)), 0.8),
        (FixedScores([1, 2, 3, 10, 11, 12]), 0.1),
        (FixedScores([1, 2, 10, 20, 21, 22]), 0.1),
    ]


def test_majority_voting_counts_members(ssq, features):
    params = HybridParams(models=("statistical", "arima", "lstm"), voting="majority")
    output = HybridEnsemble(params, _three_members()).predict(features, ssq)
    # 1 and 2 have three votes, 3 and 10 two; single votes fall to the lowest numbers
    assert output.numbers == [1, 2, 3, 4, 5, 10]
    assert output.confidence_scores == pytest.approx([1.0, 1.0, 2 / 3, 1 / 3, 1 / 3, 2 / 3, 1.0])
    assert output.details["voting"] == "majority"


def test_weighted_voting_follows_the_heavy_member(ssq, features):
    params = HybridParams(models=("statistical", "arima", "lstm"))
    output = HybridEnsemble(params, _three_members()).predict(features, ssq)
    assert output.numbers == [1, 2, 3, 4, 5, 6]


def test_consensus_voting_rewards_agreement(ssq, features):
    params = HybridParams(models=("statistical", "arima", "lstm"), voting="consensus", diversity_weight=0.1)
    output = HybridEnsemble(params, _three_members()).predict(features, ssq)
    assert output.numbers == [1, 2, 3, 4, 5, 6]
    assert output.confidence_scores == pytest.approx([1.0, 1.0, 0.99 / 1.2, 0.8 / 1.2, 0.8 / 1.2, 0.8 / 1.2, 1.0])


def test_consensus_without_diversity_is_weighted_agreement(ssq, features):
    params = HybridParams(models=("statistical", "arima"), voting="consensus", diversity_weight=0.0)
    members = [(FixedScores(range(1, 7)), 0.25), (FixedScores(range(28, 34)), 0.75)]
    output = HybridEnsemble(params, members).predict(features, ssq)
    assert output.numbers == [28, 29, 30, 31, 32, 33]
    assert output.confidence_scores[:6] == pytest.approx([0.75] * 6)


def test_unknown_voting_mode_rejected():
    with pytest.raises(InvalidParameters):
        AlgorithmRegistry(device="cpu").create("hybrid", {"models": ["statistical"], "voting": "ranked"})


def test_invalid_weights_rejected_at_construction():
    members = [(FixedScores(range(1, 7)), 0.3), (FixedScores(range(1, 7)), 0.4), (FixedScores(range(1, 7)), 0.2)]
    with pytest.raises(InvalidEnsembleWeights):
        HybridEnsemble(HybridParams(models=("statistical", "arima", "lstm")), members)


def test_registry_builds_hybrid():
    registry = AlgorithmRegistry(device="cpu")
    ensemble = registry.create_ensemble(["statistical", "arima"])
    assert [m.kind for m in ensemble.members] == ["statistical", "arima"]
    assert ensemble.weights.tolist() == [0.5, 0.5]

    weighted = registry.create("hybrid", {"models": ["random_forest", "lstm", "neural_network"], "weights": [0.3, 0.4, 0.3]})
    assert weighted.weights.tolist() == [0.3, 0.4, 0.3]


@pytest.mark.parametrize(
    "params",
    [
        {"models": ["statistical", "hybrid"]},
        {"models": ["statistical", "arima"], "weights": [1.0]},
        {"models": ["statistical", "arima"], "weights": [0.3, 0.4]},
        {"models": ["statistical", "prophet"]},
    ],
)
def test_registry_rejects_bad_hybrids(params):
    with pytest.raises((InvalidParameters, UnknownAlgorithm)):
        AlgorithmRegistry(device="cpu").create("hybrid", params)


def test_trained_hybrid_round_trips(ssq):
    registry = AlgorithmRegistry(device="cpu")
    params = {
        "models": ["statistical", "arima"],
        "weights": [0.6, 0.4],
        "member_parameters": {
            "statistical": {"window_size": 30, "validation_draws": 10},
            "arima": {"min_samples": 30, "p": 1, "d": 0, "q": 0, "trend": "c", "smoothing_window": 5},
        },
    }
    window = make_window(ssq, 80)
    train, validation, _ = window.split(0.2)
    ensemble = registry.create("hybrid", params)
    metrics = ensemble.train(train, validation)
    assert 0.0 <= metrics.train_accuracy <= 100.0

    features = FeatureSet(rule=ssq, as_of_date=window.end_date.fromordinal(window.end_date.toordinal() + 1), window=window)
    restored = registry.create("hybrid", params)
    restored.deserialize(ensemble.serialize())
    assert restored.predict(features, ssq).numbers == ensemble.predict(features, ssq).numbers
