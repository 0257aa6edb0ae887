import numpy as np
import pytest

from lottery_forecast.errors import (
    InsufficientData,
    InvalidParameters,
    PredictionFailed,
    TrainingCancelled,
    UnknownAlgorithm,
)
from lottery_forecast.ml.features.window import FeatureSet
from lottery_forecast.ml.inference.algorithm_registry import AlgorithmRegistry
from lottery_forecast.ml.models.base_model import rank_numbers, validate_prediction

from conftest import make_window

FAST_PARAMS = {
    "statistical": {"window_size": 30, "validation_draws": 10},
    "random_forest": {"min_samples": 30, "n_estimators": 10, "max_depth": 4, "lookback": 10, "estimators_per_step": 5},
    "arima": {"min_samples": 30, "p": 1, "d": 0, "q": 0, "trend": "c", "smoothing_window": 5},
    "neural_network": {"min_samples": 30, "layers": [16], "epochs": 3, "batch_size": 16, "lookback": 10, "patience": 2},
    "lstm": {"min_samples": 30, "hidden_size": 8, "num_layers": 1, "epochs": 2, "batch_size": 16, "sequence_length": 5, "patience": 2},
}


@pytest.fixture
def registry():
    return AlgorithmRegistry(device="cpu")


def _features(window):
    as_of = window.end_date.fromordinal(window.end_date.toordinal() + 1)
    return FeatureSet(rule=window.rule, as_of_date=as_of, window=window)


def _train(registry, kind, rule, n=90):
    window = make_window(rule, n)
    train, validation, _ = window.split(0.2)
    algorithm = registry.create(kind, FAST_PARAMS[kind])
    metrics = algorithm.train(train, validation)
    return algorithm, metrics, window


@pytest.mark.parametrize("kind", sorted(FAST_PARAMS))
def test_train_and_predict_produce_valid_output(registry, ssq, kind):
    algorithm, metrics, window = _train(registry, kind, ssq)
    assert 0.0 <= metrics.train_accuracy <= 100.0
    assert metrics.train_samples > 0
    assert algorithm.is_trained

    output = algorithm.predict(_features(window), ssq)
    validate_prediction(output, ssq)
    assert output.numbers == sorted(output.numbers)
    assert output.details["algorithm"] == kind


@pytest.mark.parametrize("kind", sorted(FAST_PARAMS))
def test_reloaded_model_predicts_identically(registry, ssq, kind):
    algorithm, _, window = _train(registry, kind, ssq)
    features = _features(window)
    restored = registry.create(kind, FAST_PARAMS[kind])
    restored.deserialize(algorithm.serialize())
    a, b = algorithm.predict(features, ssq), restored.predict(features, ssq)
    assert a.numbers == b.numbers
    assert a.special_numbers == b.special_numbers
    np.testing.assert_allclose(a.confidence_scores, b.confidence_scores)


def test_statistical_prediction_is_deterministic(registry, ssq):
    window = make_window(ssq, 60)
    first = registry.create("statistical", FAST_PARAMS["statistical"]).predict(_features(window), ssq)
    second = registry.create("statistical", FAST_PARAMS["statistical"]).predict(_features(window), ssq)
    assert first == second


def test_digit_game_predictions_are_unique(registry, fc3d):
    window = make_window(fc3d, 60)
    output = registry.create("statistical", FAST_PARAMS["statistical"]).predict(_features(window), fc3d)
    assert len(set(output.numbers)) == 3
    assert all(0 <= n <= 9 for n in output.numbers)
    assert output.special_numbers == []


def test_insufficient_data(registry, ssq):
    window = make_window(ssq, 20)
    algorithm = registry.create("random_forest", FAST_PARAMS["random_forest"])
    with pytest.raises(InsufficientData) as exc:
        algorithm.train(window, window[:0])
    assert exc.value.required == 30


def test_cancellation_between_iterations(registry, ssq):
    window = make_window(ssq, 90)
    algorithm = registry.create("random_forest", FAST_PARAMS["random_forest"])
    with pytest.raises(TrainingCancelled):
        algorithm.train(window, window[:0], should_stop=lambda: True)
    assert not algorithm.is_trained


def test_trained_model_rejects_other_lottery(registry, ssq, rules):
    algorithm, _, _ = _train(registry, "statistical", ssq)
    dlt = rules.get_rule("dlt")
    with pytest.raises(PredictionFailed):
        algorithm.predict(_features(make_window(dlt, 40)), dlt)


def test_unknown_algorithm(registry):
    with pytest.raises(UnknownAlgorithm):
        registry.create("xgboost")


@pytest.mark.parametrize(
    "kind, params",
    [
        ("random_forest", {"n_estimators": 0}),
        ("statistical", {"weight_function": "cubic"}),
        ("arima", {"d": 1, "trend": "c"}),
        ("neural_network", {"activation": "softsign"}),
        ("lstm", {"unknown": 1}),
    ],
)
def test_invalid_parameters(registry, kind, params):
    with pytest.raises(InvalidParameters):
        registry.validate(kind, params)


def test_rank_numbers_breaks_ties_by_lowest_number():
    numbers, confidences = rank_numbers(np.array([0.5, 0.9, 0.5, 0.5]), 1, 2)
    assert numbers == [1, 2]
    assert confidences == [0.0, 1.0]


def test_registry_metadata(registry):
    assert set(registry.kinds()) == {"statistical", "random_forest", "lstm", "arima", "neural_network", "hybrid"}
    info = registry.info("lstm")
    assert info.required_data_size == 1000
    assert registry.recommend_algorithms(60) == ["arima", "statistical"]
    assert registry.recommend_algorithms(150) == ["random_forest", "arima", "statistical"]
    assert registry.rankings()[0] == ("hybrid", pytest.approx(0.875))


def test_trained_accuracy_ranking(registry):
    accuracies = {"statistical": 12.0, "arima": 20.0, "lstm": None, "unknown": 99.0}
    assert registry.rank_by_accuracy(accuracies) == [("arima", 20.0), ("statistical", 12.0)]
    assert registry.best_by_accuracy(accuracies) == "arima"
    assert registry.best_by_accuracy({"lstm": None}) is None


def test_registry_defaults_to_cpu():
    assert AlgorithmRegistry().device == "cpu"
