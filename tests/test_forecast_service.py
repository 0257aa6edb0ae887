from datetime import date, timedelta

import pytest

from lottery_forecast.errors import (
    InsufficientData,
    InvalidParameters,
    UnknownAlgorithm,
    UnknownLotteryType,
)
from lottery_forecast.schemas.lottery import DrawingCreate

from conftest import create_strategy, insert_draws, synthetic_draws


async def test_startup_seeds_system_strategies(engine):
    strategies = await engine.list_strategies()
    assert {s.algorithm_type for s in strategies if s.is_system} == set(engine.registry.kinds())
    hybrid = next(s for s in strategies if s.algorithm_type == "hybrid")
    assert hybrid.parameters["weights"] == [0.3, 0.4, 0.3]


async def test_start_is_idempotent(engine):
    await engine.start()
    strategies = await engine.list_strategies()
    assert len([s for s in strategies if s.is_system]) == 6


async def test_predict_numbers(seeded_engine, ssq):
    result = await seeded_engine.predict_numbers("ssq", "statistical")
    assert len(result.predicted_numbers) == 6
    assert len(set(result.predicted_numbers)) == 6
    assert result.predicted_numbers == sorted(result.predicted_numbers)
    assert all(1 <= n <= 33 for n in result.predicted_numbers)
    assert len(result.predicted_special_numbers) == 1
    assert len(result.confidence_scores) == 7
    assert all(0.0 <= c <= 1.0 for c in result.confidence_scores)
    assert result.target_draw_date == date.today()
    assert result.actual_draw_id is None


async def test_repeated_prediction_is_served_from_cache(seeded_engine):
    first = await seeded_engine.predict_numbers("ssq", "statistical")
    second = await seeded_engine.predict_numbers("ssq", "statistical")
    assert second.id == first.id
    assert len(await seeded_engine.get_prediction_history("ssq")) == 1


async def test_prediction_is_deterministic_across_cache_flush(seeded_engine):
    first = await seeded_engine.predict_numbers("ssq", "statistical")
    seeded_engine.cache.clear()
    second = await seeded_engine.predict_numbers("ssq", "statistical")
    assert second.id != first.id
    assert second.predicted_numbers == first.predicted_numbers
    assert second.confidence_scores == first.confidence_scores


async def test_ensemble_prediction_is_attributed_to_hybrid(seeded_engine):
    result = await seeded_engine.predict_numbers(
        "ssq", use_ensemble=True, ensemble_algorithms=["statistical", "arima"]
    )
    strategies = {s.id: s for s in await seeded_engine.list_strategies()}
    assert strategies[result.strategy_id].algorithm_type == "hybrid"
    assert result.details["members"] == ["statistical", "arima"]
    assert result.details["weights"] == [0.5, 0.5]


async def test_prediction_errors(seeded_engine):
    with pytest.raises(UnknownLotteryType):
        await seeded_engine.predict_numbers("powerball")
    with pytest.raises(UnknownAlgorithm):
        await seeded_engine.predict_numbers("ssq", "prophet")
    with pytest.raises(InvalidParameters):
        await seeded_engine.predict_numbers("ssq", use_ensemble=True, ensemble_algorithms=["statistical", "hybrid"])


async def test_prediction_needs_history(engine):
    with pytest.raises(InsufficientData):
        await engine.predict_numbers("ssq", "statistical")


async def test_new_drawing_invalidates_cached_predictions(seeded_engine):
    first = await seeded_engine.predict_numbers("ssq", "statistical")
    await seeded_engine.store_drawing(DrawingCreate(
        lottery_type="ssq",
        draw_number="extra",
        draw_date=date.today() - timedelta(days=2),
        winning_numbers=[1, 2, 3, 4, 5, 6],
        special_numbers=[1],
    ))
    second = await seeded_engine.predict_numbers("ssq", "statistical")
    assert second.id != first.id


async def test_store_drawing_validates_against_rule(engine):
    with pytest.raises(InvalidParameters):
        await engine.store_drawing(DrawingCreate(
            lottery_type="ssq", draw_number="1", draw_date=date.today(),
            winning_numbers=[1, 2, 3], special_numbers=[1],
        ))
    with pytest.raises(UnknownLotteryType):
        await engine.store_drawing(DrawingCreate(
            lottery_type="powerball", draw_number="1", draw_date=date.today(),
            winning_numbers=[1, 2, 3, 4, 5], special_numbers=[1],
        ))


async def test_duplicate_drawing_rejected(engine):
    drawing = DrawingCreate(
        lottery_type="fc3d", draw_number="2024001", draw_date=date(2024, 1, 1),
        winning_numbers=[7, 7, 0],
    )
    stored = await engine.store_drawing(drawing)
    assert stored.winning_numbers == [7, 7, 0]
    with pytest.raises(InvalidParameters):
        await engine.store_drawing(drawing)


async def test_train_algorithms_reports_per_algorithm_accuracy(seeded_engine):
    accuracies = await seeded_engine.train_algorithms("ssq", ["statistical", "arima"], historical_days=365)
    assert set(accuracies) == {"statistical", "arima"}
    assert all(0.0 <= a <= 100.0 for a in accuracies.values())


async def test_train_algorithms_maps_failures_to_zero(engine, ssq):
    await insert_draws(engine, synthetic_draws(ssq, 40), "ssq")
    # lstm needs far more drawings than 40 under its system parameters
    accuracies = await engine.train_algorithms("ssq", ["lstm"], historical_days=365)
    assert accuracies == {"lstm": 0.0}


async def test_train_algorithms_validates_before_running(engine):
    with pytest.raises(UnknownAlgorithm):
        await engine.train_algorithms("ssq", ["statistical", "prophet"])
    with pytest.raises(UnknownLotteryType):
        await engine.train_algorithms("powerball", ["statistical"])
    with pytest.raises(InvalidParameters):
        await engine.train_algorithms("ssq", ["statistical"], validation_split=0.95)


async def test_available_algorithms(engine):
    assert set(await engine.get_available_algorithms("dlt")) == set(engine.registry.kinds())
    with pytest.raises(UnknownLotteryType):
        await engine.get_available_algorithms("powerball")
    [info] = await engine.get_algorithm_info("arima")
    assert info.required_data_size == 50


async def test_training_job_lifecycle_through_engine(seeded_engine):
    strategy_id = await create_strategy(seeded_engine, "statistical", {"window_size": 30, "validation_draws": 10})
    job_id = await seeded_engine.submit_training(strategy_id, "ssq", historical_days=365)
    record = await seeded_engine.orchestrator.wait(job_id)
    assert (await seeded_engine.get_training_job(job_id)).status == record.status == "completed"
    assert await seeded_engine.cancel_training(job_id) is False


async def test_untrained_engine_has_no_rankings(engine):
    assert await engine.compare_algorithms() == []
    assert await engine.get_best_algorithm() is None


async def test_rankings_follow_trained_accuracy(seeded_engine):
    accuracies = await seeded_engine.train_algorithms("ssq", ["statistical", "arima"], historical_days=365)
    rankings = await seeded_engine.compare_algorithms()
    assert {r.kind for r in rankings} == {"statistical", "arima"}
    assert [r.accuracy_rate for r in rankings] == sorted((r.accuracy_rate for r in rankings), reverse=True)
    strategies = {s.id: s for s in await seeded_engine.list_strategies()}
    for ranking in rankings:
        assert strategies[ranking.strategy_id].algorithm_type == ranking.kind
        assert ranking.total_trainings == 1
    assert await seeded_engine.get_best_algorithm() == rankings[0].kind
    assert set(accuracies) == {r.kind for r in rankings}
