import asyncio
import time
from datetime import date, timedelta

import numpy as np
import pytest

from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.errors import TrainingInProgress, UnknownStrategy, UnknownTrainingJob
from lottery_forecast.ml.inference.algorithm_registry import ALGORITHMS, AlgorithmRegistry, AlgorithmSpec
from lottery_forecast.ml.models.base_model import BaseForecastAlgorithm, TrainingMetrics
from lottery_forecast.ml.training.trainer import TIMEOUT_REASON, TrainingOrchestrator
from lottery_forecast.schemas.training import TrainingStatus, TrainingWindow

from conftest import create_strategy, insert_draws, synthetic_draws

FAST_STATISTICAL = {"window_size": 30, "validation_draws": 10}


class SlowModel(BaseForecastAlgorithm):
    """Polls its stop flag every 10ms for up to ten seconds."""

    kind = "slow"

    def train(self, training_window, validation_window, should_stop=None):
        for _ in range(1000):
            self._check_stop(should_stop)
            time.sleep(0.01)
        self.trained_for = training_window.rule.identifier
        return TrainingMetrics(train_accuracy=0.0)

    def score_numbers(self, features, rule):
        return np.zeros(rule.main_size), np.zeros(rule.special_size)

    def serialize(self):
        return b"slow"

    def deserialize(self, data):
        pass


class BrokenModel(SlowModel):
    """Fails with an error outside the engine's own taxonomy."""

    kind = "broken"

    def train(self, training_window, validation_window, should_stop=None):
        return {}["missing"]


def _window(days=365, lottery_type="ssq"):
    today = date.today()
    return TrainingWindow(
        lottery_type=lottery_type,
        start_date=today - timedelta(days=days),
        end_date=today,
        validation_split=0.2,
        test_split=0.1,
    )


def _slow_orchestrator(engine, timeout=60.0):
    registry = AlgorithmRegistry({
        **ALGORITHMS,
        "slow": AlgorithmSpec(SlowModel, "Slow", "Sleeps between stop checks", 1, (0.0, 0.1)),
        "broken": AlgorithmSpec(BrokenModel, "Broken", "Raises KeyError while training", 1, (0.0, 0.1)),
    })
    return TrainingOrchestrator(
        engine.session_factory,
        engine.rules,
        registry,
        engine.extractor,
        engine.model_store,
        engine.training_pool,
        engine.settings.model_copy(update={"TRAINING_TIMEOUT_SECONDS": timeout}),
        cache=engine.cache,
        stats_locks=engine.stats_locks,
    )


async def _strategy(engine, strategy_id):
    async with engine.session_factory() as session:
        return await strategy_crud.get_strategy(session, strategy_id)


async def test_completed_training_updates_strategy(seeded_engine):
    engine = seeded_engine
    strategy_id = await create_strategy(engine, "statistical", FAST_STATISTICAL)

    job_id = await engine.orchestrator.submit(strategy_id, _window())
    record = await engine.orchestrator.wait(job_id)

    assert record.status == TrainingStatus.COMPLETED
    assert record.training_samples > 0
    assert record.test_samples > 0
    assert record.test_accuracy is not None
    assert record.completed_at is not None
    assert engine.model_store.get(record.model_hash)

    strategy = await _strategy(engine, strategy_id)
    assert strategy.total_trainings == 1
    assert strategy.model_hash == record.model_hash
    assert strategy.accuracy_rate == pytest.approx(record.validation_accuracy, abs=1e-4)
    assert not engine.orchestrator.is_training(strategy_id)


async def test_prediction_uses_trained_artifact(seeded_engine):
    engine = seeded_engine
    strategy_id = await create_strategy(engine, "statistical", FAST_STATISTICAL)
    record = await engine.orchestrator.wait(await engine.orchestrator.submit(strategy_id, _window()))

    prediction = await engine.predict_numbers("ssq", "statistical", strategy_id=strategy_id)
    assert prediction.strategy_id == strategy_id
    assert prediction.details["model_hashes"] == {"statistical": record.model_hash}


async def test_second_submit_is_rejected(seeded_engine):
    engine = seeded_engine
    orchestrator = _slow_orchestrator(engine)
    strategy_id = await create_strategy(engine, "slow", {})

    job_id = await orchestrator.submit(strategy_id, _window())
    with pytest.raises(TrainingInProgress) as exc:
        await orchestrator.submit(strategy_id, _window())
    assert exc.value.job_id == job_id

    assert await orchestrator.cancel(job_id)
    await orchestrator.wait(job_id)


async def test_concurrent_submits_admit_one(seeded_engine):
    engine = seeded_engine
    orchestrator = _slow_orchestrator(engine)
    strategy_id = await create_strategy(engine, "slow", {})

    results = await asyncio.gather(
        orchestrator.submit(strategy_id, _window()),
        orchestrator.submit(strategy_id, _window()),
        return_exceptions=True,
    )
    accepted = [r for r in results if isinstance(r, int)]
    rejected = [r for r in results if isinstance(r, TrainingInProgress)]
    assert len(accepted) == 1 and len(rejected) == 1
    await orchestrator.shutdown()


async def test_cancel_running_job(seeded_engine):
    engine = seeded_engine
    orchestrator = _slow_orchestrator(engine)
    strategy_id = await create_strategy(engine, "slow", {})

    job_id = await orchestrator.submit(strategy_id, _window())
    await asyncio.sleep(0.2)
    assert await orchestrator.cancel(job_id)
    record = await orchestrator.wait(job_id)

    assert record.status == TrainingStatus.CANCELLED
    assert record.completed_at is not None
    assert not await orchestrator.cancel(job_id)
    strategy = await _strategy(engine, strategy_id)
    assert strategy.total_trainings == 0
    assert strategy.model_hash is None


async def test_timeout_fails_job(seeded_engine):
    engine = seeded_engine
    orchestrator = _slow_orchestrator(engine, timeout=0.3)
    strategy_id = await create_strategy(engine, "slow", {})

    record = await orchestrator.wait(await orchestrator.submit(strategy_id, _window()))

    assert record.status == TrainingStatus.FAILED
    assert record.error_message == TIMEOUT_REASON
    assert (await _strategy(engine, strategy_id)).total_trainings == 0


async def test_insufficient_data_leaves_statistics_unchanged(engine, ssq):
    await insert_draws(engine, synthetic_draws(ssq, 15), "ssq")
    strategy_id = await create_strategy(
        engine, "random_forest", {"min_samples": 30, "n_estimators": 5, "lookback": 5}
    )

    record = await engine.orchestrator.wait(await engine.orchestrator.submit(strategy_id, _window()))

    assert record.status == TrainingStatus.FAILED
    assert "needs at least 30" in record.error_message
    strategy = await _strategy(engine, strategy_id)
    assert strategy.total_trainings == 0
    assert strategy.accuracy_rate is None


async def test_statistical_below_minimum_samples_fails(engine, ssq):
    await insert_draws(engine, synthetic_draws(ssq, 15), "ssq")
    strategy_id = await create_strategy(engine, "statistical", {**FAST_STATISTICAL, "min_samples": 30})

    record = await engine.orchestrator.wait(await engine.orchestrator.submit(strategy_id, _window()))

    assert record.status == TrainingStatus.FAILED
    assert "statistical needs at least 30" in record.error_message
    assert record.model_hash is None
    strategy = await _strategy(engine, strategy_id)
    assert strategy.total_trainings == 0
    assert strategy.accuracy_rate is None
    assert strategy.model_hash is None


async def test_unexpected_algorithm_error_fails_job(seeded_engine):
    engine = seeded_engine
    orchestrator = _slow_orchestrator(engine)
    strategy_id = await create_strategy(engine, "broken", {})

    record = await orchestrator.wait(await orchestrator.submit(strategy_id, _window()))

    assert record.status == TrainingStatus.FAILED
    assert record.error_message.startswith("KeyError")
    assert record.completed_at is not None
    assert not orchestrator.is_training(strategy_id)
    assert (await _strategy(engine, strategy_id)).total_trainings == 0


async def test_finished_jobs_release_their_bookkeeping(seeded_engine):
    engine = seeded_engine
    strategy_id = await create_strategy(engine, "statistical", FAST_STATISTICAL)

    job_id = await engine.orchestrator.submit(strategy_id, _window())
    await engine.orchestrator.wait(job_id)

    assert job_id not in engine.orchestrator._jobs
    assert len(engine.orchestrator.artifact_locks) == 0
    assert len(engine.stats_locks) == 0
    assert (await engine.orchestrator.status(job_id)).status == TrainingStatus.COMPLETED
    assert await engine.orchestrator.cancel(job_id) is False


async def test_unknown_strategy_and_job(engine):
    with pytest.raises(UnknownStrategy):
        await engine.orchestrator.submit(424242, _window())
    assert not engine.orchestrator.is_training(424242)
    with pytest.raises(UnknownTrainingJob):
        await engine.orchestrator.status(424242)


def test_training_window_validation():
    with pytest.raises(ValueError):
        TrainingWindow(lottery_type="ssq", start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))
    with pytest.raises(ValueError):
        TrainingWindow(
            lottery_type="ssq", start_date=date(2024, 1, 1), end_date=date(2024, 2, 1),
            validation_split=0.6, test_split=0.5,
        )


def test_status_transitions():
    assert TrainingStatus.PENDING.can_transition_to(TrainingStatus.RUNNING)
    assert TrainingStatus.RUNNING.can_transition_to(TrainingStatus.CANCELLED)
    assert not TrainingStatus.COMPLETED.can_transition_to(TrainingStatus.RUNNING)
    assert not TrainingStatus.PENDING.can_transition_to(TrainingStatus.COMPLETED)
    assert TrainingStatus.FAILED.is_terminal
