"""Training orchestrator. Runs training jobs in the background and records their outcome."""

import asyncio
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lottery_forecast.config import Settings
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.db.crud import training_record as training_crud
from lottery_forecast.errors import (
    InsufficientData,
    LotteryForecastError,
    StorageError,
    TrainingCancelled,
    TrainingFailed,
    TrainingInProgress,
    UnknownStrategy,
    UnknownTrainingJob,
)
from lottery_forecast.locks import KeyedLocks
from lottery_forecast.ml.features.extractor import FeatureExtractor
from lottery_forecast.ml.features.window import DrawWindow, FeatureSet
from lottery_forecast.ml.inference.algorithm_registry import AlgorithmRegistry
from lottery_forecast.ml.inference.cache import PredictionCache
from lottery_forecast.ml.models.base_model import BaseForecastAlgorithm, TrainingMetrics, hit_metrics
from lottery_forecast.ml.storage.model_store import ModelStore
from lottery_forecast.rules import RuleRegistry
from lottery_forecast.schemas.training import TrainingRecordSchema, TrainingStatus, TrainingWindow

TIMEOUT_REASON = "Timeout"


@dataclass
class TrainingJob:
    id: int
    strategy_id: int
    kind: str
    parameters: dict
    window: TrainingWindow
    cancel_event: threading.Event = field(default_factory=threading.Event)
    task: asyncio.Task | None = None


def score_test_window(
    algorithm: BaseForecastAlgorithm, context: DrawWindow, test_window: DrawWindow
) -> dict[str, float]:
    """Walk forward over the test window, scoring each draw from everything before it."""
    rule = context.rule
    rows = []
    history = context
    for draw in test_window.draws:
        features = FeatureSet(rule, draw.draw_date, history)
        main_scores, _ = algorithm.score_numbers(features, rule)
        rows.append(main_scores)
        history = history + DrawWindow(rule, (draw,))
    return hit_metrics(rows, test_window.draws, rule)


class TrainingOrchestrator:
    """Pending → Running → {Completed | Failed | Cancelled}, one job per strategy at a time.

    Jobs run as asyncio tasks; the algorithm itself runs on the training
    executor and polls the job's cancel flag between iterations.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rules: RuleRegistry,
        registry: AlgorithmRegistry,
        extractor: FeatureExtractor,
        model_store: ModelStore,
        executor: Executor,
        settings: Settings,
        *,
        cache: PredictionCache | None = None,
        stats_locks: KeyedLocks | None = None,
        artifact_locks: KeyedLocks | None = None,
    ):
        self.session_factory = session_factory
        self.rules = rules
        self.registry = registry
        self.extractor = extractor
        self.model_store = model_store
        self.executor = executor
        self.settings = settings
        self.cache = cache
        self.stats_locks = stats_locks or KeyedLocks()
        self.artifact_locks = artifact_locks or KeyedLocks()
        self.timeout = settings.TRAINING_TIMEOUT_SECONDS
        self._jobs: dict[int, TrainingJob] = {}
        self._active: dict[int, int | None] = {}  # strategy_id -> job id

    # ── public API ────────────────────────────────────────────────────

    async def submit(self, strategy_id: int, window: TrainingWindow) -> int:
        """Validate and enqueue a job; returns its id without waiting for training."""
        rule = self.rules.get_rule(window.lottery_type)
        if strategy_id in self._active:
            raise TrainingInProgress(strategy_id, self._active[strategy_id])
        # Reserve the strategy before the first await so a concurrent submit is rejected
        self._active[strategy_id] = None
        try:
            async with self.session_factory() as session:
                strategy = await strategy_crud.get_strategy(session, strategy_id)
                if strategy is None or not strategy.is_active:
                    raise UnknownStrategy(f"Strategy {strategy_id} not found")
                kind = strategy.algorithm_type
                parameters = dict(strategy.parameters or {})
                self.registry.validate(kind, parameters)
                record = await training_crud.create_record(session, {
                    "strategy_id": strategy_id,
                    "lottery_type": rule.identifier,
                    "training_data_start": window.start_date,
                    "training_data_end": window.end_date,
                    "model_parameters": parameters,
                    "feature_config": dict(strategy.feature_config or {}),
                })
                await session.commit()
        except SQLAlchemyError as e:
            self._active.pop(strategy_id, None)
            raise StorageError(f"Could not create training job: {e}") from e
        except BaseException:
            self._active.pop(strategy_id, None)
            raise

        job = TrainingJob(record.id, strategy_id, kind, parameters, window)
        self._jobs[job.id] = job
        self._active[strategy_id] = job.id
        job.task = asyncio.create_task(self._run(job), name=f"training-{job.id}")
        logger.info("Training job {} queued: {} strategy {} on {}", job.id, kind, strategy_id, rule.identifier)
        return job.id

    async def cancel(self, job_id: int) -> bool:
        """Request cooperative cancellation; False if the job already finished."""
        job = self._jobs.get(job_id)
        if job is None:
            # Raises UnknownTrainingJob; jobs from an earlier process cannot be reached
            await self.status(job_id)
            return False
        if job.task is not None and job.task.done():
            return False
        job.cancel_event.set()
        logger.info("Cancellation requested for training job {}", job_id)
        return True

    async def wait(self, job_id: int, timeout: float | None = None) -> TrainingRecordSchema:
        job = self._jobs.get(job_id)
        if job is not None and job.task is not None:
            await asyncio.wait_for(asyncio.shield(job.task), timeout)
        return await self.status(job_id)

    async def status(self, job_id: int) -> TrainingRecordSchema:
        try:
            async with self.session_factory() as session:
                record = await training_crud.get_record(session, job_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read training job {job_id}: {e}") from e
        if record is None:
            raise UnknownTrainingJob(f"Training job {job_id} not found")
        return TrainingRecordSchema.model_validate(record)

    def is_training(self, strategy_id: int) -> bool:
        return strategy_id in self._active

    async def shutdown(self) -> None:
        """Cancel every unfinished job and wait for them to settle."""
        tasks = []
        for job in self._jobs.values():
            if job.task is not None and not job.task.done():
                job.cancel_event.set()
                tasks.append(job.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── job execution ─────────────────────────────────────────────────

    async def _transition(self, job: TrainingJob, target: TrainingStatus, **values) -> None:
        async with self.session_factory() as session:
            await training_crud.transition(session, job.id, target, **values)
            await session.commit()
        logger.info("Training job {} -> {}", job.id, target)

    async def _run(self, job: TrainingJob) -> None:
        started = time.perf_counter()
        status = TrainingStatus.PENDING
        try:
            async with self.artifact_locks(job.strategy_id):
                if job.cancel_event.is_set():
                    raise TrainingCancelled("cancelled before start")
                await self._transition(job, TrainingStatus.RUNNING, started_at=datetime.now())
                status = TrainingStatus.RUNNING
                await self._train(job, started)
        except TrainingCancelled:
            await self._finish(job, TrainingStatus.CANCELLED, "Cancelled", started)
        except asyncio.TimeoutError:
            job.cancel_event.set()  # stops the worker thread at its next check
            logger.error("Training job {} exceeded {}s", job.id, self.timeout)
            await self._finish(job, TrainingStatus.FAILED, TIMEOUT_REASON, started)
        except InsufficientData as e:
            logger.warning("Training job {} has insufficient data: {}", job.id, e)
            await self._finish(job, TrainingStatus.FAILED, str(e), started)
        except TrainingFailed as e:
            logger.error("Training job {} failed: {}", job.id, e.reason)
            await self._finish(job, TrainingStatus.FAILED, e.reason, started)
        except asyncio.CancelledError:
            await self._finish(job, TrainingStatus.CANCELLED, "Cancelled", started)
            raise
        except Exception as e:
            logger.exception("Training job {} failed in state {}", job.id, status)
            await self._finish(job, TrainingStatus.FAILED, f"{type(e).__name__}: {e}", started)
        finally:
            if self._active.get(job.strategy_id) == job.id:
                self._active.pop(job.strategy_id, None)
            # Finished jobs are served from their training record
            self._jobs.pop(job.id, None)

    async def _finish(self, job: TrainingJob, target: TrainingStatus, message: str, started: float) -> None:
        """Record a terminal failure/cancellation; strategy statistics stay untouched."""
        try:
            await self._transition(
                job,
                target,
                error_message=message,
                completed_at=datetime.now(),
                training_duration_ms=int((time.perf_counter() - started) * 1000),
            )
        except (SQLAlchemyError, ValueError, LookupError) as e:
            logger.error("Could not record {} for training job {}: {}", target, job.id, e)

    async def _train(self, job: TrainingJob, started: float) -> None:
        window = job.window
        history = await self.extractor.load_window(
            window.lottery_type, window.end_date + timedelta(days=1), None, since=window.start_date
        )
        train, validation, test = history.split(window.validation_split, window.test_split)
        algorithm = self.registry.create(job.kind, job.parameters)
        logger.info(
            "Training job {}: {} on {} train / {} validation / {} test drawings",
            job.id, job.kind, len(train), len(validation), len(test),
        )

        loop = asyncio.get_running_loop()
        metrics: TrainingMetrics = await asyncio.wait_for(
            loop.run_in_executor(self.executor, algorithm.train, train, validation, job.cancel_event.is_set),
            self.timeout,
        )
        if job.cancel_event.is_set():
            raise TrainingCancelled("cancelled after training")

        test_stats = None
        if len(test):
            test_stats = await loop.run_in_executor(
                self.executor, score_test_window, algorithm, train + validation, test
            )

        data = await loop.run_in_executor(self.executor, algorithm.serialize)
        digest = await loop.run_in_executor(self.executor, self.model_store.put, job.strategy_id, data)
        accuracy = metrics.validation_accuracy if metrics.validation_accuracy is not None else metrics.train_accuracy
        now = datetime.now()

        async with self.stats_locks(job.strategy_id):
            async with self.session_factory() as session:
                await training_crud.transition(
                    session, job.id, TrainingStatus.COMPLETED,
                    training_samples=metrics.train_samples or len(train),
                    validation_samples=metrics.validation_samples,
                    test_samples=len(test),
                    training_accuracy=metrics.train_accuracy,
                    validation_accuracy=metrics.validation_accuracy,
                    test_accuracy=test_stats["accuracy"] if test_stats else None,
                    training_loss=metrics.train_loss,
                    validation_loss=metrics.validation_loss,
                    model_metrics={**metrics.to_dict(), "test": test_stats},
                    model_hash=digest,
                    model_size_bytes=len(data),
                    training_duration_ms=int((time.perf_counter() - started) * 1000),
                    completed_at=now,
                )
                await strategy_crud.apply_training_result(
                    session, job.strategy_id,
                    accuracy=accuracy,
                    precision=metrics.precision,
                    recall=metrics.recall,
                    f1=metrics.f1,
                    model_hash=digest,
                    model_size_bytes=len(data),
                    trained_at=now,
                )
                await session.commit()

        if self.cache is not None:
            prefix = f"{window.lottery_type}:{job.strategy_id}:"
            self.cache.invalidate(lambda key, _: key.startswith(prefix))
        logger.info(
            "Training job {} completed: {} accuracy {:.2f}% (artifact {})",
            job.id, job.kind, accuracy, digest[:12],
        )
