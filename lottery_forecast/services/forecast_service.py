"""Forecast service: the engine's command surface.

ForecastEngine is built once per process and owns every shared component:
rules, algorithm registry, cache, model store, worker pools, predictor,
training orchestrator and accuracy evaluator.
"""

import asyncio
from collections.abc import Coroutine
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from lottery_forecast.config import Settings
from lottery_forecast.db.crud import drawing as drawing_crud
from lottery_forecast.db.crud import prediction as prediction_crud
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.db.engine import create_engine, create_session_factory, init_db
from lottery_forecast.db.seed import seed_database
from lottery_forecast.errors import (
    InvalidParameters,
    StorageError,
    TrainingInProgress,
    UnknownDrawing,
    UnknownStrategy,
)
from lottery_forecast.locks import KeyedLocks
from lottery_forecast.ml.evaluation.accuracy import AccuracyEvaluator, PayoutProvider
from lottery_forecast.ml.features.extractor import FeatureExtractor
from lottery_forecast.ml.inference.algorithm_registry import AlgorithmRegistry
from lottery_forecast.ml.inference.cache import PredictionCache
from lottery_forecast.ml.inference.predictor import Predictor
from lottery_forecast.ml.storage.model_store import ModelStore
from lottery_forecast.ml.training.trainer import TrainingOrchestrator
from lottery_forecast.rules import RuleRegistry
from lottery_forecast.schemas.lottery import DrawingCreate, DrawingSchema, VerificationStatus
from lottery_forecast.schemas.prediction import (
    AlgorithmInfo,
    AlgorithmRanking,
    DrawingReconciliation,
    PredictionResultSchema,
    PredictRequest,
)
from lottery_forecast.schemas.strategy import StrategySchema
from lottery_forecast.schemas.training import TrainingRecordSchema, TrainingStatus, TrainingWindow


class ForecastEngine:
    def __init__(
        self,
        settings: Settings,
        *,
        engine: AsyncEngine | None = None,
        rules: RuleRegistry | None = None,
        payouts: PayoutProvider | None = None,
    ):
        self.settings = settings
        self.db_engine = engine or create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        self.session_factory = create_session_factory(self.db_engine)
        self.rules = rules or RuleRegistry()
        self.registry = AlgorithmRegistry(device=settings.TORCH_DEVICE)
        self.cache = PredictionCache(
            max_entries=settings.CACHE_MAX_ENTRIES,
            default_ttl=settings.CACHE_DEFAULT_TTL_SECONDS,
            ttl_by_type=settings.CACHE_TTL_BY_TYPE,
        )
        self.model_store = ModelStore(settings.MODEL_ARTIFACTS_DIR)
        self.prediction_pool = ThreadPoolExecutor(settings.PREDICTION_WORKERS, thread_name_prefix="predict")
        self.training_pool = ThreadPoolExecutor(settings.TRAINING_WORKERS, thread_name_prefix="train")
        self.stats_locks = KeyedLocks()

        self.extractor = FeatureExtractor(
            self.session_factory,
            self.rules,
            min_draws=settings.MIN_FEATURE_DRAWS,
            executor=self.prediction_pool,
        )
        self.predictor = Predictor(
            self.session_factory,
            self.rules,
            self.registry,
            self.extractor,
            self.model_store,
            self.cache,
            self.prediction_pool,
            settings,
        )
        self.orchestrator = TrainingOrchestrator(
            self.session_factory,
            self.rules,
            self.registry,
            self.extractor,
            self.model_store,
            self.training_pool,
            settings,
            cache=self.cache,
            stats_locks=self.stats_locks,
        )
        self.evaluator = AccuracyEvaluator(
            self.session_factory, self.rules, payouts=payouts, stats_locks=self.stats_locks
        )
        self._background: set[asyncio.Task] = set()

    # ── lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        self.settings.MODEL_ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)
        await init_db(self.db_engine)
        async with self.session_factory() as session:
            await seed_database(session, self.rules)
        logger.info("Forecast engine ready ({} rule sets, {} algorithms)", len(self.rules.list_rules()), len(self.registry.kinds()))

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self.prediction_pool.shutdown(wait=True)
        self.training_pool.shutdown(wait=True)
        await self.db_engine.dispose()
        logger.info("Forecast engine stopped")

    def _schedule(self, coro: Coroutine, name: str) -> asyncio.Task:
        """Run `coro` off the caller's path, logging its failure."""
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Background task {} failed: {}", name, t.exception())

        task.add_done_callback(_done)
        return task

    # ── prediction ────────────────────────────────────────────────────

    async def predict_numbers(
        self,
        lottery_type: str,
        algorithm: str = "statistical",
        use_ensemble: bool = False,
        ensemble_algorithms: list[str] | None = None,
        historical_days: int | None = None,
        *,
        target_date: date | None = None,
        prediction_type: str = "standard",
        strategy_id: int | None = None,
    ) -> PredictionResultSchema:
        request = PredictRequest(
            lottery_type=lottery_type,
            algorithm=algorithm,
            use_ensemble=use_ensemble,
            ensemble_algorithms=ensemble_algorithms,
            historical_days=historical_days or self.settings.DEFAULT_HISTORICAL_DAYS,
            target_date=target_date,
            prediction_type=prediction_type,
        )
        return await self.predictor.predict(request, strategy_id=strategy_id)

    async def get_prediction_history(
        self, lottery_type: str, strategy_id: int | None = None, limit: int = 20
    ) -> list[PredictionResultSchema]:
        self.rules.get_rule(lottery_type)
        try:
            async with self.session_factory() as session:
                rows = await prediction_crud.list_predictions(
                    session, lottery_type, strategy_id=strategy_id, limit=limit
                )
                return [PredictionResultSchema.model_validate(r) for r in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load predictions: {e}") from e

    # ── training ──────────────────────────────────────────────────────

    def _training_window(self, lottery_type: str, historical_days: int | None, validation_split: float) -> TrainingWindow:
        end = date.today()
        days = historical_days or self.settings.DEFAULT_HISTORICAL_DAYS
        try:
            return TrainingWindow(
                lottery_type=lottery_type,
                start_date=end - timedelta(days=days),
                end_date=end,
                validation_split=validation_split,
                test_split=self.settings.TEST_SPLIT,
            )
        except ValueError as e:
            raise InvalidParameters(str(e)) from e

    async def submit_training(
        self,
        strategy_id: int,
        lottery_type: str,
        historical_days: int | None = None,
        validation_split: float = 0.2,
    ) -> int:
        window = self._training_window(lottery_type, historical_days, validation_split)
        return await self.orchestrator.submit(strategy_id, window)

    async def train_algorithms(
        self,
        lottery_type: str,
        algorithms: list[str],
        historical_days: int | None = None,
        validation_split: float = 0.2,
    ) -> dict[str, float]:
        """Train the system strategy of every algorithm; failed jobs report 0.0 accuracy."""
        self.rules.get_rule(lottery_type)
        if not algorithms:
            raise InvalidParameters("at least one algorithm is required")
        for kind in algorithms:
            self.registry.spec(kind)
        window = self._training_window(lottery_type, historical_days, validation_split)

        strategy_ids: dict[str, int] = {}
        async with self.session_factory() as session:
            for kind in algorithms:
                strategy = await strategy_crud.get_system_strategy(session, kind)
                if strategy is None:
                    raise UnknownStrategy(f"No active system strategy for {kind}")
                self.registry.validate(kind, strategy.parameters)
                strategy_ids[kind] = strategy.id
        for kind, strategy_id in strategy_ids.items():
            if self.orchestrator.is_training(strategy_id):
                raise TrainingInProgress(strategy_id)

        jobs = {kind: await self.orchestrator.submit(sid, window) for kind, sid in strategy_ids.items()}
        accuracies: dict[str, float] = {}
        for kind, job_id in jobs.items():
            record = await self.orchestrator.wait(job_id)
            if record.status == TrainingStatus.COMPLETED:
                accuracy = record.validation_accuracy
                accuracies[kind] = accuracy if accuracy is not None else (record.training_accuracy or 0.0)
            else:
                logger.warning("Training {} for {} ended {}: {}", kind, lottery_type, record.status, record.error_message)
                accuracies[kind] = 0.0
        return accuracies

    async def get_training_job(self, job_id: int) -> TrainingRecordSchema:
        return await self.orchestrator.status(job_id)

    async def cancel_training(self, job_id: int) -> bool:
        return await self.orchestrator.cancel(job_id)

    # ── algorithms / strategies ───────────────────────────────────────

    async def get_available_algorithms(self, lottery_type: str) -> list[str]:
        self.rules.get_rule(lottery_type)
        return self.registry.kinds()

    async def get_algorithm_info(self, kind: str | None = None) -> list[AlgorithmInfo]:
        if kind is not None:
            return [self.registry.info(kind)]
        return self.registry.list_info()

    async def list_strategies(self, algorithm_type: str | None = None) -> list[StrategySchema]:
        async with self.session_factory() as session:
            rows = await strategy_crud.list_strategies(session, algorithm_type=algorithm_type)
            return [StrategySchema.model_validate(r) for r in rows]

    async def compare_algorithms(self) -> list[AlgorithmRanking]:
        """Kinds ranked by the running accuracy of their best trained strategy."""
        best: dict[str, StrategySchema] = {}
        for strategy in await self.list_strategies():
            if not strategy.total_trainings or strategy.accuracy_rate is None:
                continue
            current = best.get(strategy.algorithm_type)
            if current is None or strategy.accuracy_rate > current.accuracy_rate:
                best[strategy.algorithm_type] = strategy
        ranked = self.registry.rank_by_accuracy({kind: s.accuracy_rate for kind, s in best.items()})
        return [
            AlgorithmRanking(
                kind=kind,
                accuracy_rate=accuracy,
                strategy_id=best[kind].id,
                strategy_name=best[kind].name,
                total_trainings=best[kind].total_trainings,
            )
            for kind, accuracy in ranked
        ]

    async def get_best_algorithm(self) -> str | None:
        ranked = await self.compare_algorithms()
        return ranked[0].kind if ranked else None

    # ── drawings ──────────────────────────────────────────────────────

    async def store_drawing(self, drawing: DrawingCreate) -> DrawingSchema:
        rule = self.rules.get_rule(drawing.lottery_type)
        try:
            rule.validate_numbers(drawing.winning_numbers, drawing.special_numbers)
        except ValueError as e:
            raise InvalidParameters(str(e)) from e

        try:
            async with self.session_factory() as session:
                record = await drawing_crud.create_drawing(session, drawing.model_dump(mode="python"))
                await session.commit()
                stored = DrawingSchema.model_validate(record)
        except IntegrityError as e:
            raise InvalidParameters(
                f"{drawing.lottery_type} drawing {drawing.draw_number} on {drawing.draw_date} already exists"
            ) from e
        except SQLAlchemyError as e:
            raise StorageError(f"Could not store drawing: {e}") from e

        self._invalidate_history(drawing.lottery_type)
        logger.info("Stored {} drawing {} ({})", stored.lottery_type, stored.draw_number, stored.draw_date)
        if stored.verification_status == VerificationStatus.VERIFIED:
            self._schedule(self.evaluator.reconcile(stored.id), name=f"reconcile-{stored.id}")
        return stored

    async def verify_drawing(
        self, drawing_id: int, status: VerificationStatus = VerificationStatus.VERIFIED
    ) -> DrawingSchema:
        try:
            async with self.session_factory() as session:
                if await drawing_crud.get_drawing(session, drawing_id) is None:
                    raise UnknownDrawing(f"Drawing {drawing_id} not found")
                await drawing_crud.set_verification_status(session, drawing_id, str(status))
                await session.commit()
            async with self.session_factory() as session:
                stored = DrawingSchema.model_validate(await drawing_crud.get_drawing(session, drawing_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Could not update drawing {drawing_id}: {e}") from e

        self._invalidate_history(stored.lottery_type)
        if status == VerificationStatus.VERIFIED:
            self._schedule(self.evaluator.reconcile(drawing_id), name=f"reconcile-{drawing_id}")
        return stored

    async def reconcile_pending(self) -> list[DrawingReconciliation]:
        return await self.evaluator.reconcile_pending()

    def _invalidate_history(self, lottery_type: str) -> None:
        """Drop cached features and predictions built from the old history."""
        prefix = f"{lottery_type}:"
        dropped = self.cache.invalidate(lambda key, entry: key.startswith(prefix) and entry.cache_type != "model")
        if dropped:
            logger.debug("Invalidated {} cache entries for {}", dropped, lottery_type)
