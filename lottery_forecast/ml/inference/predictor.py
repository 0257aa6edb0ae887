"""Predictor. Generates and persists predictions from stored or warm-fitted models."""

import asyncio
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import numpy as np
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lottery_forecast.config import Settings
from lottery_forecast.db.crud import prediction as prediction_crud
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.db.crud import training_record as training_crud
from lottery_forecast.errors import (
    ArtifactNotFound,
    CorruptArtifact,
    InsufficientData,
    InvalidParameters,
    PredictionFailed,
    StorageError,
    TrainingFailed,
    UnknownStrategy,
)
from lottery_forecast.ml.features.extractor import FeatureExtractor
from lottery_forecast.ml.features.window import DrawWindow, FeatureSet
from lottery_forecast.ml.inference.algorithm_registry import AlgorithmRegistry
from lottery_forecast.ml.inference.cache import PredictionCache, make_key
from lottery_forecast.ml.models.base_model import BaseForecastAlgorithm, PredictionOutput
from lottery_forecast.ml.models.ensemble import HybridEnsemble, HybridParams, equal_weights
from lottery_forecast.ml.storage.model_store import ModelStore
from lottery_forecast.rules import RuleRegistry
from lottery_forecast.schemas.features import ALL_FEATURE_KINDS
from lottery_forecast.schemas.prediction import PredictionResultSchema, PredictRequest

DEFAULT_ENSEMBLE = ("random_forest", "neural_network", "statistical")


@dataclass(frozen=True)
class StrategyRef:
    id: int
    kind: str
    parameters: dict
    model_hash: str | None = None


class Predictor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rules: RuleRegistry,
        registry: AlgorithmRegistry,
        extractor: FeatureExtractor,
        model_store: ModelStore,
        cache: PredictionCache,
        executor: Executor,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.rules = rules
        self.registry = registry
        self.extractor = extractor
        self.model_store = model_store
        self.cache = cache
        self.executor = executor
        self.settings = settings

    # ── strategy resolution ───────────────────────────────────────────

    async def _resolve(self, session: AsyncSession, kind: str, lottery_type: str, strategy_id: int | None = None) -> StrategyRef:
        if strategy_id is not None:
            strategy = await strategy_crud.get_strategy(session, strategy_id)
            if strategy is None or not strategy.is_active:
                raise UnknownStrategy(f"Strategy {strategy_id} not found")
        else:
            strategy = await strategy_crud.get_system_strategy(session, kind)
            if strategy is None:
                raise UnknownStrategy(f"No active system strategy for {kind}")
        record = await training_crud.get_latest_completed(session, strategy.id, lottery_type)
        return StrategyRef(
            id=strategy.id,
            kind=strategy.algorithm_type,
            parameters=dict(strategy.parameters or {}),
            model_hash=record.model_hash if record else None,
        )

    async def _plan(self, request: PredictRequest, strategy_id: int | None) -> tuple[StrategyRef, list[StrategyRef]]:
        """Validate the request and return (attributed strategy, member strategies)."""
        if request.use_ensemble:
            kinds = list(request.ensemble_algorithms or DEFAULT_ENSEMBLE)
            for kind in kinds:
                self.registry.spec(kind)
            if "hybrid" in kinds:
                raise InvalidParameters("hybrid ensembles cannot be nested")
        else:
            self.registry.spec(request.algorithm)

        try:
            async with self.session_factory() as session:
                if request.use_ensemble:
                    owner = await self._resolve(session, "hybrid", request.lottery_type, strategy_id)
                    members = [await self._resolve(session, kind, request.lottery_type) for kind in kinds]
                else:
                    owner = await self._resolve(session, request.algorithm, request.lottery_type, strategy_id)
                    members = [owner]
        except SQLAlchemyError as e:
            raise StorageError(f"Strategy lookup failed: {e}") from e

        for member in members:
            self.registry.validate(member.kind, member.parameters)
        return owner, members

    # ── model loading ─────────────────────────────────────────────────

    async def _load_artifact(self, ref: StrategyRef) -> BaseForecastAlgorithm:
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(self.executor, self.model_store.get, ref.model_hash)
        algorithm = self.registry.create(ref.kind, ref.parameters)
        await loop.run_in_executor(self.executor, algorithm.deserialize, data)
        logger.info("Loaded {} model {} for strategy {}", ref.kind, ref.model_hash[:12], ref.id)
        return algorithm

    async def _warm_fit(self, ref: StrategyRef, history: DrawWindow) -> BaseForecastAlgorithm:
        """Fit a fresh instance on the prediction window when no usable artifact exists."""
        algorithm = self.registry.create(ref.kind, ref.parameters)
        train, validation, _ = history.split(0.2)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self.executor, algorithm.train, train, validation)
        except TrainingFailed as e:
            raise PredictionFailed(f"{ref.kind}: warm fit failed: {e.reason}") from e
        logger.info("Warm-fitted {} on {} drawings for strategy {}", ref.kind, len(history), ref.id)
        return algorithm

    async def _algorithm(self, ref: StrategyRef, history: DrawWindow) -> BaseForecastAlgorithm:
        if ref.model_hash:
            key = make_key(history.rule.identifier, ref.id, None, {"model_hash": ref.model_hash})
            try:
                return await self.cache.get_or_compute(
                    key, lambda: self._load_artifact(ref), cache_type="model", priority=1
                )
            except (ArtifactNotFound, CorruptArtifact, ValueError, KeyError) as e:
                logger.warning("Artifact {} unusable for strategy {}: {}; warm-fitting", ref.model_hash, ref.id, e)
        return await self._warm_fit(ref, history)

    # ── prediction ────────────────────────────────────────────────────

    async def _history(self, lottery_type: str, target_date: date, historical_days: int) -> FeatureSet:
        since = target_date - timedelta(days=historical_days)
        rule = self.rules.get_rule(lottery_type)
        history = await self.extractor.load_window(lottery_type, target_date, None, since=since)
        recent = history[-self.settings.FEATURE_WINDOW_SIZE:]
        records = await self.extractor.extract_from_window(recent, target_date, ALL_FEATURE_KINDS)
        vectors = {r.feature_type: np.asarray(r.feature_vector, dtype=np.float64) for r in records}
        return FeatureSet(rule=rule, as_of_date=target_date, window=history, vectors=vectors)

    async def predict(self, request: PredictRequest, strategy_id: int | None = None) -> PredictionResultSchema:
        rule = self.rules.get_rule(request.lottery_type)
        target_date = request.target_date or date.today()
        owner, members = await self._plan(request, strategy_id)

        key = make_key(request.lottery_type, owner.id, target_date, {
            "members": [(m.id, m.kind, m.model_hash) for m in members],
            "ensemble": request.use_ensemble,
            "historical_days": request.historical_days,
            "window": self.settings.FEATURE_WINDOW_SIZE,
            "prediction_type": request.prediction_type,
        })

        async def compute() -> PredictionResultSchema:
            started = time.perf_counter()
            features_key = make_key(request.lottery_type, "features", target_date, {
                "historical_days": request.historical_days,
                "window": self.settings.FEATURE_WINDOW_SIZE,
            })
            features = await self.cache.get_or_compute(
                features_key,
                lambda: self._history(request.lottery_type, target_date, request.historical_days),
                cache_type="features",
            )
            output = await self._run(request, rule, features, members)
            return await self._persist(request, rule, owner, members, features, output, target_date, started)

        return await self.cache.get_or_compute(key, compute, cache_type="prediction")

    async def _run(
        self, request: PredictRequest, rule, features: FeatureSet, members: list[StrategyRef]
    ) -> PredictionOutput:
        algorithms = [await self._algorithm(m, features.window) for m in members]
        if request.use_ensemble:
            params = HybridParams(models=tuple(m.kind for m in members))
            algorithm = HybridEnsemble(params, list(zip(algorithms, equal_weights(len(algorithms)))))
        else:
            algorithm = algorithms[0]

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, algorithm.predict, features, rule)
        except (PredictionFailed, InsufficientData):
            raise
        except (ValueError, ArithmeticError, RuntimeError) as e:
            raise PredictionFailed(f"{algorithm.kind}: {e}") from e

    async def _persist(
        self,
        request: PredictRequest,
        rule,
        owner: StrategyRef,
        members: list[StrategyRef],
        features: FeatureSet,
        output: PredictionOutput,
        target_date: date,
        started: float,
    ) -> PredictionResultSchema:
        values = {
            "strategy_id": owner.id,
            "lottery_type": rule.identifier,
            "predicted_numbers": output.numbers,
            "predicted_special_numbers": output.special_numbers,
            "confidence_scores": output.confidence_scores,
            "target_draw_date": target_date,
            "prediction_type": request.prediction_type,
            "computation_time_ms": int((time.perf_counter() - started) * 1000),
            "prediction_date": datetime.now(),
            "feature_vector": features.vector.tolist(),
            "details": {
                **output.details,
                "model_hashes": {m.kind: m.model_hash for m in members},
                "historical_days": request.historical_days,
                "window_draws": len(features.window),
            },
        }
        try:
            async with self.session_factory() as session:
                record = await prediction_crud.create_prediction(session, values)
                await session.commit()
                result = PredictionResultSchema.model_validate(record)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not store prediction: {e}") from e
        except ValueError as e:
            raise PredictionFailed(f"Invalid prediction: {e}") from e

        logger.info(
            "Predicted {} {} for {} with strategy {}: {}+{}",
            rule.identifier, output.details.get("algorithm"), target_date, owner.id,
            output.numbers, output.special_numbers,
        )
        return result
