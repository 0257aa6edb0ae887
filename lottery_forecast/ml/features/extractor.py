"""Feature extractor. Loads history windows and produces feature records."""

import asyncio
import hashlib
import json
import time
from collections.abc import Iterable
from concurrent.futures import Executor
from datetime import date

import numpy as np
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lottery_forecast.db.crud import drawing as drawing_crud
from lottery_forecast.db.crud import feature as feature_crud
from lottery_forecast.errors import InsufficientData, PredictionFailed, StorageError
from lottery_forecast.ml.features.feature_engineer import FeatureEngineer, validate_vector
from lottery_forecast.ml.features.window import Draw, DrawWindow, FeatureSet
from lottery_forecast.rules import RuleRegistry
from lottery_forecast.schemas.features import FeatureKind, FeatureRecordSchema

ALGORITHM_VERSION = "1.0.0"


def feature_hash(
    lottery_type: str,
    kind: FeatureKind,
    as_of_date: date,
    window: DrawWindow,
    include_special: bool,
) -> str:
    payload = {
        "lottery_type": lottery_type,
        "kind": str(kind),
        "as_of": as_of_date.isoformat(),
        "include_special": include_special,
        "version": ALGORITHM_VERSION,
        "draws": [
            [d.draw_number, d.draw_date.isoformat(), list(d.numbers), list(d.specials)]
            for d in window.draws
        ],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(encoded).hexdigest()


class FeatureExtractor:
    """Turns the trailing window of drawings before a date into feature vectors.

    Only drawings strictly before `as_of_date` are read, so nothing from the
    target draw or later leaks into the features.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rules: RuleRegistry,
        *,
        min_draws: int = 10,
        executor: Executor | None = None,
    ):
        self.session_factory = session_factory
        self.rules = rules
        self.min_draws = min_draws
        self.executor = executor

    async def load_window(
        self,
        lottery_type: str,
        as_of_date: date,
        window_size: int | None,
        *,
        since: date | None = None,
    ) -> DrawWindow:
        rule = self.rules.get_rule(lottery_type)
        try:
            async with self.session_factory() as session:
                rows = await drawing_crud.get_window(
                    session, lottery_type, before=as_of_date, since=since, limit=window_size
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load drawings for {lottery_type}: {e}") from e
        return DrawWindow(rule, tuple(Draw.from_record(r) for r in rows))

    async def extract(
        self,
        lottery_type: str,
        as_of_date: date,
        window_size: int,
        requested_kinds: Iterable[FeatureKind],
        *,
        since: date | None = None,
        include_special: bool = True,
    ) -> list[FeatureRecordSchema]:
        window = await self.load_window(lottery_type, as_of_date, window_size, since=since)
        return await self.extract_from_window(
            window, as_of_date, requested_kinds, include_special=include_special
        )

    async def extract_feature_set(
        self,
        lottery_type: str,
        as_of_date: date,
        window_size: int,
        requested_kinds: Iterable[FeatureKind],
        *,
        since: date | None = None,
        include_special: bool = True,
    ) -> FeatureSet:
        window = await self.load_window(lottery_type, as_of_date, window_size, since=since)
        records = await self.extract_from_window(
            window, as_of_date, requested_kinds, include_special=include_special
        )
        vectors = {
            r.feature_type: np.asarray(r.feature_vector, dtype=np.float64) for r in records
        }
        return FeatureSet(rule=window.rule, as_of_date=as_of_date, window=window, vectors=vectors)

    async def extract_from_window(
        self,
        window: DrawWindow,
        as_of_date: date,
        requested_kinds: Iterable[FeatureKind],
        *,
        include_special: bool = True,
    ) -> list[FeatureRecordSchema]:
        if len(window) < self.min_draws:
            raise InsufficientData(
                f"{window.rule.identifier}: {len(window)} drawings before {as_of_date}, "
                f"need at least {self.min_draws}",
                available=len(window),
                required=self.min_draws,
            )
        if window.end_date is not None and window.end_date >= as_of_date:
            raise ValueError("feature window contains drawings on or after the as-of date")

        engineer = FeatureEngineer(window.rule, include_special=include_special)
        records = []
        for kind in sorted(set(FeatureKind(k) for k in requested_kinds)):
            digest = feature_hash(
                window.rule.identifier, kind, as_of_date, window, engineer.include_special
            )
            record = await self._load_cached(digest)
            if record is None:
                record = await self._compute(engineer, kind, window, as_of_date, digest)
                await self._persist(record)
            records.append(record)
        return records

    async def _compute(
        self,
        engineer: FeatureEngineer,
        kind: FeatureKind,
        window: DrawWindow,
        as_of_date: date,
        digest: str,
    ) -> FeatureRecordSchema:
        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        vector = await loop.run_in_executor(
            self.executor, engineer.compute, kind, window.draws, as_of_date
        )
        if not validate_vector(vector):
            raise PredictionFailed(f"Non-finite {kind} features for {window.rule.identifier}")
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return FeatureRecordSchema(
            lottery_type=window.rule.identifier,
            drawing_id=window.draws[-1].drawing_id,
            feature_type=kind,
            feature_name=f"{kind}_w{len(window)}",
            feature_data={
                "dimension": int(vector.shape[0]),
                "window_start": window.start_date.isoformat(),
                "window_end": window.end_date.isoformat(),
                "include_special": engineer.include_special,
            },
            feature_vector=vector.tolist(),
            feature_hash=digest,
            as_of_date=as_of_date,
            data_points=len(window),
            calculation_time_ms=elapsed_ms,
            algorithm_version=ALGORITHM_VERSION,
        )

    async def _load_cached(self, digest: str) -> FeatureRecordSchema | None:
        try:
            async with self.session_factory() as session:
                row = await feature_crud.get_by_hash(session, digest)
                return FeatureRecordSchema.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.warning("Feature lookup failed, recomputing: {}", e)
            return None

    async def _persist(self, record: FeatureRecordSchema) -> None:
        try:
            async with self.session_factory() as session:
                if await feature_crud.get_by_hash(session, record.feature_hash) is None:
                    await feature_crud.create_feature(
                        session, record.model_dump(exclude={"id"}, mode="python")
                    )
                    await session.commit()
        except SQLAlchemyError as e:
            logger.warning("Could not store {} features: {}", record.feature_type, e)
