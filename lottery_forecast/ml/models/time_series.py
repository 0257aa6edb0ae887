"""ARIMA forecasts of each number's rolling appearance rate."""

import json
import warnings
from collections.abc import Sequence
from typing import Literal

import numpy as np
from pydantic import Field, model_validator
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.arima.model import ARIMA

from lottery_forecast.errors import TrainingFailed
from lottery_forecast.ml.features.feature_engineer import FeatureEngineer
from lottery_forecast.ml.features.window import Draw, DrawWindow, FeatureSet
from lottery_forecast.ml.models.base_model import (
    AlgorithmParams,
    BaseForecastAlgorithm,
    StopCheck,
    TrainingMetrics,
    hit_metrics,
)
from lottery_forecast.schemas.lottery import LotteryRuleSet


class TimeSeriesParams(AlgorithmParams):
    min_samples: int = Field(default=50, ge=10)
    p: int = Field(default=2, ge=0, le=10)
    d: int = Field(default=1, ge=0, le=2)
    q: int = Field(default=2, ge=0, le=10)
    trend: Literal["n", "c", "t", "ct"] = "n"
    smoothing_window: int = Field(default=10, ge=1, le=200)

    @model_validator(mode="after")
    def _check_trend(self) -> "TimeSeriesParams":
        # Differencing removes trend terms of lower order than d
        if self.d > 0 and self.trend == "c":
            raise ValueError("trend 'c' cannot be combined with d > 0")
        if self.d > 1 and self.trend in ("t", "ct"):
            raise ValueError(f"trend '{self.trend}' cannot be combined with d > 1")
        return self

    @property
    def order(self) -> tuple[int, int, int]:
        return (self.p, self.d, self.q)


class TimeSeriesModel(BaseForecastAlgorithm):
    """One ARIMA(p, d, q) per number, fitted on its trailing appearance rate.

    Fitted parameters are stored; prediction re-filters the latest window with
    them instead of refitting. Constant series forecast their last value.
    """

    kind = "arima"
    params_model = TimeSeriesParams

    def __init__(self, params: TimeSeriesParams):
        super().__init__(params)
        self.params: TimeSeriesParams = params
        self.main_params: list[list[float] | None] = []
        self.special_params: list[list[float] | None] = []

    def _rate_series(self, hits: np.ndarray) -> np.ndarray:
        """Trailing rolling mean per column; row k covers hits[k : k + window]."""
        w = min(self.params.smoothing_window, max(hits.shape[0], 1))
        if hits.shape[0] == 0:
            return np.zeros((0, hits.shape[1]))
        csum = np.cumsum(np.vstack([np.zeros(hits.shape[1]), hits]), axis=0)
        return (csum[w:] - csum[:-w]) / w

    def _model(self, series: np.ndarray) -> ARIMA:
        return ARIMA(series, order=self.params.order, trend=self.params.trend)

    def _fit_one(self, series: np.ndarray) -> list[float] | None:
        if len(series) < 3 or np.ptp(series) < 1e-12:
            return None
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            warnings.simplefilter("ignore", UserWarning)
            result = self._model(series).fit()
        params = np.asarray(result.params, dtype=np.float64)
        if not np.all(np.isfinite(params)):
            raise FloatingPointError("non-finite ARIMA parameters")
        return params.tolist()

    def _fit_all(self, rates: np.ndarray, should_stop: StopCheck | None) -> list[list[float] | None]:
        fitted = []
        for j in range(rates.shape[1]):
            self._check_stop(should_stop)
            fitted.append(self._fit_one(rates[:, j]))
        return fitted

    def _one_step(self, series: np.ndarray, params: list[float] | None) -> np.ndarray:
        """One-step-ahead predictions for every position, plus the next-step forecast."""
        if params is None or len(series) < 3:
            # Naive forecast: every step predicts the previous value
            if not len(series):
                return np.zeros(1)
            return np.concatenate([series[:1], series])
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            result = self._model(series).filter(np.asarray(params))
            fitted = np.asarray(result.fittedvalues, dtype=np.float64)
            forecast = np.asarray(result.forecast(1), dtype=np.float64)
        return np.concatenate([fitted, forecast])

    def _forecast(self, rates: np.ndarray, fitted: list[list[float] | None]) -> np.ndarray:
        return np.array([self._one_step(rates[:, j], fitted[j])[-1] for j in range(rates.shape[1])])

    def _score_rows(
        self, history: Sequence[Draw], targets_from: int, fe: FeatureEngineer, fitted: list[list[float] | None]
    ) -> list[np.ndarray]:
        """Score rows predicting history[i] from history[:i], for i >= targets_from."""
        rates = self._rate_series(fe.hit_matrix(list(history)))
        w = min(self.params.smoothing_window, len(history))
        # Column of one-step predictions; entry k predicts rates[k], which ends at draw k + w - 1
        preds = np.stack([self._one_step(rates[:, j], fitted[j]) for j in range(rates.shape[1])], axis=1)
        rows = []
        for i in range(max(targets_from, w), len(history)):
            rows.append(preds[i - w + 1])
        return rows

    def train(
        self,
        training_window: DrawWindow,
        validation_window: DrawWindow,
        should_stop: StopCheck | None = None,
    ) -> TrainingMetrics:
        self._require_samples(training_window)
        rule = training_window.rule
        fe = FeatureEngineer(rule)
        train_draws = list(training_window.draws)

        try:
            self.main_params = self._fit_all(self._rate_series(fe.hit_matrix(train_draws)), should_stop)
            self.special_params = self._fit_all(
                self._rate_series(fe.special_hit_matrix(train_draws)), should_stop
            ) if rule.special_count else []
            self._check_stop(should_stop)
            history = (training_window + validation_window).draws
            w = min(self.params.smoothing_window, len(train_draws))
            train_rows = self._score_rows(train_draws, w, fe, self.main_params)
            val_rows = self._score_rows(history, len(train_draws), fe, self.main_params)
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
            raise TrainingFailed(f"{self.kind}: {e}") from e

        train_stats = hit_metrics(train_rows, train_draws[w:], rule)
        val_stats = hit_metrics(val_rows, validation_window.draws, rule) if val_rows else None
        self.trained_for = rule.identifier

        headline = val_stats or train_stats
        return TrainingMetrics(
            train_accuracy=train_stats["accuracy"],
            validation_accuracy=val_stats["accuracy"] if val_stats else None,
            precision=headline["precision"],
            recall=headline["recall"],
            f1=headline["f1"],
            train_samples=len(train_draws),
            validation_samples=len(validation_window),
            details={
                "order": list(self.params.order),
                "trend": self.params.trend,
                "constant_series": sum(p is None for p in self.main_params),
            },
        )

    def score_numbers(self, features: FeatureSet, rule: LotteryRuleSet) -> tuple[np.ndarray, np.ndarray]:
        if not self.main_params:
            raise RuntimeError("Model not trained")
        self._check_rule(rule)
        fe = FeatureEngineer(rule)
        draws = list(features.window.draws)
        main = self._forecast(self._rate_series(fe.hit_matrix(draws)), self.main_params)
        special = (
            self._forecast(self._rate_series(fe.special_hit_matrix(draws)), self.special_params)
            if rule.special_count else np.zeros(0)
        )
        return main, special

    def serialize(self) -> bytes:
        return json.dumps({
            "kind": self.kind,
            "trained_for": self.trained_for,
            "order": list(self.params.order),
            "trend": self.params.trend,
            "main_params": self.main_params,
            "special_params": self.special_params,
        }).encode()

    def deserialize(self, data: bytes) -> None:
        payload = json.loads(data)
        if payload.get("kind") != self.kind:
            raise ValueError(f"artifact is for {payload.get('kind')}, not {self.kind}")
        if tuple(payload["order"]) != self.params.order or payload["trend"] != self.params.trend:
            raise ValueError("artifact was fitted with a different ARIMA order")
        self.main_params = payload["main_params"]
        self.special_params = payload["special_params"]
        self.trained_for = payload.get("trained_for")
