"""Statistical baseline: weighted frequency + gap + hot/cold momentum + trend."""

import json
from collections.abc import Sequence
from typing import Literal

import numpy as np
from pydantic import Field

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

COMPONENTS = ("frequency", "gap", "momentum", "trend")
DEFAULT_WEIGHTS = (0.4, 0.2, 0.1, 0.3)

WEIGHT_CANDIDATES = (
    (0.40, 0.20, 0.10, 0.30),
    (0.50, 0.15, 0.10, 0.25),
    (0.30, 0.30, 0.10, 0.30),
    (0.35, 0.20, 0.20, 0.25),
    (0.60, 0.10, 0.10, 0.20),
    (0.25, 0.25, 0.25, 0.25),
)


class StatisticalParams(AlgorithmParams):
    window_size: int = Field(default=50, ge=5, le=2000)
    weight_function: Literal["linear", "exponential", "uniform"] = "linear"
    smoothing_factor: float = Field(default=0.1, ge=0.0, le=1.0)
    hot_window: int = Field(default=10, ge=1)
    cold_window: int = Field(default=50, ge=1)
    auto_tune: bool = True
    validation_draws: int = Field(default=30, ge=1)


class StatisticalModel(BaseForecastAlgorithm):
    """Scores every number from its recent history; no fitted state besides component weights."""

    kind = "statistical"
    params_model = StatisticalParams

    def __init__(self, params: StatisticalParams):
        super().__init__(params)
        self.params: StatisticalParams = params
        self.weights = np.array(DEFAULT_WEIGHTS, dtype=np.float64)

    # ── scoring ───────────────────────────────────────────────────────

    def _recency_weights(self, n: int) -> np.ndarray:
        if self.params.weight_function == "uniform":
            w = np.ones(n)
        elif self.params.weight_function == "exponential":
            w = np.exp(np.linspace(-2.0, 0.0, n))
        else:
            w = np.arange(1, n + 1, dtype=np.float64)
        return w / w.sum()

    def _weighted_frequency(self, hits: np.ndarray) -> np.ndarray:
        n = hits.shape[0]
        if n == 0:
            return np.zeros(hits.shape[1])
        freq = self._recency_weights(n) @ hits
        # Additive smoothing pulls sparse estimates toward uniform
        s = self.params.smoothing_factor
        return (1 - s) * freq + s * freq.mean()

    def _gap_scores(self, hits: np.ndarray) -> np.ndarray:
        """Current gap divided by average gap, capped at 3 (overdue numbers score higher)."""
        n, size = hits.shape
        scores = np.zeros(size)
        for j in range(size):
            seen = np.flatnonzero(hits[:, j])
            if len(seen) == 0:
                scores[j] = 3.0
                continue
            current_gap = n - 1 - seen[-1]
            avg_gap = np.diff(seen).mean() if len(seen) > 1 else float(n)
            scores[j] = min(current_gap / max(avg_gap, 1.0), 3.0)
        return scores

    def component_scores(self, draws: Sequence[Draw], rule: LotteryRuleSet) -> np.ndarray:
        """Normalized component matrix of shape (len(COMPONENTS), main range size)."""
        fe = FeatureEngineer(rule)
        recent = list(draws[-self.params.window_size:])
        hits = fe.hit_matrix(recent)

        hot_cold = fe.compute_hot_cold_features(recent, self.params.hot_window, self.params.cold_window)
        is_hot, is_cold, streak = hot_cold[:, 0], hot_cold[:, 1], hot_cold[:, 2]
        momentum = np.where(
            is_hot > 0, 1.0 + np.minimum(streak / 10.0, 1.0),
            np.where(is_cold > 0, 0.8 + np.minimum(streak / 20.0, 0.5), 1.0),
        )

        # Rolling-frequency delta: recent half vs older half
        trend = fe.compute_trend_features(recent)[: fe.size]
        trend = trend - trend.min()

        components = np.stack([
            self._weighted_frequency(hits),
            self._gap_scores(hits),
            momentum,
            trend,
        ])
        totals = components.sum(axis=1, keepdims=True)
        uniform = np.full_like(components, 1.0 / fe.size)
        return np.where(totals > 0, components / np.where(totals > 0, totals, 1.0), uniform)

    def _main_scores(self, draws: Sequence[Draw], rule: LotteryRuleSet, weights: np.ndarray) -> np.ndarray:
        return weights @ self.component_scores(draws, rule)

    def _special_scores(self, draws: Sequence[Draw], rule: LotteryRuleSet) -> np.ndarray:
        if not rule.special_count:
            return np.zeros(0)
        fe = FeatureEngineer(rule)
        hits = fe.special_hit_matrix(list(draws[-self.params.window_size:]))
        return self._weighted_frequency(hits)

    def score_numbers(self, features: FeatureSet, rule: LotteryRuleSet) -> tuple[np.ndarray, np.ndarray]:
        self._check_rule(rule)
        draws = features.window.draws
        return self._main_scores(draws, rule, self.weights), self._special_scores(draws, rule)

    # ── training ──────────────────────────────────────────────────────

    def _walk_forward(
        self, context: Sequence[Draw], targets: Sequence[Draw], rule: LotteryRuleSet, weights: np.ndarray
    ) -> list[np.ndarray]:
        rows = []
        history = list(context)
        for draw in targets:
            rows.append(self._main_scores(history, rule, weights))
            history.append(draw)
        return rows

    def train(
        self,
        training_window: DrawWindow,
        validation_window: DrawWindow,
        should_stop: StopCheck | None = None,
    ) -> TrainingMetrics:
        self._require_samples(training_window)
        rule = training_window.rule
        train_draws = list(training_window.draws)
        val_draws = list(validation_window.draws)[-self.params.validation_draws:]

        # In-sample check on the tail of the training window
        n_tail = min(self.params.validation_draws, len(train_draws) // 3)
        if n_tail:
            tail_context, tail = train_draws[:-n_tail], train_draws[-n_tail:]
        else:
            tail_context, tail = train_draws, []

        if self.params.auto_tune and val_draws:
            best_score, best = -1.0, self.weights
            for candidate in WEIGHT_CANDIDATES:
                self._check_stop(should_stop)
                w = np.array(candidate, dtype=np.float64)
                score = hit_metrics(self._walk_forward(train_draws, val_draws, rule, w), val_draws, rule)["accuracy"]
                if score > best_score:
                    best_score, best = score, w
            self.weights = best

        self._check_stop(should_stop)
        train_stats = hit_metrics(self._walk_forward(tail_context, tail, rule, self.weights), tail, rule)
        val_stats = (
            hit_metrics(self._walk_forward(train_draws, val_draws, rule, self.weights), val_draws, rule)
            if val_draws else None
        )
        self.trained_for = rule.identifier

        headline = val_stats or train_stats
        return TrainingMetrics(
            train_accuracy=train_stats["accuracy"],
            validation_accuracy=val_stats["accuracy"] if val_stats else None,
            precision=headline["precision"],
            recall=headline["recall"],
            f1=headline["f1"],
            train_samples=len(train_draws),
            validation_samples=len(val_draws),
            details={"component_weights": dict(zip(COMPONENTS, self.weights.round(4).tolist()))},
        )

    # ── persistence ───────────────────────────────────────────────────

    def serialize(self) -> bytes:
        return json.dumps({
            "kind": self.kind,
            "trained_for": self.trained_for,
            "weights": self.weights.tolist(),
        }).encode()

    def deserialize(self, data: bytes) -> None:
        payload = json.loads(data)
        if payload.get("kind") != self.kind:
            raise ValueError(f"artifact is for {payload.get('kind')}, not {self.kind}")
        self.weights = np.array(payload["weights"], dtype=np.float64)
        self.trained_for = payload.get("trained_for")
