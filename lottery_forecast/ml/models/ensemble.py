"""Hybrid ensemble: weighted, majority or consensus combination of member algorithms."""

import base64
import json
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
from loguru import logger
from pydantic import Field
from scipy.optimize import minimize

from lottery_forecast.errors import InvalidEnsembleWeights
from lottery_forecast.ml.features.window import DrawWindow, FeatureSet
from lottery_forecast.ml.models.base_model import (
    AlgorithmParams,
    BaseForecastAlgorithm,
    PredictionOutput,
    StopCheck,
    TrainingMetrics,
    validate_prediction,
)
from lottery_forecast.schemas.lottery import LotteryRuleSet

WEIGHT_TOLERANCE = 1e-6


class HybridParams(AlgorithmParams):
    min_samples: int = Field(default=1, ge=1)
    models: tuple[str, ...] = Field(default=("random_forest", "neural_network", "statistical"), min_length=1)
    weights: tuple[float, ...] | None = None
    member_parameters: dict[str, dict] = Field(default_factory=dict)
    voting: Literal["weighted", "majority", "consensus"] = "weighted"
    diversity_weight: float = Field(default=0.1, ge=0.0, le=1.0)
    optimize_weights: bool = False
    optimization_draws: int = Field(default=30, ge=5)


def equal_weights(n: int) -> list[float]:
    """n equal weights whose float sum is exactly 1 (the last takes the remainder)."""
    if n <= 0:
        return []
    head = [1.0 / n] * (n - 1)
    return head + [1.0 - math.fsum(head)]


def check_weights(weights: Sequence[float]) -> None:
    if not weights:
        raise InvalidEnsembleWeights("an ensemble needs at least one member")
    if any(not math.isfinite(w) for w in weights):
        raise InvalidEnsembleWeights(f"weights must be finite: {list(weights)}")
    total = math.fsum(weights)
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise InvalidEnsembleWeights(f"weights must sum to 1.0, got {total:.6f}")


@dataclass
class MemberVote:
    """One member's prediction spread over the full number ranges."""

    main: np.ndarray
    special: np.ndarray
    main_picked: np.ndarray
    special_picked: np.ndarray


class HybridEnsemble(BaseForecastAlgorithm):
    """Ordered (member, weight) pairs.

    Voting modes:
      weighted   sum of member confidences scaled by member weight
      majority   share of members that picked the number; weights ignored
      consensus  member weight plus diversity_weight x the weight of every
                 other member that agrees, normalized to [0, 1]

    The top-N numbers by combined score win; ties go to the lowest number.
    """

    kind = "hybrid"
    params_model = HybridParams

    def __init__(
        self,
        params: HybridParams,
        members: Sequence[tuple[BaseForecastAlgorithm, float]],
    ):
        super().__init__(params)
        self.params: HybridParams = params
        check_weights([w for _, w in members])
        self.members = [m for m, _ in members]
        self.weights = np.array([w for _, w in members], dtype=np.float64)

    @property
    def is_trained(self) -> bool:
        return all(m.is_trained for m in self.members)

    # ── combination ───────────────────────────────────────────────────

    @staticmethod
    def _align(output: PredictionOutput, rule: LotteryRuleSet) -> MemberVote:
        main = np.zeros(rule.main_size)
        special = np.zeros(rule.special_size)
        main_picked = np.zeros(rule.main_size, dtype=bool)
        special_picked = np.zeros(rule.special_size, dtype=bool)
        n_main = len(output.numbers)
        for number, conf in zip(output.numbers, output.confidence_scores[:n_main]):
            main[number - rule.main_start] = conf
            main_picked[number - rule.main_start] = True
        for number, conf in zip(output.special_numbers, output.confidence_scores[n_main:]):
            special[number - rule.special_start] = conf
            special_picked[number - rule.special_start] = True
        return MemberVote(main, special, main_picked, special_picked)

    def _member_votes(self, features: FeatureSet, rule: LotteryRuleSet) -> list[MemberVote]:
        return [self._align(m.predict(features, rule), rule) for m in self.members]

    def _consensus(self, picks: list[np.ndarray], weights: np.ndarray) -> np.ndarray:
        picked = np.array(picks, dtype=np.float64)
        d = self.params.diversity_weight
        agreement = weights @ picked
        # Each picking member adds its weight plus d x the weight of the others that agree
        scores = (1.0 - d) * agreement + d * agreement * picked.sum(axis=0)
        return scores / (1.0 + d * (len(picks) - 1))

    def _combine(self, votes: list[MemberVote], weights: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        if self.params.voting == "majority":
            n = len(votes)
            main = sum(v.main_picked.astype(np.float64) for v in votes) / n
            special = sum(v.special_picked.astype(np.float64) for v in votes) / n
        elif self.params.voting == "consensus":
            main = self._consensus([v.main_picked for v in votes], weights)
            special = self._consensus([v.special_picked for v in votes], weights)
        else:
            main = sum(w * v.main for w, v in zip(weights, votes))
            special = sum(w * v.special for w, v in zip(weights, votes))
        return main, special

    @staticmethod
    def _top(scores: np.ndarray, start: int, count: int) -> tuple[list[int], list[float]]:
        if count == 0:
            return [], []
        order = np.lexsort((np.arange(len(scores)), -scores))[:count]
        picked = sorted(int(i) for i in order)
        return [start + i for i in picked], [float(np.clip(scores[i], 0.0, 1.0)) for i in picked]

    def score_numbers(self, features: FeatureSet, rule: LotteryRuleSet) -> tuple[np.ndarray, np.ndarray]:
        return self._combine(self._member_votes(features, rule), self.weights)

    def predict(self, features: FeatureSet, rule: LotteryRuleSet) -> PredictionOutput:
        main, special = self.score_numbers(features, rule)
        numbers, main_conf = self._top(main, rule.main_start, rule.main_count)
        specials, special_conf = self._top(special, rule.special_start, rule.special_count)
        output = PredictionOutput(
            numbers,
            specials,
            main_conf + special_conf,
            details={
                "algorithm": self.kind,
                "voting": self.params.voting,
                "members": [m.kind for m in self.members],
                "weights": self.weights.round(6).tolist(),
            },
        )
        validate_prediction(output, rule)
        return output

    # ── training ──────────────────────────────────────────────────────

    def train(
        self,
        training_window: DrawWindow,
        validation_window: DrawWindow,
        should_stop: StopCheck | None = None,
    ) -> TrainingMetrics:
        member_metrics: list[TrainingMetrics] = []
        for member in self.members:
            self._check_stop(should_stop)
            logger.info("Training ensemble member {} on {} drawings", member.kind, len(training_window))
            member_metrics.append(member.train(training_window, validation_window, should_stop))

        # Majority voting ignores weights
        if (
            self.params.optimize_weights
            and self.params.voting != "majority"
            and len(self.members) > 1
            and len(validation_window)
        ):
            self._check_stop(should_stop)
            self._optimize_weights(training_window, validation_window)

        self.trained_for = training_window.rule.identifier
        return self._aggregate(member_metrics, len(training_window), len(validation_window))

    def _aggregate(self, metrics: list[TrainingMetrics], n_train: int, n_val: int) -> TrainingMetrics:
        def weighted(attr: str) -> float | None:
            pairs = [(w, getattr(m, attr)) for w, m in zip(self.weights, metrics) if getattr(m, attr) is not None]
            total = math.fsum(w for w, _ in pairs)
            if not pairs or total == 0:
                return None
            return math.fsum(w * v for w, v in pairs) / total

        return TrainingMetrics(
            train_accuracy=weighted("train_accuracy") or 0.0,
            validation_accuracy=weighted("validation_accuracy"),
            train_loss=weighted("train_loss"),
            validation_loss=weighted("validation_loss"),
            precision=weighted("precision"),
            recall=weighted("recall"),
            f1=weighted("f1"),
            train_samples=n_train,
            validation_samples=n_val,
            details={
                "weights": self.weights.round(6).tolist(),
                "members": {m.kind: mm.to_dict() for m, mm in zip(self.members, metrics)},
            },
        )

    def _optimize_weights(self, training_window: DrawWindow, validation_window: DrawWindow) -> None:
        """Nelder-Mead over the simplex, maximizing validation hits of the combined pick."""
        rule = training_window.rule
        targets = validation_window.draws[-self.params.optimization_draws:]
        offset = len(validation_window) - len(targets)
        history = training_window + validation_window[:offset]

        rows = []
        for target in targets:
            features = FeatureSet(rule, target.draw_date, history)
            rows.append((self._member_votes(features, rule), set(target.numbers)))
            history = history + DrawWindow(rule, (target,))

        def score(w: np.ndarray) -> float:
            w = np.abs(w)
            if w.sum() == 0:
                return 0.0
            w = w / w.sum()
            hits = 0
            for votes, actual in rows:
                main, _ = self._combine(votes, w)
                picked, _ = self._top(main, rule.main_start, rule.main_count)
                hits += len(actual & set(picked))
            return hits / len(rows)

        baseline = score(self.weights)
        result = minimize(lambda w: -score(w), self.weights, method="Nelder-Mead", options={"maxiter": 200})
        candidate = np.abs(result.x)
        if candidate.sum() > 0 and score(candidate) > baseline:
            candidate = candidate / candidate.sum()
            candidate[-1] = max(0.0, 1.0 - math.fsum(candidate[:-1]))
            self.weights = candidate
            logger.info("Ensemble weights optimized to {}", self.weights.round(4).tolist())

    # ── persistence ───────────────────────────────────────────────────

    def serialize(self) -> bytes:
        return json.dumps({
            "kind": self.kind,
            "trained_for": self.trained_for,
            "weights": self.weights.tolist(),
            "members": [
                {"kind": m.kind, "artifact": base64.b64encode(m.serialize()).decode()}
                for m in self.members
            ],
        }).encode()

    def deserialize(self, data: bytes) -> None:
        payload = json.loads(data)
        if payload.get("kind") != self.kind:
            raise ValueError(f"artifact is for {payload.get('kind')}, not {self.kind}")
        kinds = [entry["kind"] for entry in payload["members"]]
        if kinds != [m.kind for m in self.members]:
            raise ValueError(f"artifact members {kinds} do not match {[m.kind for m in self.members]}")
        check_weights(payload["weights"])
        for member, entry in zip(self.members, payload["members"]):
            member.deserialize(base64.b64decode(entry["artifact"]))
        self.weights = np.array(payload["weights"], dtype=np.float64)
        self.trained_for = payload.get("trained_for")
