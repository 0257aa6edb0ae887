"""Base class and shared helpers for forecasting algorithms."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from typing import ClassVar

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from lottery_forecast.errors import InsufficientData, PredictionFailed, TrainingCancelled
from lottery_forecast.ml.features.window import Draw, DrawWindow, FeatureSet
from lottery_forecast.schemas.features import ALL_FEATURE_KINDS, FeatureKind
from lottery_forecast.schemas.lottery import LotteryRuleSet

StopCheck = Callable[[], bool]


class AlgorithmParams(BaseModel):
    """Common parameters; every kind extends this with its own typed fields."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    min_samples: int = Field(default=30, ge=1)
    feature_kinds: tuple[FeatureKind, ...] = ALL_FEATURE_KINDS


@dataclass
class PredictionOutput:
    numbers: list[int]
    special_numbers: list[int]
    confidence_scores: list[float]
    details: dict = field(default_factory=dict)


@dataclass
class TrainingMetrics:
    """Accuracy values are hit rates in percent (0-100)."""

    train_accuracy: float
    validation_accuracy: float | None = None
    train_loss: float | None = None
    validation_loss: float | None = None
    precision: float | None = None
    recall: float | None = None
    f1: float | None = None
    train_samples: int = 0
    validation_samples: int = 0
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class BaseForecastAlgorithm(ABC):
    """Abstract base for all forecasting algorithms.

    Subclasses produce one score per number in range; `predict` turns those
    scores into a rule-conforming prediction.
    """

    kind: ClassVar[str] = ""
    params_model: ClassVar[type[AlgorithmParams]] = AlgorithmParams

    def __init__(self, params: AlgorithmParams):
        self.params = params
        self.trained_for: str | None = None  # rule identifier of the last training run

    @property
    def min_samples(self) -> int:
        return self.params.min_samples

    @property
    def is_trained(self) -> bool:
        return self.trained_for is not None

    @abstractmethod
    def train(
        self,
        training_window: DrawWindow,
        validation_window: DrawWindow,
        should_stop: StopCheck | None = None,
    ) -> TrainingMetrics:
        """Fit on the training window and score on the validation window.

        Raises:
            InsufficientData: fewer than `min_samples` training drawings
            TrainingFailed: the fit did not converge
            TrainingCancelled: should_stop() returned True between iterations
        """
        ...

    @abstractmethod
    def score_numbers(self, features: FeatureSet, rule: LotteryRuleSet) -> tuple[np.ndarray, np.ndarray]:
        """Return (main scores, special scores), one per number in each range."""
        ...

    @abstractmethod
    def serialize(self) -> bytes:
        ...

    @abstractmethod
    def deserialize(self, data: bytes) -> None:
        ...

    def predict(self, features: FeatureSet, rule: LotteryRuleSet) -> PredictionOutput:
        try:
            main_scores, special_scores = self.score_numbers(features, rule)
        except (PredictionFailed, InsufficientData):
            raise
        except (ValueError, ArithmeticError, RuntimeError, np.linalg.LinAlgError) as e:
            raise PredictionFailed(f"{self.kind}: {e}") from e
        return build_prediction(main_scores, special_scores, rule, details={"algorithm": self.kind})

    # ── helpers ───────────────────────────────────────────────────────

    def _require_samples(self, window: DrawWindow) -> None:
        if len(window) < self.min_samples:
            raise InsufficientData(
                f"{self.kind} needs at least {self.min_samples} drawings, got {len(window)}",
                available=len(window),
                required=self.min_samples,
            )

    @staticmethod
    def _check_stop(should_stop: StopCheck | None) -> None:
        if should_stop is not None and should_stop():
            raise TrainingCancelled("training cancelled")

    def _check_rule(self, rule: LotteryRuleSet) -> None:
        if self.trained_for is not None and self.trained_for != rule.identifier:
            raise PredictionFailed(
                f"{self.kind} was trained for {self.trained_for}, not {rule.identifier}"
            )


# ── selection ─────────────────────────────────────────────────────────

def rank_numbers(scores: np.ndarray, start: int, count: int) -> tuple[list[int], list[float]]:
    """Pick the `count` best-scoring numbers; ties go to the lowest number.

    Returns the numbers in ascending order with min-max normalized confidences.
    """
    if count == 0:
        return [], []
    scores = np.asarray(scores, dtype=np.float64)
    if scores.ndim != 1 or len(scores) < count:
        raise PredictionFailed(f"expected at least {count} scores, got shape {scores.shape}")
    if not np.all(np.isfinite(scores)):
        raise PredictionFailed("non-finite scores")

    order = np.lexsort((np.arange(len(scores)), -scores))[:count]
    lo, hi = scores.min(), scores.max()
    if hi > lo:
        conf = (scores - lo) / (hi - lo)
    else:
        conf = np.full(len(scores), 0.5)

    picked = sorted(int(i) for i in order)
    return [start + i for i in picked], [float(np.clip(conf[i], 0.0, 1.0)) for i in picked]


def build_prediction(
    main_scores: np.ndarray,
    special_scores: np.ndarray,
    rule: LotteryRuleSet,
    details: dict | None = None,
) -> PredictionOutput:
    numbers, main_conf = rank_numbers(main_scores, rule.main_start, rule.main_count)
    specials, special_conf = rank_numbers(special_scores, rule.special_start, rule.special_count)
    output = PredictionOutput(numbers, specials, main_conf + special_conf, details or {})
    validate_prediction(output, rule)
    return output


def validate_prediction(output: PredictionOutput, rule: LotteryRuleSet) -> None:
    """Raise PredictionFailed unless the output satisfies the rule's shape."""
    lo, hi = rule.main_range
    if len(output.numbers) != rule.main_count or len(set(output.numbers)) != rule.main_count:
        raise PredictionFailed(f"expected {rule.main_count} unique main numbers, got {output.numbers}")
    if any(n < lo or n > hi for n in output.numbers):
        raise PredictionFailed(f"main numbers out of range {lo}..{hi}: {output.numbers}")
    if len(output.special_numbers) != rule.special_count or len(set(output.special_numbers)) != rule.special_count:
        raise PredictionFailed(
            f"expected {rule.special_count} unique special numbers, got {output.special_numbers}"
        )
    if rule.special_count:
        s_lo, s_hi = rule.special_range
        if any(n < s_lo or n > s_hi for n in output.special_numbers):
            raise PredictionFailed(f"special numbers out of range {s_lo}..{s_hi}")
    expected = rule.main_count + rule.special_count
    if len(output.confidence_scores) != expected:
        raise PredictionFailed(f"expected {expected} confidence scores, got {len(output.confidence_scores)}")
    if any(not (0.0 <= c <= 1.0) for c in output.confidence_scores):
        raise PredictionFailed("confidence scores must lie in [0, 1]")


# ── scoring ───────────────────────────────────────────────────────────

def hit_metrics(
    score_rows: Sequence[np.ndarray],
    actual: Sequence[Draw],
    rule: LotteryRuleSet,
) -> dict[str, float]:
    """Top-k hit statistics of main-number score rows against actual draws.

    accuracy = mean share of drawn numbers recovered, in percent.
    """
    if not score_rows:
        return {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1": 0.0, "avg_hits": 0.0}
    k = rule.main_count
    hits = predicted = drawn = 0
    for scores, draw in zip(score_rows, actual):
        order = np.lexsort((np.arange(len(scores)), -np.asarray(scores)))[:k]
        picked = {rule.main_start + int(i) for i in order}
        target = set(draw.numbers)
        hits += len(picked & target)
        predicted += len(picked)
        drawn += len(target)
    precision = hits / predicted if predicted else 0.0
    recall = hits / drawn if drawn else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    return {
        "accuracy": round(100.0 * recall, 4),
        "precision": round(100.0 * precision, 4),
        "recall": round(100.0 * recall, 4),
        "f1": round(100.0 * f1, 4),
        "avg_hits": round(hits / len(score_rows), 4),
    }
