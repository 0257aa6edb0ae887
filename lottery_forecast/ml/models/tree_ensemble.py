"""Random-forest ensemble over windowed feature vectors."""

import io

import joblib
import numpy as np
from pydantic import Field
from sklearn.ensemble import RandomForestClassifier

from lottery_forecast.errors import InsufficientData, TrainingFailed
from lottery_forecast.ml.features.feature_engineer import FeatureEngineer
from lottery_forecast.ml.features.window import DrawWindow, FeatureSet
from lottery_forecast.ml.models.base_model import (
    AlgorithmParams,
    BaseForecastAlgorithm,
    StopCheck,
    TrainingMetrics,
    hit_metrics,
)
from lottery_forecast.schemas.lottery import LotteryRuleSet


class TreeEnsembleParams(AlgorithmParams):
    min_samples: int = Field(default=100, ge=1)
    n_estimators: int = Field(default=100, ge=1, le=5000)
    max_depth: int | None = Field(default=10, ge=1)
    min_samples_split: int = Field(default=2, ge=2)
    min_samples_leaf: int = Field(default=1, ge=1)
    random_state: int = 42
    lookback: int = Field(default=20, ge=2, le=500)
    estimators_per_step: int = Field(default=10, ge=1)


class TreeEnsembleModel(BaseForecastAlgorithm):
    """One multi-output RandomForestClassifier predicting every number's appearance.

    Trees are grown in steps with warm_start so a cancellation request is
    honoured between steps.
    """

    kind = "random_forest"
    params_model = TreeEnsembleParams

    def __init__(self, params: TreeEnsembleParams):
        super().__init__(params)
        self.params: TreeEnsembleParams = params
        self.forest: RandomForestClassifier | None = None

    def _positive_proba(self, X: np.ndarray) -> np.ndarray:
        """P(number appears) for each output column, shape (n, outputs)."""
        probas = self.forest.predict_proba(X)
        all_classes = self.forest.classes_
        if not isinstance(probas, list):
            probas, all_classes = [probas], [all_classes]
        columns = []
        for classes, proba in zip(all_classes, probas):
            classes = list(classes)
            if 1.0 in classes:
                columns.append(proba[:, classes.index(1.0)])
            else:
                columns.append(np.zeros(X.shape[0]))
        return np.stack(columns, axis=1)

    def train(
        self,
        training_window: DrawWindow,
        validation_window: DrawWindow,
        should_stop: StopCheck | None = None,
    ) -> TrainingMetrics:
        self._require_samples(training_window)
        rule = training_window.rule
        fe = FeatureEngineer(rule)
        lookback = self.params.lookback
        kinds = self.params.feature_kinds

        X_train, Y_train = fe.build_supervised_samples(training_window.draws, lookback, lookback, kinds)
        if len(X_train) < 2:
            raise InsufficientData(
                f"{self.kind}: window of {len(training_window)} drawings yields no samples "
                f"with lookback {lookback}",
                available=len(training_window),
                required=lookback + 2,
            )
        history = (training_window + validation_window).draws
        X_val, Y_val = fe.build_supervised_samples(history, len(training_window), lookback, kinds)

        forest = RandomForestClassifier(
            n_estimators=1,
            max_depth=self.params.max_depth,
            min_samples_split=self.params.min_samples_split,
            min_samples_leaf=self.params.min_samples_leaf,
            random_state=self.params.random_state,
            warm_start=True,
            n_jobs=1,
        )
        grown = 0
        try:
            while grown < self.params.n_estimators:
                self._check_stop(should_stop)
                grown = min(grown + self.params.estimators_per_step, self.params.n_estimators)
                forest.set_params(n_estimators=grown)
                forest.fit(X_train, Y_train)
        except ValueError as e:
            raise TrainingFailed(f"{self.kind}: {e}") from e
        self.forest = forest

        size = fe.size
        p_train = self._positive_proba(X_train)
        train_stats = hit_metrics(list(p_train[:, :size]), training_window.draws[lookback:], rule)
        metrics = TrainingMetrics(
            train_accuracy=train_stats["accuracy"],
            train_loss=float(np.mean((p_train - Y_train) ** 2)),
            precision=train_stats["precision"],
            recall=train_stats["recall"],
            f1=train_stats["f1"],
            train_samples=len(X_train),
            validation_samples=len(X_val),
            details={"n_estimators": grown, "feature_dim": int(X_train.shape[1])},
        )
        if len(X_val):
            p_val = self._positive_proba(X_val)
            val_stats = hit_metrics(list(p_val[:, :size]), validation_window.draws, rule)
            metrics.validation_accuracy = val_stats["accuracy"]
            metrics.validation_loss = float(np.mean((p_val - Y_val) ** 2))
            metrics.precision = val_stats["precision"]
            metrics.recall = val_stats["recall"]
            metrics.f1 = val_stats["f1"]

        self.trained_for = rule.identifier
        return metrics

    def score_numbers(self, features: FeatureSet, rule: LotteryRuleSet) -> tuple[np.ndarray, np.ndarray]:
        if self.forest is None:
            raise RuntimeError("Model not trained")
        self._check_rule(rule)
        fe = FeatureEngineer(rule)
        context = features.window.draws[-self.params.lookback:]
        x = fe.window_vector(context, self.params.feature_kinds, features.as_of_date)
        probs = self._positive_proba(x.reshape(1, -1))[0]
        return probs[: fe.size], probs[fe.size:]

    def serialize(self) -> bytes:
        buffer = io.BytesIO()
        joblib.dump({"kind": self.kind, "trained_for": self.trained_for, "forest": self.forest}, buffer)
        return buffer.getvalue()

    def deserialize(self, data: bytes) -> None:
        payload = joblib.load(io.BytesIO(data))
        if payload.get("kind") != self.kind:
            raise ValueError(f"artifact is for {payload.get('kind')}, not {self.kind}")
        self.forest = payload["forest"]
        self.trained_for = payload["trained_for"]
