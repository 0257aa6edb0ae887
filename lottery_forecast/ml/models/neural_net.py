"""Feed-forward network over windowed feature vectors."""

import io
from typing import Literal

import numpy as np
import torch
import torch.nn as nn
from pydantic import Field

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
from lottery_forecast.ml.models.torch_training import fit_multilabel, predict_proba
from lottery_forecast.schemas.lottery import LotteryRuleSet

ACTIVATIONS = {"relu": nn.ReLU, "tanh": nn.Tanh, "gelu": nn.GELU}


class NeuralNetParams(AlgorithmParams):
    min_samples: int = Field(default=60, ge=1)
    layers: tuple[int, ...] = Field(default=(128, 64, 32), min_length=1)
    activation: Literal["relu", "tanh", "gelu"] = "relu"
    dropout: float = Field(default=0.3, ge=0.0, lt=1.0)
    epochs: int = Field(default=100, ge=1, le=5000)
    batch_size: int = Field(default=64, ge=1)
    learning_rate: float = Field(default=1e-3, gt=0.0, le=1.0)
    weight_decay: float = Field(default=1e-4, ge=0.0)
    lookback: int = Field(default=20, ge=2, le=500)
    patience: int = Field(default=15, ge=1)
    random_state: int = 42


class LotteryMLPNet(nn.Module):
    """Linear → LayerNorm → activation → Dropout blocks, then per-number logits."""

    def __init__(self, input_dim: int, output_dim: int, layers: tuple[int, ...], activation: str, dropout: float):
        super().__init__()
        blocks = []
        width = input_dim
        for hidden in layers:
            blocks += [
                nn.Linear(width, hidden),
                nn.LayerNorm(hidden),
                ACTIVATIONS[activation](),
                nn.Dropout(dropout),
            ]
            width = hidden
        self.body = nn.Sequential(*blocks)
        self.head = nn.Linear(width, output_dim)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.head(self.body(x))


class NeuralNetModel(BaseForecastAlgorithm):
    kind = "neural_network"
    params_model = NeuralNetParams

    def __init__(self, params: NeuralNetParams, device: str = "cpu"):
        super().__init__(params)
        self.params: NeuralNetParams = params
        self.device = torch.device(device)
        self.net: LotteryMLPNet | None = None
        self.input_dim = 0
        self.output_dim = 0
        self.mean: np.ndarray | None = None
        self.std: np.ndarray | None = None

    def _build_net(self) -> LotteryMLPNet:
        return LotteryMLPNet(
            self.input_dim,
            self.output_dim,
            self.params.layers,
            self.params.activation,
            self.params.dropout,
        ).to(self.device)

    def _to_tensor(self, X: np.ndarray) -> torch.Tensor:
        return torch.tensor((X - self.mean) / self.std, dtype=torch.float32, device=self.device)

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

        # Standardize with training statistics only
        self.mean = X_train.mean(axis=0)
        self.std = np.where(X_train.std(axis=0) > 1e-8, X_train.std(axis=0), 1.0)
        self.input_dim = X_train.shape[1]
        self.output_dim = Y_train.shape[1]

        torch.manual_seed(self.params.random_state)
        self.net = self._build_net()
        xt = self._to_tensor(X_train)
        yt = torch.tensor(Y_train, dtype=torch.float32, device=self.device)
        xv = self._to_tensor(X_val) if len(X_val) else None
        yv = torch.tensor(Y_val, dtype=torch.float32, device=self.device) if len(X_val) else None

        try:
            fit = fit_multilabel(
                self.net, xt, yt, xv, yv,
                epochs=self.params.epochs,
                batch_size=self.params.batch_size,
                lr=self.params.learning_rate,
                weight_decay=self.params.weight_decay,
                patience=self.params.patience,
                pos_weight=(fe.size - rule.main_count) / rule.main_count,
                seed=self.params.random_state,
                check_stop=lambda: self._check_stop(should_stop),
            )
        except FloatingPointError as e:
            raise TrainingFailed(f"{self.kind}: {e}") from e

        size = fe.size
        p_train = predict_proba(self.net, xt)
        train_stats = hit_metrics(list(p_train[:, :size]), training_window.draws[lookback:], rule)
        metrics = TrainingMetrics(
            train_accuracy=train_stats["accuracy"],
            train_loss=fit.final_train_loss,
            validation_loss=fit.best_val_loss,
            precision=train_stats["precision"],
            recall=train_stats["recall"],
            f1=train_stats["f1"],
            train_samples=len(X_train),
            validation_samples=len(X_val),
            details={"layers": list(self.params.layers), "epochs_trained": fit.epochs_trained},
        )
        if xv is not None:
            p_val = predict_proba(self.net, xv)
            val_stats = hit_metrics(list(p_val[:, :size]), validation_window.draws, rule)
            metrics.validation_accuracy = val_stats["accuracy"]
            metrics.precision = val_stats["precision"]
            metrics.recall = val_stats["recall"]
            metrics.f1 = val_stats["f1"]

        self.trained_for = rule.identifier
        return metrics

    def score_numbers(self, features: FeatureSet, rule: LotteryRuleSet) -> tuple[np.ndarray, np.ndarray]:
        if self.net is None:
            raise RuntimeError("Model not trained")
        self._check_rule(rule)
        fe = FeatureEngineer(rule)
        context = features.window.draws[-self.params.lookback:]
        x = fe.window_vector(context, self.params.feature_kinds, features.as_of_date)
        if x.shape[0] != self.input_dim:
            raise ValueError(f"feature dimension {x.shape[0]} does not match trained {self.input_dim}")
        probs = predict_proba(self.net, self._to_tensor(x.reshape(1, -1)))[0]
        return probs[: fe.size], probs[fe.size:]

    def serialize(self) -> bytes:
        buffer = io.BytesIO()
        torch.save({
            "kind": self.kind,
            "trained_for": self.trained_for,
            "input_dim": self.input_dim,
            "output_dim": self.output_dim,
            "mean": self.mean,
            "std": self.std,
            "state_dict": self.net.state_dict() if self.net else None,
        }, buffer)
        return buffer.getvalue()

    def deserialize(self, data: bytes) -> None:
        checkpoint = torch.load(io.BytesIO(data), map_location=self.device, weights_only=False)
        if checkpoint.get("kind") != self.kind:
            raise ValueError(f"artifact is for {checkpoint.get('kind')}, not {self.kind}")
        self.input_dim = checkpoint["input_dim"]
        self.output_dim = checkpoint["output_dim"]
        self.mean = checkpoint["mean"]
        self.std = checkpoint["std"]
        self.trained_for = checkpoint["trained_for"]
        self.net = self._build_net()
        if checkpoint["state_dict"] is not None:
            self.net.load_state_dict(checkpoint["state_dict"])
        self.net.eval()
