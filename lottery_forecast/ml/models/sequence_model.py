"""LSTM sequence model over per-draw encodings."""

import io

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


class SequenceModelParams(AlgorithmParams):
    min_samples: int = Field(default=60, ge=1)
    hidden_size: int = Field(default=64, ge=4, le=1024)
    num_layers: int = Field(default=2, ge=1, le=6)
    dropout: float = Field(default=0.2, ge=0.0, lt=1.0)
    epochs: int = Field(default=60, ge=1, le=5000)
    batch_size: int = Field(default=32, ge=1)
    learning_rate: float = Field(default=1e-3, gt=0.0, le=1.0)
    weight_decay: float = Field(default=1e-4, ge=0.0)
    sequence_length: int = Field(default=10, ge=2, le=500)
    patience: int = Field(default=10, ge=1)
    random_state: int = 42


class LotteryLSTMNet(nn.Module):
    """LSTM encoder → last hidden state → per-number logits."""

    def __init__(self, input_dim: int, output_dim: int, hidden_size: int, num_layers: int, dropout: float):
        super().__init__()
        self.lstm = nn.LSTM(
            input_size=input_dim,
            hidden_size=hidden_size,
            num_layers=num_layers,
            batch_first=True,
            dropout=dropout if num_layers > 1 else 0.0,
        )
        self.head = nn.Sequential(
            nn.LayerNorm(hidden_size),
            nn.Dropout(dropout),
            nn.Linear(hidden_size, output_dim),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        # x: (batch, seq_len, input_dim)
        out, _ = self.lstm(x)
        return self.head(out[:, -1, :])  # (batch, output_dim), raw logits


class SequenceModel(BaseForecastAlgorithm):
    kind = "lstm"
    params_model = SequenceModelParams

    def __init__(self, params: SequenceModelParams, device: str = "cpu"):
        super().__init__(params)
        self.params: SequenceModelParams = params
        self.device = torch.device(device)
        self.net: LotteryLSTMNet | None = None
        self.input_dim = 0
        self.output_dim = 0

    def _build_net(self) -> LotteryLSTMNet:
        return LotteryLSTMNet(
            self.input_dim,
            self.output_dim,
            self.params.hidden_size,
            self.params.num_layers,
            self.params.dropout,
        ).to(self.device)

    def _prepare_data(self, fe: FeatureEngineer, history, first_target: int) -> tuple[torch.Tensor, torch.Tensor]:
        """Sliding window sequences → multi-hot targets."""
        seq_len = self.params.sequence_length
        X_list, y_list = [], []
        for i in range(max(first_target, seq_len), len(history)):
            X_list.append(fe.build_sequence_features(history[i - seq_len:i], seq_len))
            y_list.append(fe.build_target(history[i]))
        if not X_list:
            return torch.zeros((0, seq_len, self.input_dim)), torch.zeros((0, self.output_dim))
        X = torch.tensor(np.array(X_list), dtype=torch.float32, device=self.device)
        y = torch.tensor(np.array(y_list), dtype=torch.float32, device=self.device)
        return X, y

    def train(
        self,
        training_window: DrawWindow,
        validation_window: DrawWindow,
        should_stop: StopCheck | None = None,
    ) -> TrainingMetrics:
        self._require_samples(training_window)
        rule = training_window.rule
        fe = FeatureEngineer(rule)
        seq_len = self.params.sequence_length
        if len(training_window) <= seq_len + 1:
            raise InsufficientData(
                f"{self.kind}: need more than {seq_len + 1} drawings for sequence length {seq_len}",
                available=len(training_window),
                required=seq_len + 2,
            )

        self.input_dim = fe.size + rule.special_size + 11
        self.output_dim = fe.size + rule.special_size
        torch.manual_seed(self.params.random_state)
        self.net = self._build_net()

        X_train, y_train = self._prepare_data(fe, training_window.draws, seq_len)
        history = (training_window + validation_window).draws
        X_val, y_val = self._prepare_data(fe, history, len(training_window))

        try:
            fit = fit_multilabel(
                self.net, X_train, y_train, X_val, y_val,
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
        p_train = predict_proba(self.net, X_train)
        train_stats = hit_metrics(list(p_train[:, :size]), training_window.draws[seq_len:], rule)
        metrics = TrainingMetrics(
            train_accuracy=train_stats["accuracy"],
            train_loss=fit.final_train_loss,
            validation_loss=fit.best_val_loss,
            precision=train_stats["precision"],
            recall=train_stats["recall"],
            f1=train_stats["f1"],
            train_samples=len(X_train),
            validation_samples=len(X_val),
            details={"architecture": "lstm", "epochs_trained": fit.epochs_trained},
        )
        if len(X_val):
            p_val = predict_proba(self.net, X_val)
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
        seq = fe.build_sequence_features(features.window.draws, self.params.sequence_length)
        x = torch.tensor(seq, dtype=torch.float32, device=self.device).unsqueeze(0)
        probs = predict_proba(self.net, x)[0]
        return probs[: fe.size], probs[fe.size:]

    def serialize(self) -> bytes:
        buffer = io.BytesIO()
        torch.save({
            "kind": self.kind,
            "trained_for": self.trained_for,
            "input_dim": self.input_dim,
            "output_dim": self.output_dim,
            "state_dict": self.net.state_dict() if self.net else None,
        }, buffer)
        return buffer.getvalue()

    def deserialize(self, data: bytes) -> None:
        checkpoint = torch.load(io.BytesIO(data), map_location=self.device, weights_only=False)
        if checkpoint.get("kind") != self.kind:
            raise ValueError(f"artifact is for {checkpoint.get('kind')}, not {self.kind}")
        self.input_dim = checkpoint["input_dim"]
        self.output_dim = checkpoint["output_dim"]
        self.trained_for = checkpoint["trained_for"]
        self.net = self._build_net()
        if checkpoint["state_dict"] is not None:
            self.net.load_state_dict(checkpoint["state_dict"])
        self.net.eval()
