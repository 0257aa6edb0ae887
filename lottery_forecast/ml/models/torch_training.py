"""Shared multi-label training loop for the torch-based algorithms."""

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import torch
import torch.nn as nn


@dataclass
class FitResult:
    epochs_trained: int
    best_val_loss: float | None
    final_train_loss: float


def fit_multilabel(
    net: nn.Module,
    X_train: torch.Tensor,
    Y_train: torch.Tensor,
    X_val: torch.Tensor | None,
    Y_val: torch.Tensor | None,
    *,
    epochs: int,
    batch_size: int,
    lr: float,
    weight_decay: float,
    patience: int,
    pos_weight: float,
    seed: int,
    check_stop: Callable[[], None],
) -> FitResult:
    """Train `net` with BCE-with-logits, keeping the best validation state.

    check_stop() is called before every epoch and raises to abort.
    """
    generator = torch.Generator().manual_seed(seed)
    optimizer = torch.optim.AdamW(net.parameters(), lr=lr, weight_decay=weight_decay)
    criterion = nn.BCEWithLogitsLoss(
        pos_weight=torch.tensor([pos_weight], device=X_train.device)
    )
    has_val = X_val is not None and len(X_val) > 0

    best_val_loss = float("inf")
    best_state = None
    patience_counter = 0
    train_loss = float("nan")
    epoch = 0

    for epoch in range(1, epochs + 1):
        check_stop()
        net.train()
        indices = torch.randperm(len(X_train), generator=generator)
        total_loss = 0.0
        n_batches = 0
        for start in range(0, len(X_train), batch_size):
            batch_idx = indices[start:start + batch_size]
            optimizer.zero_grad()
            loss = criterion(net(X_train[batch_idx]), Y_train[batch_idx])
            loss.backward()
            torch.nn.utils.clip_grad_norm_(net.parameters(), 1.0)
            optimizer.step()
            total_loss += loss.item()
            n_batches += 1
        train_loss = total_loss / max(n_batches, 1)
        if not np.isfinite(train_loss):
            raise FloatingPointError(f"training loss diverged at epoch {epoch}")

        if not has_val:
            continue

        net.eval()
        with torch.no_grad():
            val_loss = criterion(net(X_val), Y_val).item()

        # Early stopping on val loss
        if val_loss < best_val_loss:
            best_val_loss = val_loss
            patience_counter = 0
            best_state = {k: v.clone() for k, v in net.state_dict().items()}
        else:
            patience_counter += 1
            if patience_counter >= patience:
                break

    if best_state:
        net.load_state_dict(best_state)
    net.eval()
    return FitResult(
        epochs_trained=epoch,
        best_val_loss=best_val_loss if has_val else None,
        final_train_loss=train_loss,
    )


def predict_proba(net: nn.Module, X: torch.Tensor) -> np.ndarray:
    net.eval()
    with torch.no_grad():
        return torch.sigmoid(net(X)).cpu().numpy().astype(np.float64)
