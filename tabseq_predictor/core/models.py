"""Model factory and the trainable adapter wrapping the torch networks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Mapping, Sequence

import numpy as np
import torch
from torch import nn
from torch.utils.data import DataLoader, TensorDataset

from .deep_models import build_network
from .exceptions import InsufficientSamplesError, MissingPrerequisiteError, TrainingFailureError

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[["EpochProgress"], None]

_LIBRARY_ERRORS = (RuntimeError, ValueError, TypeError)


@dataclass(frozen=True)
class EpochProgress:
    """Metrics reported at the end of one training epoch (``epoch`` is 0-based)."""

    epoch: int
    epochs: int
    loss: float
    accuracy: float
    val_loss: float | None = None
    val_accuracy: float | None = None

    @property
    def fraction_complete(self) -> float:
        return (self.epoch + 1) / self.epochs

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def describe(self) -> str:
        message = (
            f"Epoch {self.epoch + 1}/{self.epochs} - loss: {self.loss:.4f}, acc: {self.accuracy:.4f}"
        )
        if self.val_loss is not None and self.val_accuracy is not None:
            message += f", val_loss: {self.val_loss:.4f}, val_acc: {self.val_accuracy:.4f}"
        return message


@dataclass
class TrainingHistory:
    """Per-epoch progress collected by :meth:`TrainableModel.fit`."""

    epochs: list[EpochProgress] = field(default_factory=list)
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.epochs)

    def metric(self, name: str) -> list[float | None]:
        return [getattr(progress, name) for progress in self.epochs]

    @property
    def final(self) -> EpochProgress | None:
        return self.epochs[-1] if self.epochs else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "epochs": [progress.as_dict() for progress in self.epochs],
            "cancelled": self.cancelled,
        }


def _as_array(data: Any) -> np.ndarray:
    return np.ascontiguousarray(data, dtype=np.float32)


class TrainableModel:
    """Own one network and expose build / fit / predict / dispose.

    Validation data is always supplied by the caller; the adapter never
    re-splits what it is given.
    """

    def __init__(
        self,
        architecture: str,
        input_shape: Sequence[int],
        output_size: int = 1,
        *,
        params: Mapping[str, Any] | None = None,
        learning_rate: float = 1e-3,
        device: str | None = None,
        seed: int | None = None,
    ) -> None:
        self.architecture = architecture.lower()
        self.input_shape = tuple(int(dim) for dim in input_shape)
        self.output_size = int(output_size)
        self.params = dict(params or {})
        self.learning_rate = float(learning_rate)
        self.device_name = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.device = torch.device(self.device_name)
        self.seed = seed
        self._network: nn.Module | None = None
        self._optimizer: torch.optim.Optimizer | None = None
        self._criterion = nn.BCELoss()
        self._trained = False
        self._training = False
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_built(self) -> bool:
        return self._network is not None

    @property
    def is_trained(self) -> bool:
        return self._trained and self._network is not None

    @property
    def is_training(self) -> bool:
        return self._training

    @property
    def network(self) -> nn.Module:
        if self._network is None:
            raise MissingPrerequisiteError("Model has not been built yet.")
        return self._network

    def build(self) -> nn.Module:
        """Allocate a fresh network and optimiser, discarding previous weights."""

        if self.seed is not None:
            torch.manual_seed(self.seed)
        self._release()
        network = build_network(self.architecture, self.input_shape, self.output_size, self.params)
        self._network = network.to(self.device)
        self._optimizer = torch.optim.Adam(self._network.parameters(), lr=self.learning_rate)
        self._trained = False
        LOGGER.debug(
            "Built %s network with input shape %s and %d outputs",
            self.architecture,
            self.input_shape,
            self.output_size,
        )
        return self._network

    def stop_training(self) -> None:
        """Ask a running fit to stop at the next epoch boundary."""

        self._stop_requested = True

    def dispose(self) -> None:
        """Release the network, optimiser and any cached device memory."""

        self._release()
        self._trained = False
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    def _release(self) -> None:
        self._network = None
        self._optimizer = None

    def _discard(self) -> None:
        # A failed fit leaves nothing half-trained behind.
        self._release()
        self._trained = False

    def __enter__(self) -> "TrainableModel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    def _targets(self, y: Any, n_samples: int) -> np.ndarray:
        targets = _as_array(y)
        return targets.reshape(n_samples, self.output_size)

    def _check_pair(self, X: Any, y: Any, label: str) -> tuple[np.ndarray, np.ndarray]:
        features = _as_array(X)
        if features.ndim == 0 or features.shape[0] == 0:
            raise InsufficientSamplesError(f"No {label} samples supplied.", sample_counts={label: 0})
        if tuple(features.shape[1:]) != self.input_shape:
            raise ValueError(
                f"{label} features have shape {tuple(features.shape[1:])}, expected {self.input_shape}."
            )
        targets = _as_array(y)
        if targets.shape[0] != features.shape[0]:
            raise ValueError(
                f"{label} features and labels are misaligned: {features.shape[0]} vs {targets.shape[0]}."
            )
        return features, self._targets(targets, features.shape[0])

    def _run_epoch(self, loader: DataLoader) -> tuple[float, float]:
        network = self.network
        optimizer = self._optimizer
        if optimizer is None:
            raise MissingPrerequisiteError("Model has no optimiser; call build() first.")
        network.train()
        total_loss = 0.0
        total_correct = 0.0
        total_values = 0
        for batch_X, batch_y in loader:
            batch_X = batch_X.to(self.device)
            batch_y = batch_y.to(self.device)
            optimizer.zero_grad()
            preds = network(batch_X)
            loss = self._criterion(preds, batch_y)
            loss.backward()
            optimizer.step()
            total_loss += float(loss.item()) * batch_X.shape[0]
            total_correct += float(((preds > 0.5).float() == batch_y).sum().item())
            total_values += batch_y.numel()
        n_samples = len(loader.dataset)  # type: ignore[arg-type]
        return total_loss / max(n_samples, 1), total_correct / max(total_values, 1)

    def _score(self, features: np.ndarray, targets: np.ndarray) -> tuple[float, float]:
        network = self.network
        network.eval()
        with torch.no_grad():
            inputs = torch.from_numpy(features).to(self.device)
            expected = torch.from_numpy(targets).to(self.device)
            preds = network(inputs)
            loss = float(self._criterion(preds, expected).item())
            accuracy = float(((preds > 0.5).float() == expected).float().mean().item())
            del inputs, expected, preds
        return loss, accuracy

    def iter_fit(
        self,
        X: Any,
        y: Any,
        X_val: Any | None = None,
        y_val: Any | None = None,
        *,
        epochs: int = 50,
        batch_size: int = 32,
        shuffle: bool = True,
    ) -> Iterator[EpochProgress]:
        """Train for *epochs*, yielding an :class:`EpochProgress` after each one.

        Closing the generator (or calling :meth:`stop_training`) ends training
        at the current epoch boundary.
        """

        if self._training:
            raise RuntimeError("A training run is already in progress for this model.")
        if epochs < 1 or batch_size < 1:
            raise ValueError("epochs and batch_size must be at least 1.")
        if (X_val is None) != (y_val is None):
            raise ValueError("Validation features and labels must be supplied together.")

        features, targets = self._check_pair(X, y, "training")
        validation = self._check_pair(X_val, y_val, "validation") if X_val is not None else None

        if self._network is None:
            self.build()

        generator = torch.Generator()
        if self.seed is not None:
            generator.manual_seed(self.seed)
        loader = DataLoader(
            TensorDataset(torch.from_numpy(features), torch.from_numpy(targets)),
            batch_size=batch_size,
            shuffle=shuffle,
            generator=generator,
        )

        self._training = True
        self._stop_requested = False
        completed_epochs = 0
        try:
            for epoch in range(epochs):
                try:
                    loss, accuracy = self._run_epoch(loader)
                    val_loss, val_accuracy = self._score(*validation) if validation else (None, None)
                except _LIBRARY_ERRORS as exc:
                    self._discard()
                    raise TrainingFailureError(
                        f"Training failed during epoch {epoch + 1}/{epochs}: {exc}",
                        context={"architecture": self.architecture, "epoch": epoch},
                    ) from exc

                completed_epochs += 1
                self._trained = True
                progress = EpochProgress(
                    epoch=epoch,
                    epochs=epochs,
                    loss=loss,
                    accuracy=accuracy,
                    val_loss=val_loss,
                    val_accuracy=val_accuracy,
                )
                LOGGER.debug(progress.describe())
                yield progress
                if self._stop_requested:
                    LOGGER.info("Training stopped on request after %d epochs", completed_epochs)
                    break
        finally:
            self._training = False
            self._stop_requested = False
            if completed_epochs < epochs:
                LOGGER.info("Training ended after %d of %d epochs", completed_epochs, epochs)

    def fit(
        self,
        X: Any,
        y: Any,
        X_val: Any | None = None,
        y_val: Any | None = None,
        *,
        epochs: int = 50,
        batch_size: int = 32,
        shuffle: bool = True,
        progress_callback: ProgressCallback | None = None,
    ) -> TrainingHistory:
        """Run :meth:`iter_fit` to completion and collect its history.

        An exception from *progress_callback* ends the run and propagates.
        """

        history = TrainingHistory()
        iterator = self.iter_fit(
            X, y, X_val, y_val, epochs=epochs, batch_size=batch_size, shuffle=shuffle
        )
        try:
            for progress in iterator:
                history.epochs.append(progress)
                if progress_callback is not None:
                    progress_callback(progress)
        finally:
            iterator.close()
        history.cancelled = len(history.epochs) < epochs
        LOGGER.info(
            "Finished training %s model: %s",
            self.architecture,
            history.final.describe() if history.final else "no epochs run",
        )
        return history

    async def fit_async(
        self,
        X: Any,
        y: Any,
        X_val: Any | None = None,
        y_val: Any | None = None,
        *,
        epochs: int = 50,
        batch_size: int = 32,
        shuffle: bool = True,
    ) -> AsyncIterator[EpochProgress]:
        """Async variant of :meth:`iter_fit` that yields control once per epoch."""

        iterator = self.iter_fit(
            X, y, X_val, y_val, epochs=epochs, batch_size=batch_size, shuffle=shuffle
        )
        try:
            for progress in iterator:
                yield progress
                await asyncio.sleep(0)
        finally:
            iterator.close()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------
    def predict(self, X: Any, *, batch_size: int = 256) -> np.ndarray:
        """Return probabilities: shape ``(n,)`` for one output, else ``(n, outputs)``."""

        if not self.is_trained:
            raise MissingPrerequisiteError("Model must be trained before predicting.")
        features = _as_array(X)
        if tuple(features.shape[1:]) != self.input_shape:
            raise ValueError(
                f"Features have shape {tuple(features.shape[1:])}, expected {self.input_shape}."
            )

        network = self.network
        network.eval()
        chunks: list[np.ndarray] = []
        try:
            with torch.no_grad():
                for start in range(0, features.shape[0], batch_size):
                    batch = torch.from_numpy(features[start : start + batch_size]).to(self.device)
                    chunks.append(network(batch).cpu().numpy())
                    del batch
        except _LIBRARY_ERRORS as exc:
            raise TrainingFailureError(
                f"Prediction failed: {exc}", context={"architecture": self.architecture}
            ) from exc

        probabilities = (
            np.concatenate(chunks, axis=0)
            if chunks
            else np.empty((0, self.output_size), dtype=np.float32)
        )
        if self.output_size == 1:
            return probabilities.reshape(-1)
        return probabilities

    def evaluate(self, X: Any, y: Any) -> Dict[str, float]:
        """Return binary cross-entropy loss and element-wise accuracy."""

        if not self.is_trained:
            raise MissingPrerequisiteError("Model must be trained before evaluation.")
        features, targets = self._check_pair(X, y, "evaluation")
        try:
            loss, accuracy = self._score(features, targets)
        except _LIBRARY_ERRORS as exc:
            raise TrainingFailureError(f"Evaluation failed: {exc}") from exc
        return {"loss": loss, "accuracy": accuracy}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self, path: str | Path) -> Path:
        if not self.is_trained:
            raise MissingPrerequisiteError("Only trained models can be saved.")
        resolved = Path(path).expanduser()
        resolved.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "architecture": self.architecture,
            "input_shape": list(self.input_shape),
            "output_size": self.output_size,
            "params": {
                key: list(value) if isinstance(value, tuple) else value
                for key, value in self.params.items()
            },
            "learning_rate": self.learning_rate,
            "state_dict": self.network.state_dict(),
        }
        torch.save(payload, resolved)
        LOGGER.info("Saved %s model to %s", self.architecture, resolved)
        return resolved

    @classmethod
    def load(cls, path: str | Path, *, device: str | None = None) -> "TrainableModel":
        resolved = Path(path).expanduser()
        if not resolved.exists():
            raise MissingPrerequisiteError(f"No saved model found at {resolved}.")
        payload = torch.load(resolved, map_location="cpu")
        model = cls(
            payload["architecture"],
            payload["input_shape"],
            payload["output_size"],
            params=payload.get("params"),
            learning_rate=payload.get("learning_rate", 1e-3),
            device=device,
        )
        model.build()
        model.network.load_state_dict(payload["state_dict"])
        model._trained = True
        LOGGER.info("Loaded %s model from %s", model.architecture, resolved)
        return model


class ModelFactory:
    """Create trainable models with sensible defaults per architecture."""

    DEFAULT_PARAMS: Dict[str, Dict[str, Any]] = {
        "dense": {"hidden_units": (16,), "dropout": 0.0},
        "gru": {"hidden_units": (64, 32), "dropout": 0.2},
        "lstm": {"hidden_units": (64, 32), "dropout": 0.2},
    }

    def __init__(self, architecture: str, overrides: Mapping[str, Any] | None = None) -> None:
        self.architecture = architecture.lower()
        if self.architecture not in self.DEFAULT_PARAMS:
            raise ValueError(
                f"Unsupported architecture {architecture!r}; choose from {sorted(self.DEFAULT_PARAMS)}."
            )
        self.overrides = dict(overrides or {})

    def create(
        self,
        input_shape: Sequence[int],
        output_size: int = 1,
        *,
        learning_rate: float = 1e-3,
        seed: int | None = None,
        device: str | None = None,
    ) -> TrainableModel:
        params = self.DEFAULT_PARAMS[self.architecture].copy()
        params.update(self.overrides)
        return TrainableModel(
            self.architecture,
            input_shape,
            output_size,
            params=params,
            learning_rate=learning_rate,
            seed=seed,
            device=device,
        )


__all__ = [
    "EpochProgress",
    "ModelFactory",
    "ProgressCallback",
    "TrainableModel",
    "TrainingHistory",
]
