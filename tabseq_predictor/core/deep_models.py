"""Small torch networks behind the trainable model adapter."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import torch
from torch import Tensor, nn

LOGGER = logging.getLogger(__name__)


class DenseClassifier(nn.Module):
    """Feed-forward binary classifier: hidden ReLU layers then a sigmoid head."""

    def __init__(
        self,
        input_size: int,
        output_size: int = 1,
        *,
        hidden_units: Sequence[int] = (16,),
        dropout: float = 0.0,
    ) -> None:
        super().__init__()
        layers: list[nn.Module] = []
        previous = input_size
        for units in hidden_units:
            layers.append(nn.Linear(previous, int(units)))
            layers.append(nn.ReLU())
            if dropout > 0:
                layers.append(nn.Dropout(dropout))
            previous = int(units)
        layers.append(nn.Linear(previous, output_size))
        self.body = nn.Sequential(*layers)

    def forward(self, x: Tensor) -> Tensor:  # type: ignore[override]
        return torch.sigmoid(self.body(x))


class RecurrentClassifier(nn.Module):
    """Stacked recurrent encoder with a sigmoid multi-label head.

    Every layer but the last returns its full sequence to the next one; the
    head reads the final timestep of the last layer.
    """

    def __init__(
        self,
        rnn_layer: type[nn.RNNBase],
        input_size: int,
        output_size: int,
        *,
        hidden_units: Sequence[int] = (64, 32),
        dropout: float = 0.2,
    ) -> None:
        super().__init__()
        if not hidden_units:
            raise ValueError("Recurrent classifiers need at least one hidden layer.")
        self.layers = nn.ModuleList()
        previous = input_size
        for units in hidden_units:
            self.layers.append(rnn_layer(input_size=previous, hidden_size=int(units), batch_first=True))
            previous = int(units)
        self.dropout = nn.Dropout(dropout)
        self.head = nn.Linear(previous, output_size)

    def forward(self, x: Tensor) -> Tensor:  # type: ignore[override]
        output = x
        for layer in self.layers:
            output, _ = layer(output)
            output = self.dropout(output)
        final_state = output[:, -1, :]
        return torch.sigmoid(self.head(final_state))


RECURRENT_LAYERS: dict[str, type[nn.RNNBase]] = {
    "gru": nn.GRU,
    "lstm": nn.LSTM,
}


def build_network(
    architecture: str,
    input_shape: Sequence[int],
    output_size: int,
    params: Mapping[str, Any] | None = None,
) -> nn.Module:
    """Instantiate the torch module for *architecture*.

    ``input_shape`` is ``(features,)`` for dense models and
    ``(timesteps, features)`` for recurrent ones.
    """

    params = dict(params or {})
    name = architecture.lower()
    if name == "dense":
        if len(input_shape) != 1:
            raise ValueError(f"Dense models expect a 1-D input shape, got {tuple(input_shape)}.")
        return DenseClassifier(
            int(input_shape[0]),
            output_size,
            hidden_units=tuple(params.get("hidden_units", (16,))),
            dropout=float(params.get("dropout", 0.0)),
        )
    if name in RECURRENT_LAYERS:
        if len(input_shape) != 2:
            raise ValueError(
                f"Recurrent models expect a (timesteps, features) input shape, got {tuple(input_shape)}."
            )
        return RecurrentClassifier(
            RECURRENT_LAYERS[name],
            int(input_shape[1]),
            output_size,
            hidden_units=tuple(params.get("hidden_units", (64, 32))),
            dropout=float(params.get("dropout", 0.2)),
        )
    raise ValueError(f"Unsupported architecture: {architecture!r}")


__all__ = ["DenseClassifier", "RECURRENT_LAYERS", "RecurrentClassifier", "build_network"]
