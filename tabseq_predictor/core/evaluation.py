"""Threshold-swept classification metrics and per-symbol accuracy rollups."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Sequence

import numpy as np
from sklearn.metrics import confusion_matrix

from .config import coerce_threshold
from .time_series import label_slot

LOGGER = logging.getLogger(__name__)

DEFAULT_THRESHOLD_COUNT = 101


@dataclass(frozen=True)
class RocPoint:
    """Confusion-matrix tally at one decision threshold."""

    threshold: float
    fpr: float
    tpr: float
    tp: int
    fp: int
    tn: int
    fn: int

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ThresholdMetrics:
    """Precision/recall/F1/accuracy derived from a single :class:`RocPoint`."""

    threshold: float
    tp: int
    fp: int
    tn: int
    fn: int
    precision: float
    recall: float
    f1: float
    accuracy: float
    fpr: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def confusion_matrix(self) -> list[list[int]]:
        """Rows are actual 0/1, columns predicted 0/1."""

        return [[self.tn, self.fp], [self.fn, self.tp]]


@dataclass(frozen=True)
class PredictionOutcome:
    sample: int
    day_offset: int
    actual: int
    predicted: int

    @property
    def correct(self) -> bool:
        return self.actual == self.predicted


@dataclass(frozen=True)
class EntityAccuracy:
    """Accuracy of one symbol plus the per-sample outcomes behind it."""

    symbol: str
    accuracy: float
    correct: int
    total: int
    outcomes: tuple[PredictionOutcome, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "accuracy": self.accuracy,
            "correct": self.correct,
            "total": self.total,
        }


def _ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / float(denominator) if denominator else 0.0


def _binary_labels(values: Sequence[Any]) -> np.ndarray:
    labels = np.asarray(values, dtype=float).reshape(-1)
    if labels.size and not np.isin(labels, (0.0, 1.0)).all():
        raise ValueError("True labels must be 0 or 1.")
    return labels.astype(np.int64)


def compute_roc(
    true_labels: Sequence[Any],
    probabilities: Sequence[Any],
    *,
    n_thresholds: int = DEFAULT_THRESHOLD_COUNT,
) -> list[RocPoint]:
    """Sweep evenly spaced thresholds over ``[0, 1]`` (ascending).

    A probability at or above the threshold counts as a positive prediction.
    Rates with a zero denominator are reported as 0.
    """

    if n_thresholds < 2:
        raise ValueError("n_thresholds must be at least 2.")
    labels = _binary_labels(true_labels)
    scores = np.asarray(probabilities, dtype=float).reshape(-1)
    if labels.shape != scores.shape:
        raise ValueError(
            f"Labels and probabilities differ in length: {labels.size} vs {scores.size}."
        )
    if labels.size == 0:
        raise ValueError("At least one labelled prediction is required.")

    steps = n_thresholds - 1
    points: list[RocPoint] = []
    for index in range(n_thresholds):
        threshold = index / steps
        predicted = (scores >= threshold).astype(np.int64)
        tn, fp, fn, tp = (
            int(value) for value in confusion_matrix(labels, predicted, labels=[0, 1]).ravel()
        )
        points.append(
            RocPoint(
                threshold=threshold,
                fpr=_ratio(fp, fp + tn),
                tpr=_ratio(tp, tp + fn),
                tp=tp,
                fp=fp,
                tn=tn,
                fn=fn,
            )
        )
    return points


def compute_auc(points: Sequence[RocPoint]) -> float:
    """Trapezoidal area under the ROC curve.

    Threshold order yields descending FPR, so points are sorted by
    ``(fpr, tpr)`` before integrating. The ``(0, 0)`` and ``(1, 1)`` corners
    are always part of the curve.
    """

    corners = [(0.0, 0.0), (1.0, 1.0)]
    ordered = sorted([(point.fpr, point.tpr) for point in points] + corners)
    area = 0.0
    for previous, current in zip(ordered, ordered[1:]):
        area += (current[0] - previous[0]) * (current[1] + previous[1]) / 2.0
    return float(area)


def metrics_at_threshold(points: Sequence[RocPoint], threshold: float) -> ThresholdMetrics:
    """Derive summary metrics from the ROC point nearest *threshold*."""

    if not points:
        raise ValueError("At least one ROC point is required.")
    threshold = coerce_threshold(threshold)
    point = min(points, key=lambda candidate: abs(candidate.threshold - threshold))

    precision = _ratio(point.tp, point.tp + point.fp)
    recall = point.tpr
    f1 = _ratio(2 * precision * recall, precision + recall)
    accuracy = _ratio(point.tp + point.tn, point.tp + point.tn + point.fp + point.fn)
    return ThresholdMetrics(
        threshold=point.threshold,
        tp=point.tp,
        fp=point.fp,
        tn=point.tn,
        fn=point.fn,
        precision=precision,
        recall=recall,
        f1=f1,
        accuracy=accuracy,
        fpr=point.fpr,
    )


def per_entity_accuracy(
    predictions: Any,
    true_labels: Any,
    symbols: Sequence[str],
    horizon: int,
    *,
    threshold: float = 0.5,
) -> dict[str, EntityAccuracy]:
    """Score each symbol's label slots across every sample.

    A probability strictly above *threshold* counts as "price rose".
    """

    predicted = np.asarray(predictions, dtype=float)
    actual = np.asarray(true_labels, dtype=float)
    if predicted.ndim != 2 or predicted.shape != actual.shape:
        raise ValueError(
            f"Predictions and labels must be matching 2-D arrays, got {predicted.shape} and {actual.shape}."
        )
    expected_width = len(symbols) * horizon
    if predicted.shape[1] != expected_width:
        raise ValueError(
            f"Expected {expected_width} label slots for {len(symbols)} symbols x {horizon} days, "
            f"got {predicted.shape[1]}."
        )

    binary = (predicted > threshold).astype(np.int64)
    results: dict[str, EntityAccuracy] = {}
    for symbol_index, symbol in enumerate(symbols):
        outcomes: list[PredictionOutcome] = []
        for sample in range(predicted.shape[0]):
            for offset in range(horizon):
                slot = label_slot(symbol_index, offset, horizon)
                outcomes.append(
                    PredictionOutcome(
                        sample=sample,
                        day_offset=offset,
                        actual=int(actual[sample, slot]),
                        predicted=int(binary[sample, slot]),
                    )
                )
        correct = sum(1 for outcome in outcomes if outcome.correct)
        results[symbol] = EntityAccuracy(
            symbol=symbol,
            accuracy=_ratio(correct, len(outcomes)),
            correct=correct,
            total=len(outcomes),
            outcomes=tuple(outcomes),
        )
    return results


def rank_entities(results: Mapping[str, EntityAccuracy]) -> list[EntityAccuracy]:
    """Order symbols from most to least accurate (ties keep symbol order)."""

    return sorted(results.values(), key=lambda result: -result.accuracy)


__all__ = [
    "DEFAULT_THRESHOLD_COUNT",
    "EntityAccuracy",
    "PredictionOutcome",
    "RocPoint",
    "ThresholdMetrics",
    "compute_auc",
    "compute_roc",
    "metrics_at_threshold",
    "per_entity_accuracy",
    "rank_entities",
]
