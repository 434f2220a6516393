"""Tests for ROC sweeps, AUC, threshold metrics and per-symbol accuracy."""

from pathlib import Path
import sys

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tabseq_predictor.core.evaluation import (
    compute_auc,
    compute_roc,
    metrics_at_threshold,
    per_entity_accuracy,
    rank_entities,
)
from tabseq_predictor.core.time_series import label_slot

LABELS = [1, 1, 1, 1, 1, 0, 0, 0, 0, 0]
SEPARATED = [0.9, 0.8, 0.7, 0.6, 0.55, 0.4, 0.3, 0.2, 0.1, 0.05]


def test_roc_sweeps_101_ascending_thresholds():
    points = compute_roc(LABELS, SEPARATED)

    assert len(points) == 101
    assert points[0].threshold == 0.0
    assert points[50].threshold == pytest.approx(0.5)
    assert points[-1].threshold == 1.0
    assert all(a.threshold < b.threshold for a, b in zip(points, points[1:]))


def test_separated_scores_at_half_threshold():
    metrics = metrics_at_threshold(compute_roc(LABELS, SEPARATED), 0.5)

    assert (metrics.tp, metrics.fp, metrics.tn, metrics.fn) == (5, 0, 5, 0)
    assert metrics.accuracy == 1.0
    assert metrics.precision == 1.0
    assert metrics.recall == 1.0
    assert metrics.f1 == 1.0
    assert metrics.confusion_matrix() == [[5, 0], [0, 5]]


def test_extreme_thresholds_bound_recall():
    points = compute_roc(LABELS, SEPARATED)

    assert points[0].tpr == 1.0
    assert points[0].fpr == 1.0
    assert points[-1].tpr == 0.0
    assert points[-1].fpr == 0.0


def test_probability_equal_to_threshold_counts_as_positive():
    points = compute_roc([1, 0], [0.3, 0.2])
    at_point_three = points[30]

    assert at_point_three.tp == 1
    assert at_point_three.fp == 0


def test_perfect_classifier_has_unit_auc():
    assert compute_auc(compute_roc(LABELS, SEPARATED)) == pytest.approx(1.0)


def test_inverted_classifier_has_zero_auc():
    assert compute_auc(compute_roc(LABELS, SEPARATED[::-1])) == pytest.approx(0.0)


def test_auc_curve_starts_at_the_origin():
    # Tied top scores keep every threshold above (0, 0).
    points = compute_roc([1, 0, 0], [1.0, 1.0, 0.1])

    assert min(point.fpr for point in points) == pytest.approx(0.5)
    assert compute_auc(points) == pytest.approx(0.75)


def test_random_scores_have_auc_near_half():
    rng = np.random.default_rng(7)
    labels = rng.integers(0, 2, size=4000)
    scores = rng.random(4000)

    auc = compute_auc(compute_roc(labels, scores))

    assert 0.0 <= auc <= 1.0
    assert auc == pytest.approx(0.5, abs=0.05)


def test_single_class_labels_report_zero_rates():
    points = compute_roc([0, 0, 0], [0.1, 0.6, 0.9])

    assert all(point.tpr == 0.0 for point in points)
    metrics = metrics_at_threshold(points, 0.5)
    assert metrics.precision == 0.0
    assert metrics.f1 == 0.0


def test_invalid_inputs_raise():
    with pytest.raises(ValueError):
        compute_roc([1, 0], [0.5])
    with pytest.raises(ValueError):
        compute_roc([], [])
    with pytest.raises(ValueError):
        compute_roc([2, 0], [0.5, 0.5])
    with pytest.raises(ValueError):
        metrics_at_threshold(compute_roc(LABELS, SEPARATED), 1.5)


def test_per_entity_accuracy_reads_entity_major_slots():
    horizon = 2
    symbols = ("AAA", "BBB")
    truth = np.zeros((3, 4))
    predictions = np.full((3, 4), 0.2)
    for offset in range(horizon):
        truth[:, label_slot(0, offset, horizon)] = 1
        predictions[:, label_slot(0, offset, horizon)] = 0.9
    predictions[0, label_slot(1, 0, horizon)] = 0.7
    predictions[1, label_slot(1, 1, horizon)] = 0.8
    # Exactly 0.5 is not a predicted rise.
    predictions[2, label_slot(1, 1, horizon)] = 0.5

    results = per_entity_accuracy(predictions, truth, symbols, horizon)

    assert results["AAA"].accuracy == 1.0
    assert results["AAA"].total == 6
    assert results["BBB"].correct == 4
    assert results["BBB"].accuracy == pytest.approx(4 / 6)
    wrong = [outcome for outcome in results["BBB"].outcomes if not outcome.correct]
    assert [(outcome.sample, outcome.day_offset) for outcome in wrong] == [(0, 0), (1, 1)]
    assert [result.symbol for result in rank_entities(results)] == ["AAA", "BBB"]


def test_per_entity_accuracy_checks_slot_width():
    with pytest.raises(ValueError):
        per_entity_accuracy(np.zeros((2, 3)), np.zeros((2, 3)), ("AAA", "BBB"), 2)
