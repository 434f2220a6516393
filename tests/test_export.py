"""Tests for the submission and probability CSV artefacts."""

from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tabseq_predictor.core.export import (
    format_probabilities_csv,
    format_submission_csv,
    write_prediction_files,
)


def test_submission_csv_has_binary_labels():
    assert format_submission_csv(["892", "893"], [1, 0]) == "PassengerId,Survived\n892,1\n893,0\n"


def test_probabilities_csv_uses_four_decimals():
    text = format_probabilities_csv(["892", "893"], [0.123456, 0.5])
    assert text == "PassengerId,Probability\n892,0.1235\n893,0.5000\n"


def test_length_mismatch_is_rejected():
    with pytest.raises(ValueError):
        format_submission_csv(["892"], [1, 0])


def test_write_prediction_files(tmp_path):
    paths = write_prediction_files(tmp_path / "out", ["1", "2", "3"], [0, 1, 1], [0.1, 0.7, 0.95])

    assert paths["submission"].name == "submission.csv"
    assert paths["probabilities"].name == "probabilities.csv"
    submission = paths["submission"].read_text(encoding="utf-8").splitlines()
    probabilities = paths["probabilities"].read_text(encoding="utf-8").splitlines()
    assert submission == ["PassengerId,Survived", "1,0", "2,1", "3,1"]
    assert probabilities[1:] == ["1,0.1000", "2,0.7000", "3,0.9500"]
