"""CSV artefacts produced from tabular predictions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

LOGGER = logging.getLogger(__name__)

SUBMISSION_FILENAME = "submission.csv"
PROBABILITIES_FILENAME = "probabilities.csv"


def _check_lengths(ids: Sequence[str], values: Sequence[float] | np.ndarray) -> None:
    if len(ids) != len(values):
        raise ValueError(f"Got {len(ids)} ids but {len(values)} values.")


def submission_frame(passenger_ids: Sequence[str], labels: Sequence[int] | np.ndarray) -> pd.DataFrame:
    _check_lengths(passenger_ids, labels)
    return pd.DataFrame(
        {
            "PassengerId": list(passenger_ids),
            "Survived": np.asarray(labels, dtype=np.int64),
        }
    )


def probabilities_frame(
    passenger_ids: Sequence[str], probabilities: Sequence[float] | np.ndarray
) -> pd.DataFrame:
    _check_lengths(passenger_ids, probabilities)
    return pd.DataFrame(
        {
            "PassengerId": list(passenger_ids),
            "Probability": np.asarray(probabilities, dtype=float),
        }
    )


def format_submission_csv(passenger_ids: Sequence[str], labels: Sequence[int] | np.ndarray) -> str:
    """``PassengerId,Survived`` text with one binary label per passenger."""

    return submission_frame(passenger_ids, labels).to_csv(index=False, lineterminator="\n")


def format_probabilities_csv(
    passenger_ids: Sequence[str], probabilities: Sequence[float] | np.ndarray
) -> str:
    """``PassengerId,Probability`` text with four decimal places."""

    return probabilities_frame(passenger_ids, probabilities).to_csv(
        index=False, float_format="%.4f", lineterminator="\n"
    )


def write_prediction_files(
    output_dir: str | Path,
    passenger_ids: Sequence[str],
    labels: Sequence[int] | np.ndarray,
    probabilities: Sequence[float] | np.ndarray,
) -> dict[str, Path]:
    """Write ``submission.csv`` and ``probabilities.csv`` into *output_dir*."""

    directory = Path(output_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    submission_path = directory / SUBMISSION_FILENAME
    probabilities_path = directory / PROBABILITIES_FILENAME
    submission_path.write_text(format_submission_csv(passenger_ids, labels), encoding="utf-8")
    probabilities_path.write_text(
        format_probabilities_csv(passenger_ids, probabilities), encoding="utf-8"
    )
    LOGGER.info("Wrote %d predictions to %s", len(passenger_ids), directory)
    return {"submission": submission_path, "probabilities": probabilities_path}


__all__ = [
    "PROBABILITIES_FILENAME",
    "SUBMISSION_FILENAME",
    "format_probabilities_csv",
    "format_submission_csv",
    "probabilities_frame",
    "submission_frame",
    "write_prediction_files",
]
