"""Feature and label encoding for the passenger survival dataset."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd

from .config import BOARDING_PORTS, PASSENGER_CLASSES, TabularConfig
from .exceptions import MalformedInputError, MissingPrerequisiteError
from .ingest import Row, is_missing

LOGGER = logging.getLogger(__name__)

BASE_FEATURE_NAMES: tuple[str, ...] = (
    "Pclass_1",
    "Pclass_2",
    "Pclass_3",
    "Sex_male",
    "Age_std",
    "SibSp",
    "Parch",
    "Fare_std",
    "Embarked_C",
    "Embarked_Q",
    "Embarked_S",
)
FAMILY_FEATURE_NAMES: tuple[str, ...] = ("FamilySize", "IsAlone")


def feature_names(family_features: bool = False) -> list[str]:
    """Return the column order produced by :func:`build_tabular_features`."""

    names = list(BASE_FEATURE_NAMES)
    if family_features:
        names.extend(FAMILY_FEATURE_NAMES)
    return names


@dataclass(frozen=True)
class ImputationStats:
    """Training-set statistics threaded into every later encoding call."""

    age_median: float
    fare_median: float
    embarked_mode: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "age_median": self.age_median,
            "fare_median": self.fare_median,
            "embarked_mode": self.embarked_mode,
        }


@dataclass(frozen=True)
class TabularDataset:
    """Encoded feature matrix with labels and identifiers kept index-aligned."""

    features: np.ndarray
    labels: np.ndarray
    passenger_ids: tuple[str, ...]
    feature_names: tuple[str, ...]
    stats: ImputationStats
    training: bool
    skipped: int = 0

    def __len__(self) -> int:
        return int(self.features.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return int(self.features.shape[0]), int(self.features.shape[1])

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(
            self.features,
            columns=list(self.feature_names),
            index=pd.Index(self.passenger_ids, name="PassengerId"),
        )
        if self.training and self.labels.size:
            frame["Survived"] = self.labels
        return frame


def _parse_float(value: Any) -> float | None:
    if is_missing(value):
        return None
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return None
    if not np.isfinite(parsed):
        return None
    return parsed


def _parse_int(value: Any) -> int | None:
    parsed = _parse_float(value)
    if parsed is None:
        return None
    return int(parsed)


def _median(values: Sequence[float], default: float) -> float:
    # Interpolated median: the mean of the two middle values for even counts.
    if not values:
        return float(default)
    return float(np.median(np.asarray(values, dtype=float)))


def _mode(values: Iterable[str], default: str) -> str:
    counts = Counter(value for value in values)
    if not counts:
        return default
    # most_common keeps first-seen order among equal counts.
    return counts.most_common(1)[0][0]


def fit_imputation_stats(rows: Sequence[Row], config: TabularConfig | None = None) -> ImputationStats:
    """Compute age/fare medians and the boarding-port mode from training rows."""

    config = config or TabularConfig()
    ages = [value for value in (_parse_float(row.get("age")) for row in rows) if value is not None]
    fares = [value for value in (_parse_float(row.get("fare")) for row in rows) if value is not None]
    ports = [
        str(row.get("embarked")).strip().upper()
        for row in rows
        if not is_missing(row.get("embarked"))
    ]

    stats = ImputationStats(
        age_median=_median(ages, config.default_age),
        fare_median=_median(fares, config.default_fare),
        embarked_mode=_mode(ports, config.default_port),
    )
    LOGGER.debug("Fitted imputation statistics: %s", stats.as_dict())
    return stats


def impute_numeric(raw: Any, median: float) -> float:
    """Return the parsed value, or *median* when it is missing or unparsable."""

    parsed = _parse_float(raw)
    return float(median) if parsed is None else parsed


def standardize(value: float, median: float, scale: float) -> float:
    return (float(value) - float(median)) / float(scale)


def _passenger_class(raw: Any, default: int) -> int:
    parsed = _parse_int(raw)
    if parsed is None or parsed not in PASSENGER_CLASSES:
        return default
    return parsed


def _boarding_port(raw: Any, mode: str, default: str) -> str:
    port = mode if is_missing(raw) else str(raw).strip().upper()
    if port not in BOARDING_PORTS:
        port = mode if mode in BOARDING_PORTS else default
    return port


def _count(raw: Any) -> int:
    parsed = _parse_int(raw)
    return 0 if parsed is None else parsed


def _label(row: Row, index: int) -> int:
    raw = row.get("survived")
    parsed = _parse_float(raw)
    if parsed is None or parsed not in (0.0, 1.0):
        raise MalformedInputError(
            f"Training row {index} has no valid survival label: {raw!r}",
            context={"row": index, "passenger_id": row.get("passenger_id")},
        )
    return int(parsed)


def encode_row(row: Row, stats: ImputationStats, config: TabularConfig) -> list[float]:
    """Encode one passenger record in :func:`feature_names` order."""

    pclass = _passenger_class(row.get("pclass"), config.default_class)
    vector: list[float] = [1.0 if pclass == klass else 0.0 for klass in PASSENGER_CLASSES]

    sex = row.get("sex")
    vector.append(1.0 if not is_missing(sex) and str(sex).strip().lower() == "male" else 0.0)

    age = impute_numeric(row.get("age"), stats.age_median)
    vector.append(standardize(age, stats.age_median, config.age_scale))

    sibsp = _count(row.get("sibsp"))
    parch = _count(row.get("parch"))
    vector.extend([float(sibsp), float(parch)])

    fare = impute_numeric(row.get("fare"), stats.fare_median)
    vector.append(standardize(fare, stats.fare_median, config.fare_scale))

    port = _boarding_port(row.get("embarked"), stats.embarked_mode, config.default_port)
    vector.extend(1.0 if port == candidate else 0.0 for candidate in BOARDING_PORTS)

    if config.family_features:
        family_size = sibsp + parch + 1
        vector.extend([float(family_size), 1.0 if family_size == 1 else 0.0])
    return vector


def build_tabular_features(
    rows: Sequence[Row],
    *,
    training: bool,
    config: TabularConfig | None = None,
    stats: ImputationStats | None = None,
) -> TabularDataset:
    """Encode *rows* into a feature matrix, labels and passenger identifiers.

    Training mode fits :class:`ImputationStats` unless they are supplied.
    Inference mode never recomputes them: the training statistics must be
    passed in so both encodings stay identical.
    """

    config = config or TabularConfig()
    if stats is None:
        if not training:
            raise MissingPrerequisiteError(
                "Inference encoding requires the imputation statistics fitted on the training set."
            )
        stats = fit_imputation_stats(rows, config)

    names = feature_names(config.family_features)
    vectors: list[list[float]] = []
    labels: list[int] = []
    passenger_ids: list[str] = []
    skipped = 0

    for index, row in enumerate(rows):
        passenger_id = row.get("passenger_id")
        if is_missing(passenger_id):
            skipped += 1
            LOGGER.warning("Skipping row %d without a passenger id", index)
            continue
        if training:
            labels.append(_label(row, index))
        vectors.append(encode_row(row, stats, config))
        passenger_ids.append(str(passenger_id).strip())

    features = np.asarray(vectors, dtype=np.float32).reshape(len(vectors), len(names))
    dataset = TabularDataset(
        features=features,
        labels=np.asarray(labels, dtype=np.int64),
        passenger_ids=tuple(passenger_ids),
        feature_names=tuple(names),
        stats=stats,
        training=training,
        skipped=skipped,
    )
    LOGGER.info(
        "Encoded %d %s rows into %d features (%d skipped)",
        len(dataset),
        "training" if training else "inference",
        len(names),
        skipped,
    )
    return dataset


__all__ = [
    "BASE_FEATURE_NAMES",
    "FAMILY_FEATURE_NAMES",
    "ImputationStats",
    "TabularDataset",
    "build_tabular_features",
    "encode_row",
    "feature_names",
    "fit_imputation_stats",
    "impute_numeric",
    "standardize",
]
