"""Configuration utilities for the tabular and sequence pipelines."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "outputs"

DEFAULT_THRESHOLD = 0.5
DEFAULT_BATCH_SIZE = 32
DEFAULT_LEARNING_RATE = 1e-3

DEFAULT_TABULAR_EPOCHS = 50
DEFAULT_AGE_SCALE = 20.0
DEFAULT_FARE_SCALE = 30.0
DEFAULT_AGE_MEDIAN = 28.0
DEFAULT_FARE_MEDIAN = 14.45
DEFAULT_PORT = "S"
DEFAULT_PASSENGER_CLASS = 3
DEFAULT_VALIDATION_FRACTION = 0.2

DEFAULT_SEQUENCE_EPOCHS = 30
DEFAULT_WINDOW = 12
DEFAULT_HORIZON = 3
DEFAULT_TRAIN_FRACTION = 0.8

PASSENGER_CLASSES: tuple[int, ...] = (1, 2, 3)
BOARDING_PORTS: tuple[str, ...] = ("C", "Q", "S")

TABULAR_ALIASES: dict[str, tuple[str, ...]] = {
    "passenger_id": ("PassengerId", "passenger_id", "id"),
    "pclass": ("Pclass", "passenger_class", "class"),
    "sex": ("Sex", "gender"),
    "age": ("Age",),
    "sibsp": ("SibSp", "siblings_spouses"),
    "parch": ("Parch", "parents_children"),
    "fare": ("Fare",),
    "embarked": ("Embarked", "port"),
    "survived": ("Survived", "label", "target"),
}

PRICE_ALIASES: dict[str, tuple[str, ...]] = {
    "symbol": ("Symbol", "Ticker", "Name"),
    "date": ("Date", "Timestamp", "Datetime"),
    "open": ("Open",),
    "close": ("Close", "Adj Close"),
    "high": ("High",),
    "low": ("Low",),
    "volume": ("Volume",),
}


def _coerce_bool(value: Optional[object], *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "y", "on"}:
            return True
        if normalized in {"false", "0", "no", "n", "off"}:
            return False
    return bool(value)


def _coerce_positive_int(name: str, value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be at least 1.")
    return parsed


def _coerce_fraction(name: str, value: Any) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number.") from exc
    if not 0.0 < parsed < 1.0:
        raise ValueError(f"{name} must be between 0 and 1 (exclusive).")
    return parsed


def coerce_threshold(value: Any) -> float:
    """Validate a decision threshold in ``[0, 1]``."""

    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("threshold must be a number.") from exc
    if not 0.0 <= parsed <= 1.0:
        raise ValueError("threshold must be between 0 and 1.")
    return parsed


@dataclass(frozen=True)
class ColumnAliases:
    """Canonical column name -> accepted header spellings."""

    aliases: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def tabular(cls) -> "ColumnAliases":
        return cls(dict(TABULAR_ALIASES))

    @classmethod
    def prices(cls) -> "ColumnAliases":
        return cls(dict(PRICE_ALIASES))

    def lookup(self) -> dict[str, str]:
        """Return a case-insensitive header -> canonical name table."""

        table: dict[str, str] = {}
        for canonical, spellings in self.aliases.items():
            table.setdefault(canonical.strip().lower(), canonical)
            for spelling in spellings:
                table.setdefault(str(spelling).strip().lower(), canonical)
        return table

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> "ColumnAliases":
        if not overrides:
            return self
        merged = {name: tuple(values) for name, values in self.aliases.items()}
        for canonical, spellings in overrides.items():
            if isinstance(spellings, str):
                spellings = [part.strip() for part in spellings.split(",")]
            extra = tuple(str(item) for item in spellings if str(item).strip())
            merged[canonical] = extra + tuple(
                name for name in merged.get(canonical, ()) if name not in extra
            )
        return ColumnAliases(merged)


@dataclass(frozen=True)
class TabularConfig:
    """Encoding parameters for the passenger survival features."""

    family_features: bool = False
    age_scale: float = DEFAULT_AGE_SCALE
    fare_scale: float = DEFAULT_FARE_SCALE
    default_age: float = DEFAULT_AGE_MEDIAN
    default_fare: float = DEFAULT_FARE_MEDIAN
    default_port: str = DEFAULT_PORT
    default_class: int = DEFAULT_PASSENGER_CLASS
    validation_fraction: float = DEFAULT_VALIDATION_FRACTION
    aliases: ColumnAliases = field(default_factory=ColumnAliases.tabular)

    def __post_init__(self) -> None:
        if self.age_scale == 0 or self.fare_scale == 0:
            raise ValueError("Standardisation scales must be non-zero.")
        if self.default_port not in BOARDING_PORTS:
            raise ValueError(f"default_port must be one of {BOARDING_PORTS}.")
        if self.default_class not in PASSENGER_CLASSES:
            raise ValueError(f"default_class must be one of {PASSENGER_CLASSES}.")
        _coerce_fraction("validation_fraction", self.validation_fraction)


@dataclass(frozen=True)
class SequenceConfig:
    """Windowing parameters for the multi-symbol direction dataset."""

    window: int = DEFAULT_WINDOW
    horizon: int = DEFAULT_HORIZON
    train_fraction: float = DEFAULT_TRAIN_FRACTION
    max_samples: Optional[int] = None
    aliases: ColumnAliases = field(default_factory=ColumnAliases.prices)

    def __post_init__(self) -> None:
        _coerce_positive_int("window", self.window)
        _coerce_positive_int("horizon", self.horizon)
        _coerce_fraction("train_fraction", self.train_fraction)
        if self.max_samples is not None:
            _coerce_positive_int("max_samples", self.max_samples)


@dataclass(frozen=True)
class TrainingConfig:
    """Model architecture and optimisation settings."""

    architecture: str = "dense"
    epochs: int = DEFAULT_TABULAR_EPOCHS
    batch_size: int = DEFAULT_BATCH_SIZE
    learning_rate: float = DEFAULT_LEARNING_RATE
    threshold: float = DEFAULT_THRESHOLD
    seed: Optional[int] = None
    model_params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _coerce_positive_int("epochs", self.epochs)
        _coerce_positive_int("batch_size", self.batch_size)
        coerce_threshold(self.threshold)
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive.")


@dataclass(frozen=True)
class PipelineConfig:
    """Runtime configuration for both pipelines."""

    tabular: TabularConfig = field(default_factory=TabularConfig)
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    tabular_training: TrainingConfig = field(default_factory=TrainingConfig)
    sequence_training: TrainingConfig = field(
        default_factory=lambda: TrainingConfig(architecture="gru", epochs=DEFAULT_SEQUENCE_EPOCHS)
    )
    output_dir: Path = DEFAULT_OUTPUT_DIR

    def ensure_directories(self) -> None:
        Path(self.output_dir).mkdir(parents=True, exist_ok=True)

    @property
    def submission_path(self) -> Path:
        return Path(self.output_dir) / "submission.csv"

    @property
    def probabilities_path(self) -> Path:
        return Path(self.output_dir) / "probabilities.csv"

    @property
    def tabular_model_path(self) -> Path:
        return Path(self.output_dir) / "tabular_model.pt"

    @property
    def sequence_model_path(self) -> Path:
        return Path(self.output_dir) / "sequence_model.pt"


def load_environment() -> None:
    """Load configuration from an optional ``.env`` file."""

    load_dotenv()


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def build_config(
    *,
    window: Optional[int] = None,
    horizon: Optional[int] = None,
    family_features: Optional[bool] = None,
    threshold: Optional[float] = None,
    epochs: Optional[int] = None,
    sequence_epochs: Optional[int] = None,
    batch_size: Optional[int] = None,
    architecture: Optional[str] = None,
    sequence_architecture: Optional[str] = None,
    train_fraction: Optional[float] = None,
    max_samples: Optional[int] = None,
    seed: Optional[int] = None,
    output_dir: Optional[str | Path] = None,
) -> PipelineConfig:
    """Build a :class:`PipelineConfig` from explicit values and ``TABSEQ_*`` variables."""

    load_environment()

    window_value = window if window is not None else _env("TABSEQ_WINDOW")
    horizon_value = horizon if horizon is not None else _env("TABSEQ_HORIZON")
    threshold_value = threshold if threshold is not None else _env("TABSEQ_THRESHOLD")
    epochs_value = epochs if epochs is not None else _env("TABSEQ_EPOCHS")
    sequence_epochs_value = (
        sequence_epochs if sequence_epochs is not None else _env("TABSEQ_SEQUENCE_EPOCHS")
    )
    batch_value = batch_size if batch_size is not None else _env("TABSEQ_BATCH_SIZE")
    output_value = output_dir or _env("TABSEQ_OUTPUT_DIR")
    seed_value = seed if seed is not None else _env("TABSEQ_SEED")

    tabular = TabularConfig(
        family_features=_coerce_bool(
            family_features if family_features is not None else _env("TABSEQ_FAMILY_FEATURES"),
            default=False,
        )
    )
    sequence = SequenceConfig(
        window=_coerce_positive_int("window", window_value) if window_value is not None else DEFAULT_WINDOW,
        horizon=(
            _coerce_positive_int("horizon", horizon_value) if horizon_value is not None else DEFAULT_HORIZON
        ),
        train_fraction=(
            _coerce_fraction("train_fraction", train_fraction)
            if train_fraction is not None
            else DEFAULT_TRAIN_FRACTION
        ),
        max_samples=max_samples,
    )
    resolved_threshold = (
        coerce_threshold(threshold_value) if threshold_value is not None else DEFAULT_THRESHOLD
    )
    resolved_batch = (
        _coerce_positive_int("batch_size", batch_value) if batch_value is not None else DEFAULT_BATCH_SIZE
    )
    resolved_seed = int(seed_value) if seed_value is not None else None

    tabular_training = TrainingConfig(
        architecture=(architecture or "dense").lower(),
        epochs=(
            _coerce_positive_int("epochs", epochs_value)
            if epochs_value is not None
            else DEFAULT_TABULAR_EPOCHS
        ),
        batch_size=resolved_batch,
        threshold=resolved_threshold,
        seed=resolved_seed,
    )
    sequence_training = TrainingConfig(
        architecture=(sequence_architecture or "gru").lower(),
        epochs=(
            _coerce_positive_int("sequence_epochs", sequence_epochs_value)
            if sequence_epochs_value is not None
            else DEFAULT_SEQUENCE_EPOCHS
        ),
        batch_size=resolved_batch,
        threshold=resolved_threshold,
        seed=resolved_seed,
    )

    return PipelineConfig(
        tabular=tabular,
        sequence=sequence,
        tabular_training=tabular_training,
        sequence_training=sequence_training,
        output_dir=Path(output_value).expanduser() if output_value else DEFAULT_OUTPUT_DIR,
    )


def _section(cls: type, payload: Any, **extra: Any) -> Any:
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise TypeError(f"{cls.__name__} section must be a mapping.")
    known = {item.name for item in fields(cls)}
    data = {key: value for key, value in payload.items() if key in known}
    data.update(extra)
    return cls(**data)


def load_config_from_mapping(payload: Mapping[str, Any]) -> PipelineConfig:
    """Create a :class:`PipelineConfig` from nested plain values."""

    tabular_payload = dict(payload.get("tabular") or {})
    tabular_aliases = ColumnAliases.tabular().with_overrides(tabular_payload.pop("aliases", None))
    if "family_features" in tabular_payload:
        tabular_payload["family_features"] = _coerce_bool(
            tabular_payload["family_features"], default=False
        )

    sequence_payload = dict(payload.get("sequence") or {})
    sequence_aliases = ColumnAliases.prices().with_overrides(sequence_payload.pop("aliases", None))

    defaults = PipelineConfig()
    tabular_training = _section(
        TrainingConfig,
        {**_training_defaults(defaults.tabular_training), **dict(payload.get("tabular_training") or {})},
    )
    sequence_training = _section(
        TrainingConfig,
        {**_training_defaults(defaults.sequence_training), **dict(payload.get("sequence_training") or {})},
    )

    output_dir = payload.get("output_dir")
    return PipelineConfig(
        tabular=_section(TabularConfig, tabular_payload, aliases=tabular_aliases),
        sequence=_section(SequenceConfig, sequence_payload, aliases=sequence_aliases),
        tabular_training=tabular_training,
        sequence_training=sequence_training,
        output_dir=Path(output_dir).expanduser() if output_dir else DEFAULT_OUTPUT_DIR,
    )


def _training_defaults(config: TrainingConfig) -> dict[str, Any]:
    return {item.name: getattr(config, item.name) for item in fields(config)}


def load_config_from_file(path: str | Path) -> PipelineConfig:
    """Load configuration from a JSON or YAML file."""

    resolved = Path(path).expanduser().resolve()
    with resolved.open("r", encoding="utf-8") as handle:
        if resolved.suffix.lower() in {".yaml", ".yml"}:
            payload = yaml.safe_load(handle) or {}
        else:
            payload = json.load(handle)

    if not isinstance(payload, Mapping):
        raise TypeError("Configuration file must define a mapping of values.")

    return load_config_from_mapping(payload)


__all__ = [
    "BOARDING_PORTS",
    "ColumnAliases",
    "DEFAULT_HORIZON",
    "DEFAULT_THRESHOLD",
    "DEFAULT_WINDOW",
    "PASSENGER_CLASSES",
    "PipelineConfig",
    "SequenceConfig",
    "TabularConfig",
    "TrainingConfig",
    "build_config",
    "coerce_threshold",
    "load_config_from_file",
    "load_config_from_mapping",
    "load_environment",
]
