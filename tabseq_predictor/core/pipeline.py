"""Stage orchestration for the tabular and sequence pipelines.

Each stage takes a frozen context and returns a new one; nothing is held in
long-lived mutable fields between calls.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import numpy as np

from .config import PipelineConfig, TrainingConfig, coerce_threshold
from .evaluation import (
    EntityAccuracy,
    RocPoint,
    ThresholdMetrics,
    compute_auc,
    compute_roc,
    metrics_at_threshold,
    per_entity_accuracy,
    rank_entities,
)
from .exceptions import InsufficientSamplesError, MissingPrerequisiteError
from .export import format_probabilities_csv, format_submission_csv, write_prediction_files
from .ingest import CsvTable, parse_csv, read_csv_file
from .models import ModelFactory, ProgressCallback, TrainableModel, TrainingHistory
from .summaries import group_rate, missing_value_report
from .tabular import TabularDataset, build_tabular_features
from .time_series import (
    PriceHistory,
    SequenceDataset,
    build_sequences,
    chronological_split,
    load_price_history,
)

LOGGER = logging.getLogger(__name__)


def _require(value: Any, message: str) -> Any:
    if value is None:
        raise MissingPrerequisiteError(message)
    return value


def _factory(training: TrainingConfig) -> ModelFactory:
    return ModelFactory(training.architecture, training.model_params)


def _dispose(model: TrainableModel | None) -> None:
    if model is not None:
        model.dispose()


# ----------------------------------------------------------------------
# Tabular pipeline
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class TabularEvaluation:
    roc_points: tuple[RocPoint, ...]
    auc: float
    metrics: ThresholdMetrics
    probabilities: np.ndarray

    def to_dict(self) -> dict[str, Any]:
        return {
            "auc": self.auc,
            "metrics": self.metrics.as_dict(),
            "roc": [point.as_dict() for point in self.roc_points],
        }


@dataclass(frozen=True)
class TabularPredictions:
    passenger_ids: tuple[str, ...]
    probabilities: np.ndarray
    labels: np.ndarray
    threshold: float

    @property
    def positives(self) -> int:
        return int(self.labels.sum())

    def submission_csv(self) -> str:
        return format_submission_csv(self.passenger_ids, self.labels)

    def probabilities_csv(self) -> str:
        return format_probabilities_csv(self.passenger_ids, self.probabilities)


@dataclass(frozen=True)
class TabularContext:
    train_table: CsvTable | None = None
    test_table: CsvTable | None = None
    train_data: TabularDataset | None = None
    test_data: TabularDataset | None = None
    model: TrainableModel | None = None
    history: TrainingHistory | None = None
    validation_features: np.ndarray | None = None
    validation_labels: np.ndarray | None = None
    evaluation: TabularEvaluation | None = None
    predictions: TabularPredictions | None = None


class TabularPipeline:
    """Load -> preprocess -> train -> evaluate -> predict for passenger records."""

    def __init__(self, config: PipelineConfig | None = None) -> None:
        self.config = config or PipelineConfig()

    @property
    def training(self) -> TrainingConfig:
        return self.config.tabular_training

    def _parse(self, text: str) -> CsvTable:
        return parse_csv(text, aliases=self.config.tabular.aliases, pad_missing=True)

    def load(self, train_text: str, test_text: str | None = None) -> TabularContext:
        train_table = self._parse(train_text)
        test_table = self._parse(test_text) if test_text is not None else None
        LOGGER.info(
            "Loaded %d training rows and %d inference rows",
            len(train_table),
            0 if test_table is None else len(test_table),
        )
        return TabularContext(train_table=train_table, test_table=test_table)

    def load_files(self, train_path: str | Path, test_path: str | Path | None = None) -> TabularContext:
        options = {"aliases": self.config.tabular.aliases, "pad_missing": True}
        train_table = read_csv_file(train_path, **options)
        test_table = read_csv_file(test_path, **options) if test_path is not None else None
        return TabularContext(train_table=train_table, test_table=test_table)

    def summarize(self, context: TabularContext) -> dict[str, Any]:
        train_table = _require(context.train_table, "Load training data before summarising it.")
        summary: dict[str, Any] = {
            "train_shape": (len(train_table), len(train_table.columns)),
            "train_missing_pct": missing_value_report(train_table),
            "train_skipped": train_table.skipped,
        }
        if "survived" in train_table.columns:
            for column in ("sex", "pclass"):
                if column in train_table.columns:
                    summary[f"survival_rate_by_{column}"] = group_rate(train_table, column, "survived")
        if context.test_table is not None:
            summary["test_shape"] = (len(context.test_table), len(context.test_table.columns))
            summary["test_missing_pct"] = missing_value_report(context.test_table)
            summary["test_skipped"] = context.test_table.skipped
        return summary

    def preprocess(self, context: TabularContext) -> TabularContext:
        train_table = _require(context.train_table, "Load training data before preprocessing.")
        settings = self.config.tabular
        train_data = build_tabular_features(train_table.rows, training=True, config=settings)
        test_data = None
        if context.test_table is not None:
            test_data = build_tabular_features(
                context.test_table.rows, training=False, config=settings, stats=train_data.stats
            )
        return replace(context, train_data=train_data, test_data=test_data)

    def _split(self, data: TabularDataset) -> int:
        split = chronological_split(len(data), 1.0 - self.config.tabular.validation_fraction)
        if split == 0 or split == len(data):
            raise InsufficientSamplesError(
                "Too few training rows for a validation split.",
                sample_counts={"rows": len(data), "train": split},
            )
        return split

    def _create_model(self, data: TabularDataset) -> TrainableModel:
        training = self.training
        return _factory(training).create(
            (data.features.shape[1],),
            1,
            learning_rate=training.learning_rate,
            seed=training.seed,
        )

    def train(
        self, context: TabularContext, *, progress_callback: ProgressCallback | None = None
    ) -> TabularContext:
        """Fit a fresh model; any model already on *context* is disposed first."""

        data = _require(context.train_data, "Preprocess the data before training.")
        split = self._split(data)
        _dispose(context.model)
        model = self._create_model(data)
        try:
            history = model.fit(
                data.features[:split],
                data.labels[:split],
                data.features[split:],
                data.labels[split:],
                epochs=self.training.epochs,
                batch_size=self.training.batch_size,
                progress_callback=progress_callback,
            )
        except Exception:
            model.dispose()
            raise
        return replace(
            context,
            model=model,
            history=history,
            validation_features=data.features[split:],
            validation_labels=data.labels[split:],
            evaluation=None,
            predictions=None,
        )

    async def train_async(
        self, context: TabularContext, *, progress_callback: ProgressCallback | None = None
    ) -> TabularContext:
        """Like :meth:`train` but yields to the event loop after every epoch."""

        data = _require(context.train_data, "Preprocess the data before training.")
        split = self._split(data)
        _dispose(context.model)
        model = self._create_model(data)
        history = TrainingHistory()
        epochs = model.fit_async(
            data.features[:split],
            data.labels[:split],
            data.features[split:],
            data.labels[split:],
            epochs=self.training.epochs,
            batch_size=self.training.batch_size,
        )
        try:
            async with aclosing(epochs):
                async for progress in epochs:
                    history.epochs.append(progress)
                    if progress_callback is not None:
                        progress_callback(progress)
        except BaseException:
            # Cancellation lands here too; the half-trained model is dropped.
            model.dispose()
            raise
        history.cancelled = len(history.epochs) < self.training.epochs
        return replace(
            context,
            model=model,
            history=history,
            validation_features=data.features[split:],
            validation_labels=data.labels[split:],
            evaluation=None,
            predictions=None,
        )

    def evaluate(self, context: TabularContext, *, threshold: float | None = None) -> TabularContext:
        model = _require(context.model, "Train the model before evaluating it.")
        features = _require(context.validation_features, "No validation split is available.")
        labels = _require(context.validation_labels, "No validation split is available.")
        resolved = coerce_threshold(self.training.threshold if threshold is None else threshold)

        probabilities = model.predict(features)
        points = compute_roc(labels, probabilities)
        auc = compute_auc(points)
        evaluation = TabularEvaluation(
            roc_points=tuple(points),
            auc=auc,
            metrics=metrics_at_threshold(points, resolved),
            probabilities=probabilities,
        )
        LOGGER.info("Validation AUC %.4f, accuracy %.4f", auc, evaluation.metrics.accuracy)
        return replace(context, evaluation=evaluation)

    def update_threshold(self, context: TabularContext, threshold: float) -> ThresholdMetrics:
        evaluation = _require(context.evaluation, "Evaluate the model before adjusting the threshold.")
        return metrics_at_threshold(evaluation.roc_points, threshold)

    def predict(self, context: TabularContext, *, threshold: float | None = None) -> TabularContext:
        model = _require(context.model, "Train the model before predicting.")
        test_data = _require(context.test_data, "Load and preprocess inference data before predicting.")
        resolved = coerce_threshold(self.training.threshold if threshold is None else threshold)

        probabilities = model.predict(test_data.features)
        labels = (probabilities >= resolved).astype(np.int64)
        predictions = TabularPredictions(
            passenger_ids=test_data.passenger_ids,
            probabilities=probabilities,
            labels=labels,
            threshold=resolved,
        )
        LOGGER.info(
            "Predicted %d positives out of %d passengers", predictions.positives, len(labels)
        )
        return replace(context, predictions=predictions)

    def export(self, context: TabularContext, output_dir: str | Path | None = None) -> dict[str, Path]:
        predictions = _require(context.predictions, "Generate predictions before exporting them.")
        return write_prediction_files(
            output_dir or self.config.output_dir,
            predictions.passenger_ids,
            predictions.labels,
            predictions.probabilities,
        )

    def save_model(self, context: TabularContext, path: str | Path | None = None) -> Path:
        model = _require(context.model, "Train the model before saving it.")
        return model.save(path or self.config.tabular_model_path)

    def report(self, context: TabularContext) -> dict[str, Any]:
        """Plain-value summary of a context that has been through :meth:`predict`."""

        train_data = _require(context.train_data, "Preprocess the data before reporting.")
        history = _require(context.history, "Train the model before reporting.")
        evaluation = _require(context.evaluation, "Evaluate the model before reporting.")
        predictions = _require(context.predictions, "Generate predictions before reporting.")
        return {
            "feature_names": list(train_data.feature_names),
            "training": history.to_dict(),
            "evaluation": evaluation.to_dict(),
            "predictions": {
                "count": len(predictions.labels),
                "positives": predictions.positives,
                "threshold": predictions.threshold,
            },
        }

    def release(self, context: TabularContext) -> TabularContext:
        """Dispose the trained model and return a context without it."""

        _dispose(context.model)
        return replace(context, model=None)


# ----------------------------------------------------------------------
# Sequence pipeline
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SequenceEvaluation:
    per_symbol: Mapping[str, EntityAccuracy]
    ranking: tuple[EntityAccuracy, ...]
    roc_points: tuple[RocPoint, ...]
    auc: float
    predictions: np.ndarray
    test_dates: tuple[Any, ...] = field(default_factory=tuple)

    @property
    def mean_accuracy(self) -> float:
        if not self.per_symbol:
            return 0.0
        return float(np.mean([result.accuracy for result in self.per_symbol.values()]))

    def to_dict(self) -> dict[str, Any]:
        return {
            "auc": self.auc,
            "mean_accuracy": self.mean_accuracy,
            "ranking": [result.as_dict() for result in self.ranking],
        }


@dataclass(frozen=True)
class SequenceContext:
    table: CsvTable | None = None
    history: PriceHistory | None = None
    dataset: SequenceDataset | None = None
    model: TrainableModel | None = None
    training_history: TrainingHistory | None = None
    evaluation: SequenceEvaluation | None = None


class SequencePipeline:
    """Load -> window -> train -> per-symbol evaluation for multi-stock prices."""

    def __init__(self, config: PipelineConfig | None = None) -> None:
        self.config = config or PipelineConfig()

    @property
    def training(self) -> TrainingConfig:
        return self.config.sequence_training

    def load(self, text: str) -> SequenceContext:
        table = parse_csv(text, aliases=self.config.sequence.aliases)
        return SequenceContext(table=table)

    def load_file(self, path: str | Path) -> SequenceContext:
        table = read_csv_file(path, aliases=self.config.sequence.aliases)
        return SequenceContext(table=table)

    def prepare(self, context: SequenceContext) -> SequenceContext:
        table = _require(context.table, "Load price data before building sequences.")
        settings = self.config.sequence
        history = load_price_history(table)
        dataset = build_sequences(
            history,
            window=settings.window,
            horizon=settings.horizon,
            train_fraction=settings.train_fraction,
            max_samples=settings.max_samples,
        )
        return replace(context, history=history, dataset=dataset)

    def _create_model(self, dataset: SequenceDataset) -> TrainableModel:
        training = self.training
        return _factory(training).create(
            dataset.input_shape,
            dataset.output_size,
            learning_rate=training.learning_rate,
            seed=training.seed,
        )

    def train(
        self, context: SequenceContext, *, progress_callback: ProgressCallback | None = None
    ) -> SequenceContext:
        """Fit a fresh model; any model already on *context* is disposed first."""

        dataset = _require(context.dataset, "Build sequences before training.")
        _dispose(context.model)
        model = self._create_model(dataset)
        try:
            history = model.fit(
                dataset.X_train,
                dataset.y_train,
                dataset.X_test,
                dataset.y_test,
                epochs=self.training.epochs,
                batch_size=self.training.batch_size,
                progress_callback=progress_callback,
            )
        except Exception:
            model.dispose()
            raise
        return replace(context, model=model, training_history=history, evaluation=None)

    def evaluate(self, context: SequenceContext) -> SequenceContext:
        dataset = _require(context.dataset, "Build sequences before evaluating.")
        model = _require(context.model, "Train the model before evaluating it.")

        predictions = model.predict(dataset.X_test).reshape(len(dataset.X_test), dataset.output_size)
        per_symbol = per_entity_accuracy(
            predictions, dataset.y_test, dataset.symbols, dataset.horizon
        )
        points = compute_roc(dataset.y_test.reshape(-1), predictions.reshape(-1))
        evaluation = SequenceEvaluation(
            per_symbol=per_symbol,
            ranking=tuple(rank_entities(per_symbol)),
            roc_points=tuple(points),
            auc=compute_auc(points),
            predictions=predictions,
            test_dates=dataset.test_dates,
        )
        LOGGER.info(
            "Mean per-symbol accuracy %.4f across %d symbols (AUC %.4f)",
            evaluation.mean_accuracy,
            len(per_symbol),
            evaluation.auc,
        )
        return replace(context, evaluation=evaluation)

    def save_model(self, context: SequenceContext, path: str | Path | None = None) -> Path:
        model = _require(context.model, "Train the model before saving it.")
        return model.save(path or self.config.sequence_model_path)

    def report(self, context: SequenceContext) -> dict[str, Any]:
        dataset = _require(context.dataset, "Build sequences before reporting.")
        history = _require(context.training_history, "Train the model before reporting.")
        evaluation = _require(context.evaluation, "Evaluate the model before reporting.")
        return {
            "symbols": list(dataset.symbols),
            "window": dataset.window,
            "horizon": dataset.horizon,
            "train_samples": len(dataset.X_train),
            "test_samples": len(dataset.X_test),
            "dropped_samples": dataset.dropped,
            "training": history.to_dict(),
            "evaluation": evaluation.to_dict(),
        }

    def release(self, context: SequenceContext) -> SequenceContext:
        """Dispose the trained model and return a context without it."""

        _dispose(context.model)
        return replace(context, model=None)


__all__ = [
    "SequenceContext",
    "SequenceEvaluation",
    "SequencePipeline",
    "TabularContext",
    "TabularEvaluation",
    "TabularPipeline",
    "TabularPredictions",
]
