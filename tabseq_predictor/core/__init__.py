"""Core components shared by the tabular and sequence pipelines."""

from tabseq_predictor.core.config import (
    ColumnAliases,
    PipelineConfig,
    SequenceConfig,
    TabularConfig,
    TrainingConfig,
    build_config,
    load_config_from_file,
    load_config_from_mapping,
    load_environment,
)
from tabseq_predictor.core.evaluation import (
    EntityAccuracy,
    RocPoint,
    ThresholdMetrics,
    compute_auc,
    compute_roc,
    metrics_at_threshold,
    per_entity_accuracy,
    rank_entities,
)
from tabseq_predictor.core.exceptions import (
    InsufficientSamplesError,
    MalformedInputError,
    MissingPrerequisiteError,
    PipelineError,
    TrainingFailureError,
)
from tabseq_predictor.core.ingest import ABSENT, CsvTable, parse_csv, read_csv_file, tokenize_line
from tabseq_predictor.core.models import EpochProgress, ModelFactory, TrainableModel, TrainingHistory
from tabseq_predictor.core.pipeline import (
    SequenceContext,
    SequencePipeline,
    TabularContext,
    TabularPipeline,
)
from tabseq_predictor.core.tabular import TabularDataset, build_tabular_features
from tabseq_predictor.core.time_series import (
    PriceHistory,
    SequenceDataset,
    build_sequences,
    load_price_history,
)

__all__ = [
    "ABSENT",
    "ColumnAliases",
    "CsvTable",
    "EntityAccuracy",
    "EpochProgress",
    "InsufficientSamplesError",
    "MalformedInputError",
    "MissingPrerequisiteError",
    "ModelFactory",
    "PipelineConfig",
    "PipelineError",
    "PriceHistory",
    "RocPoint",
    "SequenceConfig",
    "SequenceContext",
    "SequenceDataset",
    "SequencePipeline",
    "TabularConfig",
    "TabularContext",
    "TabularDataset",
    "TabularPipeline",
    "ThresholdMetrics",
    "TrainableModel",
    "TrainingConfig",
    "TrainingFailureError",
    "TrainingHistory",
    "build_config",
    "build_sequences",
    "build_tabular_features",
    "compute_auc",
    "compute_roc",
    "load_config_from_file",
    "load_config_from_mapping",
    "load_environment",
    "load_price_history",
    "metrics_at_threshold",
    "parse_csv",
    "per_entity_accuracy",
    "rank_entities",
    "read_csv_file",
    "tokenize_line",
]
