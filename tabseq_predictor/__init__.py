"""Tabular survival and multi-stock direction predictors on a shared core."""

from tabseq_predictor.app import PredictorApplication, RunResult, configure_logging
from tabseq_predictor.core import (
    PipelineConfig,
    SequencePipeline,
    TabularPipeline,
    build_config,
    load_environment,
)

__all__ = [
    "PipelineConfig",
    "PredictorApplication",
    "RunResult",
    "SequencePipeline",
    "TabularPipeline",
    "build_config",
    "configure_logging",
    "load_environment",
]
