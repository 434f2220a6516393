"""Top-level application orchestration for the tabular and sequence pipelines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tabseq_predictor.core import (
    PipelineConfig,
    SequencePipeline,
    TabularPipeline,
    build_config,
    load_environment,
)
from tabseq_predictor.core.models import ProgressCallback

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


@dataclass(slots=True)
class RunResult:
    """Wrapper used by the application to provide consistent responses."""

    status: str
    payload: dict[str, Any]


class PredictorApplication:
    """Run either pipeline end to end and return plain summaries."""

    def __init__(self, config: PipelineConfig | None = None) -> None:
        self.config = config or PipelineConfig()
        self.tabular = TabularPipeline(self.config)
        self.sequence = SequencePipeline(self.config)

    @classmethod
    def from_environment(cls, **overrides: Any) -> "PredictorApplication":
        """Create an application instance using environment variables and overrides."""

        load_environment()
        config = build_config(**overrides)
        LOGGER.debug("Initialised configuration writing to %s", config.output_dir)
        return cls(config)

    def run_tabular(
        self,
        train_path: str | Path,
        test_path: str | Path,
        output_dir: str | Path | None = None,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Train the survival classifier, score the inference file and write both CSVs."""

        pipeline = self.tabular
        LOGGER.info("Running tabular pipeline on %s", train_path)
        context = pipeline.load_files(train_path, test_path)
        try:
            summary = pipeline.summarize(context)
            context = pipeline.preprocess(context)
            context = pipeline.train(context, progress_callback=progress_callback)
            context = pipeline.evaluate(context)
            context = pipeline.predict(context)
            paths = pipeline.export(context, output_dir)
            payload = pipeline.report(context)
        finally:
            pipeline.release(context)

        payload["summary"] = summary
        payload["files"] = {name: str(path) for name, path in paths.items()}
        return payload

    def run_sequence(
        self,
        csv_path: str | Path,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Window the price file, train the recurrent model and score each symbol."""

        pipeline = self.sequence
        LOGGER.info("Running sequence pipeline on %s", csv_path)
        context = pipeline.load_file(csv_path)
        try:
            context = pipeline.prepare(context)
            context = pipeline.train(context, progress_callback=progress_callback)
            context = pipeline.evaluate(context)
            return pipeline.report(context)
        finally:
            pipeline.release(context)

    def run(self, mode: str, **kwargs: Any) -> RunResult:
        """Dispatch execution based on the requested mode."""

        handlers = {
            "tabular": lambda: self.run_tabular(
                kwargs["train_path"],
                kwargs["test_path"],
                kwargs.get("output_dir"),
                progress_callback=kwargs.get("progress_callback"),
            ),
            "sequence": lambda: self.run_sequence(
                kwargs["csv_path"],
                progress_callback=kwargs.get("progress_callback"),
            ),
        }

        if mode not in handlers:
            raise ValueError(f"Unsupported application mode: {mode}")

        payload = handlers[mode]()
        return RunResult(status="ok", payload={mode: payload})


__all__ = ["LOG_FORMAT", "PredictorApplication", "RunResult", "configure_logging"]
