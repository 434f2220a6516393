"""Structured error taxonomy shared by the ingest, feature and model stages."""

from __future__ import annotations

from typing import Any, Mapping


class PipelineError(Exception):
    """Base class for failures surfaced to callers as ``kind`` + ``message``."""

    kind = "pipeline_error"

    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        self.message = message
        self.context = dict(context or {})
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            payload["context"] = dict(self.context)
        return payload


class MalformedInputError(PipelineError, ValueError):
    """Raised when a line or a required value cannot be parsed."""

    kind = "malformed_input"


class MissingPrerequisiteError(PipelineError, RuntimeError):
    """Raised when an operation runs before the output it depends on exists."""

    kind = "missing_prerequisite"


class InsufficientSamplesError(PipelineError, ValueError):
    """Raised when no usable samples survive parsing or windowing."""

    kind = "data_insufficiency"

    def __init__(
        self,
        message: str | None = None,
        *,
        sample_counts: Mapping[str, int] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.sample_counts = (
            {str(name): int(count) for name, count in sample_counts.items()}
            if sample_counts
            else None
        )
        details: list[str] = [message or "Insufficient samples for the requested operation."]
        if self.sample_counts:
            details.append(f"Sample counts: {self.sample_counts}")
        merged = dict(context or {})
        if self.sample_counts:
            merged.setdefault("sample_counts", self.sample_counts)
        super().__init__(" ".join(details), context=merged)


class TrainingFailureError(PipelineError, RuntimeError):
    """Raised when the numeric library fails while fitting or predicting."""

    kind = "training_failure"


__all__ = [
    "InsufficientSamplesError",
    "MalformedInputError",
    "MissingPrerequisiteError",
    "PipelineError",
    "TrainingFailureError",
]
