"""End-to-end tests for the staged tabular and sequence pipelines."""

import asyncio
import re
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

torch = pytest.importorskip("torch")

from tabseq_predictor.core.config import PipelineConfig, SequenceConfig, TrainingConfig
from tabseq_predictor.core.exceptions import InsufficientSamplesError, MissingPrerequisiteError
from tabseq_predictor.core.pipeline import (
    SequenceContext,
    SequencePipeline,
    TabularContext,
    TabularPipeline,
)


def _passenger_csv(start: int, count: int, *, labelled: bool) -> str:
    header = "PassengerId,Pclass,Sex,Age,SibSp,Parch,Fare,Embarked"
    if labelled:
        header = "PassengerId,Survived,Pclass,Sex,Age,SibSp,Parch,Fare,Embarked"
    lines = [header]
    for index in range(start, start + count):
        sex = "male" if index % 2 else "female"
        age = "" if index % 7 == 0 else str(20 + index % 30)
        port = "" if index % 11 == 0 else "CQS"[index % 3]
        fields = [str(index)]
        if labelled:
            fields.append("0" if index % 2 else "1")
        fields += [str(index % 3 + 1), sex, age, str(index % 3), str(index % 2), f"{10 + index}.5", port]
        lines.append(",".join(fields))
    return "\n".join(lines)


def _price_csv(days: int = 40) -> str:
    dates = pd.date_range("2024-01-01", periods=days, freq="D")
    rng = np.random.default_rng(3)
    lines = ["Symbol,Date,Open,Close,High,Low,Volume"]
    for symbol in ("CCC", "AAA", "BBB"):
        closes = 100 + np.cumsum(rng.normal(size=days))
        for day, close in zip(dates, closes):
            lines.append(f"{symbol},{day.date()},{close - 0.5:.2f},{close:.2f},{close + 1:.2f},{close - 1:.2f},1000")
    return "\n".join(lines)


def _config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(
        sequence=SequenceConfig(window=5, horizon=2, train_fraction=0.75),
        tabular_training=TrainingConfig(architecture="dense", epochs=2, batch_size=8, seed=0),
        sequence_training=TrainingConfig(
            architecture="gru", epochs=2, batch_size=8, seed=0, model_params={"hidden_units": (8,)}
        ),
        output_dir=tmp_path,
    )


def test_tabular_pipeline_end_to_end(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    epochs = []

    loaded = pipeline.load(_passenger_csv(1, 40, labelled=True), _passenger_csv(41, 10, labelled=False))
    prepared = pipeline.preprocess(loaded)
    trained = pipeline.train(prepared, progress_callback=epochs.append)
    evaluated = pipeline.evaluate(trained)
    predicted = pipeline.predict(evaluated)
    paths = pipeline.export(predicted)

    assert loaded.train_data is None
    assert prepared.train_data.shape == (40, 11)
    assert prepared.test_data.stats is prepared.train_data.stats
    assert len(epochs) == 2
    assert trained.validation_labels.shape == (8,)
    assert trained.validation_labels.tolist() == prepared.train_data.labels[32:].tolist()
    assert len(evaluated.evaluation.roc_points) == 101
    assert 0.0 <= evaluated.evaluation.auc <= 1.0
    assert predicted.predictions.passenger_ids == tuple(str(i) for i in range(41, 51))
    assert set(predicted.predictions.labels.tolist()) <= {0, 1}

    submission = paths["submission"].read_text(encoding="utf-8").splitlines()
    probabilities = paths["probabilities"].read_text(encoding="utf-8").splitlines()
    assert submission[0] == "PassengerId,Survived"
    assert len(submission) == 11
    assert probabilities[0] == "PassengerId,Probability"
    assert all(re.fullmatch(r"\d+,[01]\.\d{4}", line) for line in probabilities[1:])


def test_prediction_labels_follow_the_threshold(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    context = pipeline.train(
        pipeline.preprocess(
            pipeline.load(_passenger_csv(1, 30, labelled=True), _passenger_csv(31, 6, labelled=False))
        )
    )

    everyone = pipeline.predict(context, threshold=0.0).predictions
    nobody = pipeline.predict(context, threshold=1.0).predictions

    assert everyone.positives == 6
    assert nobody.positives == int((nobody.probabilities >= 1.0).sum())
    assert everyone.submission_csv().startswith("PassengerId,Survived\n")


def test_threshold_updates_reuse_the_roc_sweep(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    context = pipeline.evaluate(
        pipeline.train(pipeline.preprocess(pipeline.load(_passenger_csv(1, 30, labelled=True))))
    )

    lenient = pipeline.update_threshold(context, 0.0)

    assert lenient.recall == 1.0
    assert lenient.threshold == 0.0


def test_tabular_stages_require_their_predecessors(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    empty = TabularContext()

    with pytest.raises(MissingPrerequisiteError):
        pipeline.preprocess(empty)
    with pytest.raises(MissingPrerequisiteError):
        pipeline.train(empty)
    with pytest.raises(MissingPrerequisiteError):
        pipeline.evaluate(empty)
    with pytest.raises(MissingPrerequisiteError):
        pipeline.predict(empty)
    with pytest.raises(MissingPrerequisiteError):
        pipeline.export(empty)

    prepared = pipeline.preprocess(pipeline.load(_passenger_csv(1, 20, labelled=True)))
    with pytest.raises(MissingPrerequisiteError):
        pipeline.predict(pipeline.train(prepared))


def test_tabular_training_needs_a_validation_split(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    prepared = pipeline.preprocess(pipeline.load(_passenger_csv(1, 1, labelled=True)))

    with pytest.raises(InsufficientSamplesError):
        pipeline.train(prepared)


def test_tabular_train_async(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    prepared = pipeline.preprocess(pipeline.load(_passenger_csv(1, 20, labelled=True)))

    trained = asyncio.run(pipeline.train_async(prepared))

    assert len(trained.history) == 2
    assert trained.model.is_trained


def test_tabular_summary(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    summary = pipeline.summarize(
        pipeline.load(_passenger_csv(1, 20, labelled=True), _passenger_csv(21, 5, labelled=False))
    )

    assert summary["train_shape"] == (20, 9)
    assert summary["test_shape"] == (5, 8)
    assert summary["survival_rate_by_sex"] == {"female": 100.0, "male": 0.0}
    assert set(summary["survival_rate_by_pclass"]) == {"1", "2", "3"}
    assert summary["train_missing_pct"]["age"] == pytest.approx(10.0)


def test_sequence_pipeline_end_to_end(tmp_path):
    pipeline = SequencePipeline(_config(tmp_path))

    context = pipeline.prepare(pipeline.load(_price_csv()))
    dataset = context.dataset
    assert dataset.symbols == ("AAA", "BBB", "CCC")
    assert dataset.input_shape == (5, 6)
    assert dataset.output_size == 6
    assert len(dataset.X_train) + len(dataset.X_test) == 33

    context = pipeline.evaluate(pipeline.train(context))
    evaluation = context.evaluation

    assert set(evaluation.per_symbol) == {"AAA", "BBB", "CCC"}
    assert evaluation.predictions.shape == (len(dataset.X_test), 6)
    assert all(result.total == len(dataset.X_test) * 2 for result in evaluation.per_symbol.values())
    assert [result.accuracy for result in evaluation.ranking] == sorted(
        (result.accuracy for result in evaluation.ranking), reverse=True
    )
    assert 0.0 <= evaluation.auc <= 1.0
    assert 0.0 <= evaluation.mean_accuracy <= 1.0

    saved = pipeline.save_model(context)
    assert saved == tmp_path / "sequence_model.pt"
    assert saved.exists()


def test_sequence_stages_require_their_predecessors(tmp_path):
    pipeline = SequencePipeline(_config(tmp_path))

    with pytest.raises(MissingPrerequisiteError):
        pipeline.prepare(SequenceContext())
    prepared = pipeline.prepare(pipeline.load(_price_csv()))
    with pytest.raises(MissingPrerequisiteError):
        pipeline.evaluate(prepared)


def test_retraining_disposes_the_previous_model(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    prepared = pipeline.preprocess(pipeline.load(_passenger_csv(1, 20, labelled=True)))
    first = pipeline.train(prepared)
    old_model = first.model

    second = pipeline.train(first)

    assert not old_model.is_built
    assert second.model is not old_model
    assert second.model.is_trained


def test_release_disposes_the_model(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    trained = pipeline.train(pipeline.preprocess(pipeline.load(_passenger_csv(1, 20, labelled=True))))
    model = trained.model

    released = pipeline.release(trained)

    assert released.model is None
    assert released.history is trained.history
    assert not model.is_built
    assert pipeline.release(released).model is None


def test_failed_training_disposes_the_new_model(tmp_path, monkeypatch):
    pipeline = TabularPipeline(_config(tmp_path))
    prepared = pipeline.preprocess(pipeline.load(_passenger_csv(1, 20, labelled=True)))
    created = []
    original = pipeline._create_model

    def recording(data):
        model = original(data)
        created.append(model)
        return model

    monkeypatch.setattr(pipeline, "_create_model", recording)

    def failing(progress):
        raise ValueError("listener failed")

    with pytest.raises(ValueError, match="listener failed"):
        pipeline.train(prepared, progress_callback=failing)
    with pytest.raises(ValueError, match="listener failed"):
        asyncio.run(pipeline.train_async(prepared, progress_callback=failing))

    assert len(created) == 2
    assert not any(model.is_built for model in created)
    assert not any(model.is_training for model in created)


def test_report_requires_predictions(tmp_path):
    pipeline = TabularPipeline(_config(tmp_path))
    evaluated = pipeline.evaluate(
        pipeline.train(pipeline.preprocess(pipeline.load(_passenger_csv(1, 20, labelled=True))))
    )

    with pytest.raises(MissingPrerequisiteError):
        pipeline.report(evaluated)


def test_sequence_release_and_report(tmp_path):
    pipeline = SequencePipeline(_config(tmp_path))
    prepared = pipeline.prepare(pipeline.load(_price_csv()))

    with pytest.raises(MissingPrerequisiteError):
        pipeline.report(prepared)

    first = pipeline.train(prepared)
    context = pipeline.evaluate(pipeline.train(first))
    assert not first.model.is_built

    report = pipeline.report(context)
    model = context.model
    released = pipeline.release(context)

    assert report["symbols"] == ["AAA", "BBB", "CCC"]
    assert len(report["training"]["epochs"]) == 2
    assert released.model is None
    assert not model.is_built
