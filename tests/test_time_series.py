"""Tests for price history loading, normalisation and sequence windows."""

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tabseq_predictor.core.config import ColumnAliases
from tabseq_predictor.core.exceptions import InsufficientSamplesError, MalformedInputError
from tabseq_predictor.core.ingest import parse_csv
from tabseq_predictor.core.time_series import (
    build_sequences,
    chronological_split,
    label_slot,
    load_price_history,
    normalize_history,
)


def _price_table(series, *, start="2024-01-01", missing=()):
    """Long-format price rows; ``missing`` holds (symbol, day index) pairs to omit."""

    lines = ["Ticker,Date,Open,Close,High,Low,Volume"]
    for symbol, closes in series.items():
        dates = pd.date_range(start, periods=len(closes), freq="D")
        for index, (day, close) in enumerate(zip(dates, closes)):
            if (symbol, index) in missing:
                continue
            lines.append(f"{symbol},{day.date()},{close},{close},{close},{close},1000")
    return parse_csv("\n".join(lines), aliases=ColumnAliases.prices())


def test_history_sorts_symbols_and_aligns_dates():
    history = load_price_history(_price_table({"ZZZ": [1, 2, 3], "AAA": [4, 5, 6]}))

    assert history.symbols == ("AAA", "ZZZ")
    assert len(history.dates) == 3
    assert list(history.close.columns) == ["AAA", "ZZZ"]
    assert history.close["ZZZ"].tolist() == [1.0, 2.0, 3.0]
    assert list(history.series("AAA")["close"]) == [4.0, 5.0, 6.0]


def test_invalid_rows_are_skipped_and_duplicates_keep_last():
    text = "\n".join(
        [
            "Symbol,Date,Open,Close",
            "AAA,2024-01-01,1,1",
            "AAA,2024-01-02,2,2",
            "AAA,2024-01-02,2,9",
            "AAA,not-a-date,3,3",
            "AAA,2024-01-03,x,3",
            ",2024-01-04,4,4",
        ]
    )
    history = load_price_history(parse_csv(text, aliases=ColumnAliases.prices()))

    assert history.skipped == 3
    assert history.duplicates == 1
    assert history.close["AAA"].tolist() == [1.0, 9.0]
    # Missing high/low/volume default from the open and to zero.
    assert history.frame["high"].tolist() == [1.0, 2.0]
    assert history.frame["volume"].tolist() == [0.0, 0.0]


def test_missing_required_columns_are_rejected():
    table = parse_csv("Symbol,Date,Open\nAAA,2024-01-01,1", aliases=ColumnAliases.prices())
    with pytest.raises(MalformedInputError):
        load_price_history(table)


def test_normalisation_is_per_symbol_min_max():
    history = load_price_history(_price_table({"AAA": [10, 20, 30], "BBB": [1, 1, 1]}))
    normalized = normalize_history(history)

    assert normalized.close["AAA"].tolist() == [0.0, 0.5, 1.0]
    assert normalized.close["BBB"].tolist() == [0.5, 0.5, 0.5]
    assert normalized.bounds["AAA"]["close"] == (10.0, 30.0)


def test_flat_series_yields_midpoint_features_and_no_rises():
    history = load_price_history(_price_table({"FLAT": [10.0] * 20}))
    dataset = build_sequences(history, window=3, horizon=2, train_fraction=0.8)

    assert len(dataset.X_train) + len(dataset.X_test) == 15
    assert len(dataset.X_train) == 12
    assert np.all(dataset.X_train == 0.5)
    assert np.all(dataset.X_test == 0.5)
    assert not dataset.y_train.any()
    assert not dataset.y_test.any()


def test_sequence_shapes_and_entity_major_labels():
    history = load_price_history(
        _price_table({"UP": list(range(1, 21)), "DOWN": list(range(20, 0, -1))})
    )
    dataset = build_sequences(history, window=4, horizon=2, train_fraction=0.5)

    assert dataset.symbols == ("DOWN", "UP")
    assert dataset.input_shape == (4, 4)
    assert dataset.output_size == 4
    assert dataset.feature_names == ["DOWN_open", "DOWN_close", "UP_open", "UP_close"]
    assert dataset.label_names == ["DOWN_t+1", "DOWN_t+2", "UP_t+1", "UP_t+2"]
    for offset in range(2):
        assert not dataset.y_train[:, label_slot(0, offset, 2)].any()
        assert dataset.y_train[:, label_slot(1, offset, 2)].all()
    assert dataset.y_train.shape[1] == 4


def test_windows_touching_a_gap_are_dropped():
    history = load_price_history(
        _price_table({"AAA": list(range(1, 11)), "BBB": list(range(1, 11))}, missing={("BBB", 5)})
    )
    dataset = build_sequences(history, window=2, horizon=1, train_fraction=0.8)

    anchors = dataset.train_dates + dataset.test_dates
    assert len(anchors) == 3
    assert dataset.dropped == 4
    assert history.dates[5] not in anchors
    assert not np.isnan(dataset.X_train).any()
    assert max(dataset.train_dates) < min(dataset.test_dates)


def test_max_samples_caps_the_dataset():
    history = load_price_history(_price_table({"AAA": list(range(1, 41))}))
    dataset = build_sequences(history, window=3, horizon=1, train_fraction=0.8, max_samples=10)

    assert len(dataset.X_train) + len(dataset.X_test) == 10


def test_too_short_history_raises():
    history = load_price_history(_price_table({"AAA": [1, 2, 3]}))
    with pytest.raises(InsufficientSamplesError):
        build_sequences(history, window=2, horizon=1)


def test_chronological_split_floors_the_prefix():
    assert chronological_split(10, 0.8) == 8
    assert chronological_split(7, 0.5) == 3
    with pytest.raises(ValueError):
        chronological_split(10, 1.0)


def test_label_slot_rejects_out_of_range_offsets():
    assert label_slot(2, 1, 3) == 7
    with pytest.raises(ValueError):
        label_slot(0, 3, 3)
