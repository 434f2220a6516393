"""Multi-symbol price history loading, normalisation and sliding-window samples."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd

from .config import DEFAULT_HORIZON, DEFAULT_TRAIN_FRACTION, DEFAULT_WINDOW
from .exceptions import InsufficientSamplesError, MalformedInputError
from .ingest import ABSENT, CsvTable, Row

LOGGER = logging.getLogger(__name__)

PRICE_COLUMNS: tuple[str, ...] = ("symbol", "date", "open", "close", "high", "low", "volume")
REQUIRED_PRICE_COLUMNS: tuple[str, ...] = ("symbol", "date", "open", "close")


@dataclass(frozen=True)
class PriceHistory:
    """Per-symbol price series aligned on the union of observed dates.

    ``open`` and ``close`` are wide frames (dates x symbols) holding ``NaN``
    wherever a symbol has no observation for a date.
    """

    symbols: tuple[str, ...]
    dates: tuple[pd.Timestamp, ...]
    open: pd.DataFrame
    close: pd.DataFrame
    frame: pd.DataFrame
    skipped: int = 0
    duplicates: int = 0

    def series(self, symbol: str) -> pd.DataFrame:
        """Return the ordered observations of *symbol*."""

        subset = self.frame[self.frame["symbol"] == symbol]
        return subset.set_index("date").drop(columns=["symbol"]).sort_index()

    def to_frame(self) -> pd.DataFrame:
        return self.frame.copy()


@dataclass(frozen=True)
class NormalizedHistory:
    """Min-max scaled open/close frames, one scale per symbol."""

    open: pd.DataFrame
    close: pd.DataFrame
    bounds: dict[str, dict[str, tuple[float, float]]]


@dataclass(frozen=True)
class SequenceDataset:
    """Chronologically split windows with their forward-looking labels."""

    X_train: np.ndarray
    y_train: np.ndarray
    X_test: np.ndarray
    y_test: np.ndarray
    symbols: tuple[str, ...]
    train_dates: tuple[pd.Timestamp, ...]
    test_dates: tuple[pd.Timestamp, ...]
    window: int
    horizon: int
    dropped: int = 0

    @property
    def input_shape(self) -> tuple[int, int]:
        return int(self.X_train.shape[1]), int(self.X_train.shape[2])

    @property
    def output_size(self) -> int:
        return int(self.y_train.shape[1])

    @property
    def feature_names(self) -> list[str]:
        return [f"{symbol}_{field}" for symbol in self.symbols for field in ("open", "close")]

    @property
    def label_names(self) -> list[str]:
        names = [""] * (len(self.symbols) * self.horizon)
        for index, symbol in enumerate(self.symbols):
            for offset in range(self.horizon):
                names[label_slot(index, offset, self.horizon)] = f"{symbol}_t+{offset + 1}"
        return names


def label_slot(symbol_index: int, day_offset: int, horizon: int) -> int:
    """Position of (symbol, 0-based day offset) inside a label vector."""

    if not 0 <= day_offset < horizon:
        raise ValueError(f"day_offset must be in [0, {horizon}), got {day_offset}.")
    if symbol_index < 0:
        raise ValueError("symbol_index must be non-negative.")
    return symbol_index * horizon + day_offset


def chronological_split(n_samples: int, train_fraction: float = DEFAULT_TRAIN_FRACTION) -> int:
    """Return the prefix length used for training."""

    if not 0.0 < train_fraction < 1.0:
        raise ValueError("train_fraction must be between 0 and 1 (exclusive).")
    return int(math.floor(n_samples * train_fraction))


def _records(rows: CsvTable | Iterable[Row]) -> list[dict[str, Any]]:
    return [
        {name: (None if row.get(name, ABSENT) is ABSENT else row.get(name)) for name in PRICE_COLUMNS}
        for row in rows
    ]


def load_price_history(rows: CsvTable | Iterable[Row]) -> PriceHistory:
    """Build a :class:`PriceHistory` from rows keyed by canonical price columns."""

    if isinstance(rows, CsvTable):
        missing_columns = [name for name in REQUIRED_PRICE_COLUMNS if name not in rows.columns]
        if missing_columns:
            raise MalformedInputError(
                f"Price data is missing required columns: {missing_columns}",
                context={"columns": list(rows.columns)},
            )

    raw = pd.DataFrame.from_records(_records(rows), columns=list(PRICE_COLUMNS))
    total = len(raw.index)
    if total == 0:
        raise InsufficientSamplesError("No price rows supplied.", sample_counts={"rows": 0})

    frame = pd.DataFrame(
        {
            "symbol": raw["symbol"].map(lambda value: "" if value is None else str(value).strip()),
            "date": pd.to_datetime(raw["date"], errors="coerce"),
        }
    )
    for name in ("open", "close", "high", "low", "volume"):
        frame[name] = pd.to_numeric(raw[name], errors="coerce")

    valid = (
        (frame["symbol"] != "")
        & frame["date"].notna()
        & frame["open"].notna()
        & frame["close"].notna()
    )
    skipped = int((~valid).sum())
    if skipped:
        LOGGER.warning(
            "Skipping %d of %d price rows with a missing symbol/date or invalid open/close",
            skipped,
            total,
        )
    frame = frame.loc[valid].copy()
    if frame.empty:
        raise InsufficientSamplesError(
            "No valid price rows remain after parsing.",
            sample_counts={"rows": total, "skipped": skipped},
        )

    frame["high"] = frame["high"].fillna(frame["open"])
    frame["low"] = frame["low"].fillna(frame["open"])
    frame["volume"] = frame["volume"].fillna(0.0)

    duplicate_mask = frame.duplicated(subset=["symbol", "date"], keep="last")
    duplicates = int(duplicate_mask.sum())
    if duplicates:
        LOGGER.warning("Dropping %d duplicate (symbol, date) observations", duplicates)
    frame = frame.loc[~duplicate_mask].sort_values(["symbol", "date"]).reset_index(drop=True)

    open_wide = frame.pivot(index="date", columns="symbol", values="open").sort_index()
    close_wide = frame.pivot(index="date", columns="symbol", values="close").sort_index()
    symbols = tuple(sorted(open_wide.columns))
    open_wide = open_wide.reindex(columns=list(symbols))
    close_wide = close_wide.reindex(columns=list(symbols))

    history = PriceHistory(
        symbols=symbols,
        dates=tuple(open_wide.index),
        open=open_wide,
        close=close_wide,
        frame=frame,
        skipped=skipped,
        duplicates=duplicates,
    )
    LOGGER.info(
        "Loaded %d symbols over %d trading dates", len(history.symbols), len(history.dates)
    )
    return history


def _min_max(frame: pd.DataFrame) -> tuple[pd.DataFrame, dict[str, tuple[float, float]]]:
    scaled = pd.DataFrame(index=frame.index, columns=frame.columns, dtype=float)
    bounds: dict[str, tuple[float, float]] = {}
    for column in frame.columns:
        values = frame[column]
        low = float(values.min())
        high = float(values.max())
        bounds[str(column)] = (low, high)
        span = high - low
        if span > 0:
            scaled[column] = (values - low) / span
        else:
            # Flat series: every observed point maps to the midpoint.
            scaled[column] = np.where(values.notna(), 0.5, np.nan)
    return scaled, bounds


def normalize_history(history: PriceHistory) -> NormalizedHistory:
    """Scale each symbol's open and close into ``[0, 1]`` over its own range."""

    open_scaled, open_bounds = _min_max(history.open)
    close_scaled, close_bounds = _min_max(history.close)
    bounds = {
        symbol: {"open": open_bounds[symbol], "close": close_bounds[symbol]}
        for symbol in history.symbols
    }
    return NormalizedHistory(open=open_scaled, close=close_scaled, bounds=bounds)


def build_sequences(
    history: PriceHistory,
    *,
    window: int = DEFAULT_WINDOW,
    horizon: int = DEFAULT_HORIZON,
    train_fraction: float = DEFAULT_TRAIN_FRACTION,
    max_samples: int | None = None,
    normalized: NormalizedHistory | None = None,
) -> SequenceDataset:
    """Cut the aligned history into ``window``-long samples with ``horizon`` labels.

    For anchor index ``i`` the features are the normalised ``(open, close)``
    pairs of every symbol at dates ``i - window .. i - 1``; the label for
    symbol ``s`` and day ``d`` is 1 when the raw close at ``i + d + 1`` is strictly
    above the raw close at ``i``. A sample is dropped whole when any symbol
    lacks an observation at any history, anchor or future date.
    """

    if window < 1 or horizon < 1:
        raise ValueError("window and horizon must be at least 1.")
    normalized = normalized or normalize_history(history)

    n_dates = len(history.dates)
    n_symbols = len(history.symbols)
    stacked = np.empty((n_dates, 2 * n_symbols), dtype=np.float64)
    stacked[:, 0::2] = normalized.open.to_numpy(dtype=float)
    stacked[:, 1::2] = normalized.close.to_numpy(dtype=float)
    raw_close = history.close.to_numpy(dtype=float)
    complete = ~np.isnan(stacked).any(axis=1)

    sequences: list[np.ndarray] = []
    targets: list[np.ndarray] = []
    anchors: list[pd.Timestamp] = []
    dropped = 0

    for anchor in range(window, n_dates - horizon):
        if max_samples is not None and len(sequences) >= max_samples:
            break
        if not complete[anchor - window : anchor].all() or not complete[anchor : anchor + horizon + 1].all():
            dropped += 1
            continue

        base = raw_close[anchor]
        future = raw_close[anchor + 1 : anchor + horizon + 1]
        rises = (future > base).astype(np.float32)  # (horizon, symbols)
        label = np.empty(n_symbols * horizon, dtype=np.float32)
        for symbol_index in range(n_symbols):
            for offset in range(horizon):
                label[label_slot(symbol_index, offset, horizon)] = rises[offset, symbol_index]

        sequences.append(stacked[anchor - window : anchor].astype(np.float32))
        targets.append(label)
        anchors.append(history.dates[anchor])

    if dropped:
        LOGGER.info("Dropped %d windows with incomplete symbol coverage", dropped)
    if not sequences:
        raise InsufficientSamplesError(
            "No valid sequences could be built; check that every symbol covers the same dates.",
            sample_counts={"dates": n_dates, "dropped": dropped},
            context={"window": window, "horizon": horizon},
        )

    split = chronological_split(len(sequences), train_fraction)
    if split == 0 or split == len(sequences):
        raise InsufficientSamplesError(
            "Too few sequences for a chronological train/test split.",
            sample_counts={"sequences": len(sequences), "train": split},
        )

    X = np.stack(sequences)
    y = np.stack(targets)
    dataset = SequenceDataset(
        X_train=X[:split],
        y_train=y[:split],
        X_test=X[split:],
        y_test=y[split:],
        symbols=history.symbols,
        train_dates=tuple(anchors[:split]),
        test_dates=tuple(anchors[split:]),
        window=window,
        horizon=horizon,
        dropped=dropped,
    )
    LOGGER.info(
        "Built %d sequences (train=%d, test=%d) for %d symbols",
        len(sequences),
        split,
        len(sequences) - split,
        n_symbols,
    )
    return dataset


__all__ = [
    "NormalizedHistory",
    "PriceHistory",
    "SequenceDataset",
    "build_sequences",
    "chronological_split",
    "label_slot",
    "load_price_history",
    "normalize_history",
]
