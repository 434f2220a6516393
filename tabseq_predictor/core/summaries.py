"""Exploration summaries rendered by the presentation layer before training."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .ingest import CsvTable


def _as_frame(table: CsvTable | pd.DataFrame) -> pd.DataFrame:
    frame = table.to_frame() if isinstance(table, CsvTable) else table.copy()
    return frame.replace(r"^\s*$", np.nan, regex=True)


def missing_value_report(table: CsvTable | pd.DataFrame) -> dict[str, float]:
    """Percentage of missing or blank cells per column."""

    frame = _as_frame(table)
    if frame.empty:
        return {}
    percentages = frame.isna().mean() * 100.0
    return {str(name): float(value) for name, value in percentages.items()}


def group_rate(table: CsvTable | pd.DataFrame, by: str, target: str = "survived") -> dict[str, float]:
    """Positive-label rate (percent) per value of column *by*.

    Rows missing either the grouping value or a numeric target are ignored.
    """

    frame = _as_frame(table)
    if by not in frame.columns or target not in frame.columns:
        raise KeyError(f"Columns {by!r} and {target!r} are required for a group rate.")

    subset = pd.DataFrame(
        {
            "group": frame[by],
            "target": pd.to_numeric(frame[target], errors="coerce"),
        }
    ).dropna()
    if subset.empty:
        return {}
    rates = subset.groupby("group", sort=True)["target"].apply(lambda values: (values == 1).mean() * 100.0)
    return {str(name): float(value) for name, value in rates.items()}


__all__ = ["group_rate", "missing_value_report"]
