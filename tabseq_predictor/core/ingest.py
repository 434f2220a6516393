"""Delimited-text ingest with quote-aware tokenising and column-alias resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Sequence

import numpy as np
import pandas as pd

from .config import ColumnAliases
from .exceptions import InsufficientSamplesError, MalformedInputError

LOGGER = logging.getLogger(__name__)


class _Absent:
    """Marker for a trailing field the line omitted entirely."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()

Row = Mapping[str, Any]


def is_missing(value: Any) -> bool:
    """Return ``True`` for omitted, ``None`` or blank values."""

    if value is ABSENT or value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _is_blank(line: str, delimiter: str) -> bool:
    return not line.strip() and delimiter not in line


def _finish_field(chars: list[tuple[str, bool]]) -> str:
    # Only unquoted padding is trimmed; quoted whitespace is content.
    start, end = 0, len(chars)
    while start < end and not chars[start][1] and chars[start][0].isspace():
        start += 1
    while end > start and not chars[end - 1][1] and chars[end - 1][0].isspace():
        end -= 1
    return "".join(char for char, _ in chars[start:end])


def tokenize_line(line: str, delimiter: str = ",", quote: str = '"') -> list[str]:
    """Split *line* on delimiters that sit outside quoted sections.

    Whitespace around a field is dropped unless it sits inside quotes.
    """

    if len(delimiter) != 1 or len(quote) != 1:
        raise ValueError("delimiter and quote must be single characters.")

    fields_: list[str] = []
    current: list[tuple[str, bool]] = []
    in_quotes = False
    index = 0
    length = len(line)
    while index < length:
        char = line[index]
        if char == quote:
            if in_quotes and index + 1 < length and line[index + 1] == quote:
                current.append((quote, True))
                index += 2
                continue
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields_.append(_finish_field(current))
            current = []
        else:
            current.append((char, in_quotes))
        index += 1

    if in_quotes:
        raise MalformedInputError(
            "Unterminated quoted field.", context={"line": line}
        )
    fields_.append(_finish_field(current))
    return fields_


def resolve_columns(header: Sequence[str], aliases: ColumnAliases | None = None) -> dict[str, str]:
    """Map each header cell to its canonical column name.

    Resolution happens once per file; unknown headers keep their own name.
    """

    lookup = aliases.lookup() if aliases is not None else {}
    resolved: dict[str, str] = {}
    claimed: set[str] = set()
    for name in header:
        canonical = lookup.get(name.strip().lower(), name)
        if canonical in claimed:
            LOGGER.warning(
                "Column %r resolves to %r which is already mapped; keeping original name",
                name,
                canonical,
            )
            canonical = name
        claimed.add(canonical)
        resolved[name] = canonical
    return resolved


@dataclass(frozen=True)
class CsvTable:
    """Parsed rows together with the bookkeeping of what was dropped."""

    columns: tuple[str, ...]
    rows: tuple[Row, ...]
    skipped: int = 0
    warnings: tuple[str, ...] = field(default_factory=tuple)
    source_columns: Mapping[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def column(self, name: str) -> list[Any]:
        if name not in self.columns:
            raise KeyError(f"Unknown column {name!r}; available: {list(self.columns)}")
        return [row.get(name, ABSENT) for row in self.rows]

    def to_frame(self) -> pd.DataFrame:
        """Return the rows as a DataFrame, with omitted fields as ``NaN``."""

        records = [
            {name: (np.nan if row.get(name, ABSENT) is ABSENT else row[name]) for name in self.columns}
            for row in self.rows
        ]
        return pd.DataFrame.from_records(records, columns=list(self.columns))


def parse_csv(
    text: str,
    *,
    delimiter: str = ",",
    quote: str = '"',
    aliases: ColumnAliases | None = None,
    pad_missing: bool = False,
) -> CsvTable:
    """Parse delimited *text* whose first line is the header.

    Lines whose field count differs from the header are skipped and recorded.
    With ``pad_missing`` a line that stops early is kept instead and its omitted
    trailing fields hold :data:`ABSENT`.
    """

    lines = text.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff").split("\n")
    # Only surrounding blank lines are trimmed; trailing delimiters are data.
    while lines and _is_blank(lines[0], delimiter):
        lines.pop(0)
    while lines and _is_blank(lines[-1], delimiter):
        lines.pop()
    if not lines:
        raise InsufficientSamplesError("Input text is empty.", sample_counts={"lines": 0})

    header = tokenize_line(lines[0], delimiter, quote)
    mapping = resolve_columns(header, aliases)
    columns = tuple(mapping[name] for name in header)

    rows: list[Row] = []
    warnings: list[str] = []
    for line_number, line in enumerate(lines[1:], start=2):
        if _is_blank(line, delimiter):
            warnings.append(f"line {line_number}: blank line")
            continue
        try:
            values = tokenize_line(line, delimiter, quote)
        except MalformedInputError as exc:
            warnings.append(f"line {line_number}: {exc.message}")
            continue

        if len(values) > len(columns) or (len(values) < len(columns) and not pad_missing):
            warnings.append(
                f"line {line_number}: expected {len(columns)} fields, found {len(values)}"
            )
            continue

        record: dict[str, Any] = dict(zip(columns, values))
        for name in columns[len(values):]:
            record[name] = ABSENT
        rows.append(MappingProxyType(record))

    if not rows:
        raise InsufficientSamplesError(
            "No data rows could be parsed.",
            sample_counts={"lines": len(lines) - 1, "skipped": len(warnings)},
        )

    if warnings:
        LOGGER.warning(
            "Skipped %d of %d data lines while parsing CSV input", len(warnings), len(lines) - 1
        )
        for message in warnings:
            LOGGER.debug("CSV skip: %s", message)

    return CsvTable(
        columns=columns,
        rows=tuple(rows),
        skipped=len(warnings),
        warnings=tuple(warnings),
        source_columns=MappingProxyType({canonical: name for name, canonical in mapping.items()}),
    )


def read_csv_file(path: str | Path, **kwargs: Any) -> CsvTable:
    """Read a UTF-8 file from disk and parse it with :func:`parse_csv`."""

    resolved = Path(path).expanduser()
    text = resolved.read_text(encoding="utf-8-sig")
    LOGGER.debug("Read %d characters from %s", len(text), resolved)
    return parse_csv(text, **kwargs)


__all__ = [
    "ABSENT",
    "CsvTable",
    "Row",
    "is_missing",
    "parse_csv",
    "read_csv_file",
    "resolve_columns",
    "tokenize_line",
]
