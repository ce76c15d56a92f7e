"""Manifest lookup: task index -> sample record."""

from __future__ import annotations

import csv
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Union

import pandas as pd

from metapipe.exceptions import (
    EmptyManifest,
    IndexOutOfRange,
    InputUnavailable,
    MalformedRecord,
    ManifestUnreadable,
)

MANIFEST_COLUMNS = ["sample_id", "input_a", "input_b"]
# Never present in a manifest, so every line arrives as a single field
LINE_ONLY = "\x1f"


@dataclass(frozen=True)
class Record:
    """One manifest row."""

    sample_id: str
    input_a: Path
    input_b: Path
    index: int


def _split_fields(lines: pd.Series) -> pd.DataFrame:
    """Split each line on whitespace into at most three fields.

    Surplus text stays in input_b, which then names no readable file, so an
    over-long line only breaks its own index. Short lines leave gaps.
    """
    fields = lines.str.split(n=len(MANIFEST_COLUMNS) - 1, expand=True)
    fields = fields.reindex(columns=range(len(MANIFEST_COLUMNS)))
    fields.columns = MANIFEST_COLUMNS
    return fields.reset_index(drop=True)


def _read_table(manifest_path: Path) -> pd.DataFrame:
    """Read the manifest body (header skipped) as strings, one row per data line."""
    if not manifest_path.is_file() or not os.access(manifest_path, os.R_OK):
        raise ManifestUnreadable(f"Manifest not found or not readable: {manifest_path}")
    try:
        lines = pd.read_csv(
            manifest_path,
            sep=LINE_ONLY,
            header=None,
            skiprows=1,
            names=["line"],
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
            skip_blank_lines=True,
        )["line"]
    except pd.errors.EmptyDataError:
        raise EmptyManifest(f"Manifest contains only a header and no samples: {manifest_path}")
    except pd.errors.ParserError as exc:
        raise MalformedRecord(f"Manifest could not be parsed: {manifest_path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestUnreadable(f"Manifest not readable: {manifest_path}: {exc}") from exc
    return _split_fields(lines[lines.str.strip() != ""])


def _field(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def count_records(manifest_path: Union[str, Path]) -> int:
    """Number of data rows in the manifest."""
    return len(_read_table(Path(manifest_path)))


def _parse_index(task_index: Any) -> int:
    if isinstance(task_index, bool):
        raise IndexOutOfRange(f"Task index is not numeric: {task_index!r}")
    if isinstance(task_index, int):
        return task_index
    text = str(task_index).strip()
    if not text.isdigit():
        raise IndexOutOfRange(f"Task index is not numeric: {task_index!r}")
    return int(text)


def resolve(manifest_path: Union[str, Path], task_index: Union[int, str]) -> Record:
    """Return the record addressed by a 1-based task index.

    Args:
        manifest_path: Whitespace-separated manifest with a header line
        task_index: 1-based data row number

    Raises:
        ManifestUnreadable: manifest missing or unreadable
        EmptyManifest: header only
        IndexOutOfRange: index outside 1..rows or not an integer
        MalformedRecord: fewer than three non-empty fields
        InputUnavailable: an input file is missing or unreadable
    """
    manifest_path = Path(manifest_path)
    table = _read_table(manifest_path)
    rows = len(table)
    if rows == 0:
        raise EmptyManifest(f"Manifest contains only a header and no samples: {manifest_path}")

    index = _parse_index(task_index)
    if index < 1 or index > rows:
        raise IndexOutOfRange(f"Bad task index {index}. Valid range is 1..{rows}")

    row = table.iloc[index - 1]
    sample_id, input_a, input_b = (_field(row[c]) for c in MANIFEST_COLUMNS)
    if not sample_id or not input_a or not input_b:
        line = " ".join(v for v in (sample_id, input_a, input_b) if v)
        raise MalformedRecord(f"Malformed manifest line {index}: '{line}'")

    for label, value in (("input_a", input_a), ("input_b", input_b)):
        path = Path(value)
        if not path.is_file() or not os.access(path, os.R_OK):
            raise InputUnavailable(f"{label} not readable for {sample_id}: {path}")

    return Record(sample_id=sample_id, input_a=Path(input_a), input_b=Path(input_b), index=index)


def load_records(manifest_path: Union[str, Path]) -> List[Record]:
    """All well-formed records, without checking input readability."""
    table = _read_table(Path(manifest_path))
    records: List[Record] = []
    for position, row in enumerate(table.itertuples(index=False), start=1):
        sample_id, input_a, input_b = (_field(v) for v in row)
        if sample_id and input_a and input_b:
            records.append(Record(sample_id, Path(input_a), Path(input_b), position))
    return records
