"""Read raw transaction records from JSON or CSV files.

Both formats carry the same field names as the extraction service output:
``type, ticker, amount, price, quantity, date, notes``. Values are returned
untouched (strings from CSV, whatever JSON holds); validation belongs to
:mod:`portfolio_ledger.parsing`.

JSON input is either a bare array of records or an envelope object
``{"transactions": [...], "errors": [...], "warnings": [...]}``.

CSV input must have a header row containing at least ``type``, ``amount`` and
``date``; the other columns are optional. Blank rows are skipped.
"""

from __future__ import annotations

import csv
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, TextIO

from ..importing import ExtractionEnvelope

KNOWN_COLUMNS: tuple[str, ...] = ("type", "ticker", "amount", "price", "quantity", "date", "notes")
REQUIRED_COLUMNS: set[str] = {"type", "amount", "date"}


@dataclass(frozen=True, slots=True)
class LoadedBatch:
    """Records read from a file plus any advisories carried by a JSON envelope."""

    records: list[Mapping[str, Any]]
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def read_csv_records(f: TextIO | Iterable[str]) -> list[Mapping[str, Any]]:
    """Parse CSV rows into raw records, checking the header first."""

    reader = csv.DictReader(f)
    headers = [h.strip().lower() for h in (reader.fieldnames or [])]
    if not headers:
        raise csv.Error("CSV appears to have no header row")
    missing = sorted(REQUIRED_COLUMNS - set(headers))
    if missing:
        raise csv.Error("CSV header mismatch. Missing columns: " + ", ".join(missing))

    records: list[Mapping[str, Any]] = []
    for row in reader:
        values = {
            (k or "").strip().lower(): (v.strip() if isinstance(v, str) else v)
            for k, v in row.items()
            if k is not None
        }
        if all(not v for v in values.values()):
            continue
        records.append({col: (values.get(col) or None) for col in KNOWN_COLUMNS})
    return records


def read_json_records(text: str) -> LoadedBatch:
    body = json.loads(text)
    if isinstance(body, list):
        if not all(isinstance(item, Mapping) for item in body):
            raise ValueError("JSON array must contain only transaction objects")
        return LoadedBatch(records=list(body))
    if isinstance(body, Mapping):
        envelope = ExtractionEnvelope.model_validate(body)
        return LoadedBatch(
            records=list(envelope.transactions),
            errors=list(envelope.errors),
            warnings=list(envelope.warnings),
        )
    raise ValueError("JSON input must be an array of transactions or an envelope object")


def load_records(path: str | PathLike[str]) -> LoadedBatch:
    """Load ``path`` by extension (``.json`` or ``.csv``)."""

    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".json":
        return read_json_records(p.read_text(encoding="utf-8"))
    if suffix == ".csv":
        with p.open(encoding="utf-8-sig", newline="") as f:
            return LoadedBatch(records=read_csv_records(f))
    raise ValueError(f"unsupported input format: {p.suffix or '(none)'}; expected .json or .csv")


__all__ = [
    "KNOWN_COLUMNS",
    "REQUIRED_COLUMNS",
    "LoadedBatch",
    "read_csv_records",
    "read_json_records",
    "load_records",
]
