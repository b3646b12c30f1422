"""
Importer-specific utilities for reading batch files.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable

RECORD_EXTENSIONS: tuple[str, ...] = ("json", "jsonl", "csv")
CSV_TAG_PREFIX = "tag:"


class BatchFileError(ValueError):
    """The batch file is missing, unreadable, or not in a supported shape."""


def allowed_file(filename: str, allowed_extensions: Iterable[str] = RECORD_EXTENSIONS) -> bool:
    """
    Validate the filename extension against the allowed set.
    """

    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def _records_from_json(text: str) -> list[Any]:
    payload = json.loads(text)
    if isinstance(payload, dict):
        payload = payload.get("records")
    if not isinstance(payload, list):
        raise BatchFileError("JSON batch must be a list of records or an object with a 'records' list.")
    return payload


def _records_from_jsonl(text: str) -> list[Any]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def _records_from_csv(text: str) -> list[dict[str, Any]]:
    """
    One record per row. Columns named ``tag:<key>`` become tags; blank cells
    are dropped so they read as absent fields.
    """

    records: list[dict[str, Any]] = []
    for row in csv.DictReader(text.splitlines()):
        record: dict[str, Any] = {}
        tags: dict[str, str] = {}
        for column, value in row.items():
            if column is None or value is None or value == "":
                continue
            if column.startswith(CSV_TAG_PREFIX):
                tags[column[len(CSV_TAG_PREFIX) :]] = value
            else:
                record[column] = value
        if tags:
            record["tags"] = tags
        records.append(record)
    return records


def load_records(path: str | Path) -> list[Any]:
    """Read a batch file (``.json``, ``.jsonl`` or ``.csv``) into raw records."""

    file_path = Path(path)
    if not file_path.exists():
        raise BatchFileError(f"Batch file not found: {file_path}")
    if not allowed_file(file_path.name):
        raise BatchFileError(f"Unsupported batch file type: {file_path.name}")

    text = file_path.read_text(encoding="utf-8-sig")
    extension = file_path.suffix.lower().lstrip(".")
    try:
        if extension == "csv":
            return _records_from_csv(text)
        if extension == "jsonl":
            return _records_from_jsonl(text)
        return _records_from_json(text)
    except json.JSONDecodeError as exc:
        raise BatchFileError(f"Invalid JSON in {file_path.name}: {exc}") from exc


__all__ = [
    "BatchFileError",
    "RECORD_EXTENSIONS",
    "allowed_file",
    "load_records",
]
