"""
Error taxonomy for artwork imports.

Only ``RecordValidationError`` and ``ExecutionError`` are raised inside a
record's pipeline, and both are converted to ``error`` audit entries by the
batch controller. ``ResolutionWarning`` is a value, not an exception: it is
attached to the audit entry and the record keeps going.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

INVALID_COORDINATES = "INVALID_COORDINATES"
TITLE_TOO_LONG = "TITLE_TOO_LONG"
INVALID_RECORD = "INVALID_RECORD"
INVALID_FIELD = "INVALID_FIELD"
ARTIST_NOT_FOUND = "ARTIST_NOT_FOUND"
NEAR_MISS = "NEAR_MISS"
TEXT_TRUNCATED = "TEXT_TRUNCATED"
EXTERNAL_ID_CONFLICT = "EXTERNAL_ID_CONFLICT"
EXECUTION_ERROR = "EXECUTION_ERROR"
BATCH_TIMEOUT = "batch_timeout"


class ImporterError(Exception):
    """Base class for importer failures."""


class RecordValidationError(ImporterError, ValueError):
    """A raw record could not be normalized."""

    def __init__(self, code: str, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.field = field
        self.message = message

    def to_dict(self) -> dict[str, str | None]:
        return {"code": self.code, "field": self.field, "message": self.message}


class ExecutionError(ImporterError, RuntimeError):
    """Applying a decision against the store failed for one record."""

    def __init__(self, message: str, *, record_index: int | None = None) -> None:
        super().__init__(message)
        self.record_index = record_index

    @property
    def audit_message(self) -> str:
        return f"{EXECUTION_ERROR}: {self}"


class DuplicateImportError(ImporterError, ValueError):
    """An import run with the same identifier already exists."""

    def __init__(self, import_id: str) -> None:
        super().__init__(f"Import '{import_id}' has already been run.")
        self.import_id = import_id


class BatchTimeoutError(ImporterError):
    """The batch deadline passed before a record was started."""

    def __init__(self, record_index: int) -> None:
        super().__init__(f"Batch deadline passed before record {record_index} started.")
        self.record_index = record_index


@dataclass(frozen=True)
class ResolutionWarning:
    """Non-fatal problem attached to an audit entry."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


__all__ = [
    "ARTIST_NOT_FOUND",
    "BATCH_TIMEOUT",
    "EXECUTION_ERROR",
    "EXTERNAL_ID_CONFLICT",
    "INVALID_COORDINATES",
    "INVALID_FIELD",
    "INVALID_RECORD",
    "NEAR_MISS",
    "TEXT_TRUNCATED",
    "TITLE_TOO_LONG",
    "BatchTimeoutError",
    "DuplicateImportError",
    "ExecutionError",
    "ImporterError",
    "RecordValidationError",
    "ResolutionWarning",
]
