"""
Audit entries and the batch report.

Workers append entries concurrently through ``AuditCollector``; ``finalize``
orders them by record index and derives the totals from the actions, so the
totals always sum to the number of entries.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from artwork_app.importer.errors import BATCH_TIMEOUT, ResolutionWarning

if TYPE_CHECKING:
    from artwork_app.models import ImportAuditEntry

ACTIONS: tuple[str, ...] = ("created", "updated", "merged", "skipped", "duplicate", "error")

# action -> totals key
TOTALS_KEYS: Mapping[str, str] = {
    "created": "created",
    "updated": "updated",
    "merged": "merged",
    "skipped": "skipped",
    "duplicate": "duplicates",
    "error": "errors",
}


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class AuditEntry:
    import_id: str
    record_index: int
    action: str
    confidence: float | None = None
    matched_artwork_id: int | None = None
    resulting_artwork_id: int | None = None
    matched_reason: str | None = None
    reason: str | None = None
    field_changes: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    errors: tuple[str, ...] = ()
    warnings: tuple[ResolutionWarning, ...] = ()
    tags_conflict_count: int = 0
    skipped_coordinate_merge: bool = False
    candidates: tuple[Mapping[str, Any], ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"Unknown audit action '{self.action}'.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "importId": self.import_id,
            "recordIndex": self.record_index,
            "action": self.action,
            "confidence": None if self.confidence is None else round(self.confidence, 4),
            "matchedArtworkId": self.matched_artwork_id,
            "resultingArtworkId": self.resulting_artwork_id,
            "matchedReason": self.matched_reason,
            "reason": self.reason,
            "fieldChanges": {name: dict(change) for name, change in self.field_changes.items()},
            "errors": list(self.errors),
            "warnings": [warning.to_dict() for warning in self.warnings],
            "tagsConflictCount": self.tags_conflict_count,
            "skippedCoordinateMerge": self.skipped_coordinate_merge,
            "candidates": [dict(candidate) for candidate in self.candidates],
            "timestamp": _isoformat(self.timestamp),
        }

    @classmethod
    def from_row(cls, row: "ImportAuditEntry") -> "AuditEntry":
        details = row.details_json or {}
        return cls(
            import_id=row.import_id,
            record_index=row.record_index,
            action=row.action,
            confidence=row.confidence,
            matched_artwork_id=row.matched_artwork_id,
            resulting_artwork_id=row.resulting_artwork_id,
            matched_reason=row.matched_reason,
            reason=row.reason,
            field_changes=dict(row.field_changes or {}),
            errors=tuple(row.errors or ()),
            warnings=tuple(ResolutionWarning(**warning) for warning in (row.warnings or ())),
            tags_conflict_count=int(details.get("tags_conflict_count", 0)),
            skipped_coordinate_merge=bool(details.get("skipped_coordinate_merge", False)),
            candidates=tuple(details.get("candidates", ())),
            timestamp=row.recorded_at,
        )


@dataclass(frozen=True)
class BatchTotals:
    created: int = 0
    updated: int = 0
    merged: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.merged + self.skipped + self.duplicates + self.errors

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "merged": self.merged,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class BatchReport:
    import_id: str
    started_at: datetime
    finished_at: datetime
    totals: BatchTotals
    records: tuple[AuditEntry, ...]
    dry_run: bool = False
    timed_out: bool = False

    def entry(self, record_index: int) -> AuditEntry:
        for item in self.records:
            if item.record_index == record_index:
                return item
        raise KeyError(record_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "importId": self.import_id,
            "startedAt": _isoformat(self.started_at),
            "finishedAt": _isoformat(self.finished_at),
            "dryRun": self.dry_run,
            "timedOut": self.timed_out,
            "totals": self.totals.to_dict(),
            "records": [entry.to_dict() for entry in self.records],
        }


class AuditCollector:
    """Thread-safe accumulator for one batch's entries."""

    def __init__(self, import_id: str) -> None:
        self.import_id = import_id
        self._entries: dict[int, AuditEntry] = {}
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        if entry.import_id != self.import_id:
            raise ValueError(f"Entry for import '{entry.import_id}' appended to '{self.import_id}'.")
        with self._lock:
            if entry.record_index in self._entries:
                raise ValueError(f"Record {entry.record_index} already has an audit entry.")
            self._entries[entry.record_index] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries.values())


def tally(entries: Iterable[AuditEntry]) -> BatchTotals:
    counts = {key: 0 for key in TOTALS_KEYS.values()}
    for entry in entries:
        counts[TOTALS_KEYS[entry.action]] += 1
    return BatchTotals(**counts)


def finalize(
    import_id: str,
    entries: Sequence[AuditEntry],
    *,
    started_at: datetime,
    finished_at: datetime,
    dry_run: bool = False,
    timed_out: bool | None = None,
) -> BatchReport:
    ordered = tuple(sorted(entries, key=lambda entry: entry.record_index))
    if timed_out is None:
        timed_out = any(entry.reason == BATCH_TIMEOUT for entry in ordered)
    return BatchReport(
        import_id=import_id,
        started_at=started_at,
        finished_at=finished_at,
        totals=tally(ordered),
        records=ordered,
        dry_run=dry_run,
        timed_out=timed_out,
    )


__all__ = [
    "ACTIONS",
    "AuditCollector",
    "AuditEntry",
    "BatchReport",
    "BatchTotals",
    "finalize",
    "tally",
]
