"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

_records_counter = Counter(
    "importer_artwork_records_total",
    "Import records processed by resulting action.",
    ["action"],
)
_batch_counter = Counter(
    "importer_artwork_batches_total",
    "Artwork import batches processed by status.",
    ["status"],
)
_batch_duration = Histogram(
    "importer_artwork_batch_duration_seconds",
    "Duration of artwork import batches in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
_merge_confidence = Histogram(
    "importer_artwork_match_confidence",
    "Confidence of the best duplicate candidate per record.",
    buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.85, 0.9, 0.95, 1.0),
)
_batch_timeouts = Counter(
    "importer_artwork_batch_timeouts_total",
    "Batches that hit their deadline before every record started.",
)


def record_import_action(action: str) -> None:
    """Increment the per-action record counter."""

    _records_counter.labels(action=action).inc()


def record_match_confidence(confidence: float) -> None:
    _merge_confidence.observe(confidence)


def record_import_batch(*, status: str, duration_seconds: float, timed_out: bool = False) -> None:
    """Capture metrics for a finished batch."""

    _batch_counter.labels(status=status).inc()
    _batch_duration.observe(duration_seconds)
    if timed_out:
        _batch_timeouts.inc()


__all__ = [
    "record_import_action",
    "record_import_batch",
    "record_match_confidence",
]
