"""
Batch controller for artwork imports.

``run_import`` fans records out to a bounded thread pool. Each worker pushes
its own Flask app context (and therefore its own SQLAlchemy session), runs the
record through normalize, candidate search, artist resolution, scoring,
decision, and execution inside one transaction, and appends exactly one audit
entry. The batch deadline is checked before a record starts; records that
never start are reported as ``skipped``/``batch_timeout``.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

from flask import Flask, current_app
from sqlalchemy.exc import SQLAlchemyError

from artwork_app.importer.errors import (
    BATCH_TIMEOUT,
    EXECUTION_ERROR,
    NEAR_MISS,
    BatchTimeoutError,
    ExecutionError,
    ImporterError,
    ResolutionWarning,
)
from artwork_app.importer.metrics import record_import_action, record_import_batch, record_match_confidence
from artwork_app.importer.pipeline.artist_resolver import ArtistLookupSnapshot, ArtistResolver
from artwork_app.importer.pipeline.audit import AuditCollector, AuditEntry, BatchReport, finalize
from artwork_app.importer.pipeline.decision import Create, FlagAmbiguous, MergeInto, decide
from artwork_app.importer.pipeline.executor import ACTION_ERROR, ACTION_SKIPPED, TransactionExecutor
from artwork_app.importer.pipeline.normalize import ImportRecord, RecordRejected, normalize
from artwork_app.importer.pipeline.run_service import ImportRunService
from artwork_app.importer.pipeline.scoring import DuplicateCandidate, rank_candidates, score
from artwork_app.importer.pipeline.spatial import SpatialCandidateIndex
from artwork_app.importer.pipeline.store import ArtworkSnapshot, ArtworkStore
from artwork_app.utils.importer import build_import_config
from config.importer import ImportConfig
from config.survivorship import SurvivorshipProfile, load_profile

REASON_NO_CANDIDATES = "no_candidates_in_range"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_AMBIGUOUS = "ambiguous"
REASON_COORDINATES_MISSING = "coordinates_missing"

MAX_CONTEXT_CANDIDATES = 5


class ExternalIdLocks:
    """
    One lock per ``(source, external_id)`` seen in a batch.

    Records sharing an external id run one after another, so the second sees
    the artwork the first committed instead of creating its own.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}

    @contextmanager
    def hold(self, source: str, external_id: str | None) -> Iterator[None]:
        if not external_id:
            yield
            return
        with self._guard:
            lock = self._locks.setdefault((source, external_id), threading.Lock())
        with lock:
            yield


@dataclass(frozen=True)
class BatchContext:
    """Immutable state shared by every worker of one batch."""

    app: Flask
    import_id: str
    run_id: int
    config: ImportConfig
    lookup: ArtistLookupSnapshot
    profile: SurvivorshipProfile
    deadline: float
    clock: Callable[[], float]
    collector: AuditCollector
    external_id_locks: ExternalIdLocks = field(default_factory=ExternalIdLocks)


@dataclass(frozen=True)
class ScoredCandidates:
    ranked: tuple[DuplicateCandidate, ...]
    snapshots: Mapping[int, ArtworkSnapshot]
    skipped_coordinate_merge: bool


def _log(level: str, message: str, **extra: Any) -> None:
    getattr(current_app.logger, level)(message, extra={f"importer_{key}": value for key, value in extra.items()})


def _score_candidates(
    store: ArtworkStore,
    record: ImportRecord,
    artist_ids: Sequence[int],
    config: ImportConfig,
) -> ScoredCandidates:
    snapshots: dict[int, ArtworkSnapshot] = {}
    candidates: list[DuplicateCandidate] = []

    def _add(artwork_id: int, distance: float | None) -> None:
        snapshot = store.get_artwork_by_id(artwork_id)
        if snapshot is None:
            return
        snapshots[artwork_id] = snapshot
        candidates.append(
            score(
                record,
                snapshot,
                distance,
                resolved_artist_ids=artist_ids,
                weights=config.weights,
                thresholds=config.spatial_thresholds,
            )
        )

    skipped_coordinate_merge = not record.has_coordinates
    if record.has_coordinates:
        index = SpatialCandidateIndex(store, config.spatial_thresholds)
        for artwork_id, distance in index.find_nearby(record.lat, record.lon):
            _add(artwork_id, distance)

    # An external-id match applies at any distance, and without coordinates.
    owner = store.find_artwork_by_external_id(record.source, record.external_id)
    if owner is not None and owner not in snapshots:
        _add(owner, None)

    return ScoredCandidates(
        ranked=tuple(rank_candidates(candidates)),
        snapshots=snapshots,
        skipped_coordinate_merge=skipped_coordinate_merge,
    )


def _context_candidates(ranked: Iterable[DuplicateCandidate], exclude: int | None) -> tuple[dict[str, Any], ...]:
    others = [candidate.to_dict() for candidate in ranked if candidate.artwork_id != exclude]
    return tuple(others[:MAX_CONTEXT_CANDIDATES])


def _process_record(ctx: BatchContext, record: ImportRecord) -> AuditEntry:
    config = ctx.config
    store = ArtworkStore(run_id=ctx.run_id)
    executor = TransactionExecutor(store, profile=ctx.profile, dry_run=config.dry_run)
    resolver = ArtistResolver(
        store,
        import_id=ctx.import_id,
        similarity_threshold=config.artist_similarity_threshold,
    )

    with executor.transaction():
        resolution = resolver.resolve(
            record.artist_names,
            ctx.lookup,
            config.create_missing_artists,
            record_index=record.record_index,
            artist_source_url=record.artist_source_url,
        )
        artist_ids = resolution.artist_ids
        scored = _score_candidates(store, record, artist_ids, config)
        best = scored.ranked[0] if scored.ranked else None
        decision = decide(
            record,
            best,
            config.merge_confidence_threshold,
            ranked=scored.ranked,
            ambiguity_margin=config.ambiguity_margin,
        )
        target_id = decision.artwork_id if isinstance(decision, MergeInto) else None
        result = executor.apply(
            decision,
            record,
            artist_ids,
            candidate_artwork=scored.snapshots.get(target_id) if target_id is not None else None,
        )

    warnings = [*record.warnings, *resolution.warnings, *result.warnings]
    if best is not None:
        record_match_confidence(best.confidence)

    if isinstance(decision, MergeInto):
        matched_reason = decision.candidate.matched_reason
        matched_artwork_id = decision.artwork_id
    elif isinstance(decision, FlagAmbiguous):
        matched_reason = REASON_AMBIGUOUS
        matched_artwork_id = None
    elif isinstance(decision, Create) and decision.near_miss is not None:
        near_miss = decision.near_miss
        matched_reason = REASON_BELOW_THRESHOLD
        matched_artwork_id = None
        warnings.append(
            ResolutionWarning(
                field="artwork",
                code=NEAR_MISS,
                message=(
                    f"Artwork {near_miss.artwork_id} scored {near_miss.confidence:.2f} "
                    f"({near_miss.matched_reason}), below threshold {config.merge_confidence_threshold:.2f}."
                ),
            )
        )
    else:
        matched_reason = REASON_COORDINATES_MISSING if scored.skipped_coordinate_merge else REASON_NO_CANDIDATES
        matched_artwork_id = None

    return AuditEntry(
        import_id=ctx.import_id,
        record_index=record.record_index,
        action=result.action,
        confidence=best.confidence if best is not None else None,
        matched_artwork_id=matched_artwork_id,
        resulting_artwork_id=result.artwork_id,
        matched_reason=matched_reason,
        reason=result.reason,
        field_changes=result.field_changes,
        warnings=tuple(warnings),
        tags_conflict_count=result.tags_conflict_count,
        skipped_coordinate_merge=scored.skipped_coordinate_merge,
        candidates=_context_candidates(scored.ranked, matched_artwork_id),
    )


def _error_entry(ctx: BatchContext, record_index: int, errors: Sequence[str], **kwargs: Any) -> AuditEntry:
    return AuditEntry(
        import_id=ctx.import_id,
        record_index=record_index,
        action=ACTION_ERROR,
        errors=tuple(errors),
        **kwargs,
    )


def _check_deadline(ctx: BatchContext, record_index: int) -> None:
    if ctx.clock() >= ctx.deadline:
        raise BatchTimeoutError(record_index)


def _handle_record(ctx: BatchContext, record_index: int, raw: Any) -> AuditEntry:
    try:
        _check_deadline(ctx, record_index)
    except BatchTimeoutError:
        return AuditEntry(import_id=ctx.import_id, record_index=record_index, action=ACTION_SKIPPED, reason=BATCH_TIMEOUT)

    outcome = normalize(
        raw,
        record_index,
        default_source=ctx.config.source,
        allow_missing_coordinates=ctx.config.allow_missing_coordinates,
    )
    if isinstance(outcome, RecordRejected):
        _log(
            "info",
            "Importer rejected record",
            import_id=ctx.import_id,
            record_index=record_index,
            error_code=outcome.error.code,
            error_message=outcome.error.message,
        )
        return _error_entry(ctx, record_index, [outcome.error.code])

    record = outcome.record
    try:
        with ctx.external_id_locks.hold(record.source, record.external_id):
            return _process_record(ctx, record)
    except ExecutionError as exc:
        failure = exc.audit_message
    except (ImporterError, SQLAlchemyError, LookupError) as exc:
        failure = f"{EXECUTION_ERROR}: {exc}"
    except Exception as exc:
        current_app.logger.exception(
            "Importer record failed unexpectedly",
            extra={"importer_import_id": ctx.import_id, "importer_record_index": record_index},
        )
        failure = f"{EXECUTION_ERROR}: {type(exc).__name__}: {exc}"

    _log("warning", "Importer record failed", import_id=ctx.import_id, record_index=record_index, error=failure)
    return _error_entry(
        ctx,
        record_index,
        [failure],
        warnings=tuple(record.warnings),
        skipped_coordinate_merge=not record.has_coordinates,
    )


def _persist_audit_entry(ctx: BatchContext, entry: AuditEntry) -> None:
    if ctx.config.dry_run:
        return
    store = ArtworkStore(run_id=ctx.run_id)
    try:
        store.append_audit_entry(entry)
        store.session.commit()
    except SQLAlchemyError:
        store.session.rollback()
        current_app.logger.exception(
            "Importer failed to persist audit entry",
            extra={"importer_import_id": ctx.import_id, "importer_record_index": entry.record_index},
        )


def _worker(ctx: BatchContext, record_index: int, raw: Any) -> None:
    with ctx.app.app_context():
        entry = _handle_record(ctx, record_index, raw)
        _persist_audit_entry(ctx, entry)
        ctx.collector.append(entry)
        record_import_action(entry.action)


def run_import(
    import_id: str,
    records: Sequence[Any],
    config: ImportConfig | Mapping[str, Any] | None = None,
    *,
    app: Flask | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> BatchReport:
    """
    Import one batch and return its report.

    ``config`` may be an ``ImportConfig`` or a mapping of overrides applied on
    top of the app's ``IMPORTER_*`` settings. Raises only before the batch
    starts: ``ImportConfigError`` for bad settings and
    ``DuplicateImportError`` when ``import_id`` was already used.
    """

    if not import_id or not str(import_id).strip():
        raise ValueError("import_id is required.")
    app = app or current_app._get_current_object()
    records = list(records)

    with app.app_context():
        if not isinstance(config, ImportConfig):
            config = build_import_config(config, app=app)
        profile = load_profile(app.config)

        run_service = ImportRunService()
        run = run_service.start_run(
            import_id,
            source=config.source,
            record_count=len(records),
            dry_run=config.dry_run,
            config=config.to_dict(),
        )
        run_id = run.id
        lookup = ArtworkStore(run_id=run_id).load_artist_snapshot()

        started_at = datetime.now(timezone.utc)
        start = clock()
        ctx = BatchContext(
            app=app,
            import_id=import_id,
            run_id=run_id,
            config=config,
            lookup=lookup,
            profile=profile,
            deadline=start + config.batch_timeout_seconds,
            clock=clock,
            collector=AuditCollector(import_id),
        )
        _log(
            "info",
            "Importer batch started",
            import_id=import_id,
            run_id=run_id,
            record_count=len(records),
            max_workers=config.max_workers,
            dry_run=config.dry_run,
        )

        try:
            with ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="artwork-import") as pool:
                futures = [pool.submit(_worker, ctx, index, raw) for index, raw in enumerate(records)]
                for future in futures:
                    future.result()
        except Exception as exc:
            run_service.fail_run(run_id, f"{type(exc).__name__}: {exc}")
            record_import_batch(status="failed", duration_seconds=clock() - start)
            raise

        duration = clock() - start
        report = finalize(
            import_id,
            ctx.collector.entries(),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            dry_run=config.dry_run,
        )
        finished = run_service.finish_run(
            run_id,
            report,
            duration_seconds=duration,
            worker_count=config.max_workers,
        )
        status = finished.status.value
        record_import_batch(status=status, duration_seconds=duration, timed_out=report.timed_out)
        _log(
            "info",
            "Importer batch finished",
            import_id=import_id,
            run_id=run_id,
            status=status,
            totals=report.totals.to_dict(),
            duration_seconds=round(duration, 3),
            timed_out=report.timed_out,
        )
        return report


__all__ = [
    "BatchContext",
    "ExternalIdLocks",
    "run_import",
]
