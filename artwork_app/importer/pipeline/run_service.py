"""
Service helpers for import run bookkeeping and querying.

The batch controller opens and closes runs through ``ImportRunService``; the
CLI and worker use it to list runs and rebuild a ``BatchReport`` from the
durable audit log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import and_
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from artwork_app.importer.errors import BATCH_TIMEOUT, DuplicateImportError
from artwork_app.importer.pipeline.audit import AuditEntry, BatchReport, finalize
from artwork_app.models import ImportAuditEntry, ImportRun, ImportRunStatus, db

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "-started_at"

VALID_SORT_FIELDS = {
    "id": ImportRun.id,
    "import_id": ImportRun.import_id,
    "source": ImportRun.source,
    "status": ImportRun.status,
    "started_at": ImportRun.started_at,
    "finished_at": ImportRun.finished_at,
}


@dataclass(frozen=True)
class RunFilters:
    """Canonical set of filter options applied to import run queries."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = DEFAULT_SORT
    statuses: tuple[ImportRunStatus, ...] = field(default_factory=tuple)
    sources: tuple[str, ...] = field(default_factory=tuple)
    include_dry_runs: bool = True

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        sort: str | None = None,
        statuses: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        include_dry_runs: bool = True,
    ) -> "RunFilters":
        resolved_sort = sort or DEFAULT_SORT
        if resolved_sort.lstrip("-") not in VALID_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{resolved_sort.lstrip('-')}'.")
        return cls(
            page=_coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE),
            sort=resolved_sort,
            statuses=tuple(_coerce_status(value) for value in (statuses or ()) if value),
            sources=tuple(sorted({value.strip() for value in (sources or ()) if value and value.strip()})),
            include_dry_runs=include_dry_runs,
        )


@dataclass(slots=True)
class RunSummary:
    """Summarized representation of an import run."""

    import_id: str
    source: str
    status: str
    dry_run: bool
    record_count: int
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None
    totals: Mapping[str, int]
    timed_out: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "importId": self.import_id,
            "source": self.source,
            "status": self.status,
            "dryRun": self.dry_run,
            "recordCount": self.record_count,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationSeconds": self.duration_seconds,
            "totals": dict(self.totals),
            "timedOut": self.timed_out,
        }


@dataclass(slots=True)
class RunListResult:
    items: list[RunSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


def resolve_run_status(report: BatchReport) -> ImportRunStatus:
    """
    ``failed`` when every attempted record errored, ``partially_failed`` when
    some did, otherwise ``succeeded``. Records skipped by the deadline were
    never attempted.
    """

    attempted = sum(1 for entry in report.records if entry.reason != BATCH_TIMEOUT)
    errors = report.totals.errors
    if errors and errors >= attempted:
        return ImportRunStatus.FAILED
    if errors:
        return ImportRunStatus.PARTIALLY_FAILED
    return ImportRunStatus.SUCCEEDED


class ImportRunService:
    """Facade over ``ImportRun`` rows and their audit entries."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def start_run(
        self,
        import_id: str,
        *,
        source: str,
        record_count: int,
        dry_run: bool = False,
        config: Mapping[str, Any] | None = None,
    ) -> ImportRun:
        """Create the run row in ``running`` state; an ``import_id`` is single-use."""

        if self.session.query(ImportRun.id).filter_by(import_id=import_id).first() is not None:
            raise DuplicateImportError(import_id)
        run = ImportRun(
            import_id=import_id,
            source=source,
            status=ImportRunStatus.RUNNING,
            dry_run=dry_run,
            record_count=record_count,
            started_at=datetime.now(timezone.utc),
            config_json=dict(config) if config else None,
        )
        self.session.add(run)
        self.session.commit()
        return run

    def finish_run(
        self,
        run_id: int,
        report: BatchReport,
        *,
        duration_seconds: float,
        worker_count: int,
    ) -> ImportRun:
        run = self.session.get(ImportRun, run_id)
        if run is None:
            raise NoResultFound(f"Import run {run_id} not found.")
        run.status = resolve_run_status(report)
        run.finished_at = datetime.now(timezone.utc)
        run.counts_json = report.totals.to_dict()
        run.metrics_json = {
            "duration_seconds": round(duration_seconds, 3),
            "timed_out": report.timed_out,
            "worker_count": worker_count,
        }
        failed = [entry for entry in report.records if entry.action == "error"]
        run.error_summary = (
            "; ".join(f"record {entry.record_index}: {', '.join(entry.errors)}" for entry in failed[:10]) or None
        )
        self.session.commit()
        return run

    def fail_run(self, run_id: int, message: str) -> None:
        """Mark a run ``failed`` after an unexpected batch-level exception."""

        self.session.rollback()
        run = self.session.get(ImportRun, run_id)
        if run is None:
            return
        run.status = ImportRunStatus.FAILED
        run.finished_at = datetime.now(timezone.utc)
        run.error_summary = message[:2000]
        self.session.commit()

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    def get_run(self, import_id: str) -> ImportRun:
        run = self.session.query(ImportRun).filter(ImportRun.import_id == import_id).one_or_none()
        if run is None:
            raise NoResultFound(f"Import run '{import_id}' not found.")
        return run

    def list_runs(self, filters: RunFilters | None = None) -> RunListResult:
        filters = filters or RunFilters()
        query = self._apply_filters(self.session.query(ImportRun), filters)

        total = query.count()
        if total == 0:
            return RunListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        rows = (
            query.order_by(_resolve_sort_expression(filters.sort), ImportRun.id.asc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return RunListResult(
            items=[self.summarize(run) for run in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
        )

    def summarize(self, run: ImportRun) -> RunSummary:
        metrics = run.metrics_json or {}
        duration = metrics.get("duration_seconds")
        if duration is None and run.started_at and run.finished_at:
            duration = (run.finished_at - run.started_at).total_seconds()
        status = run.status.value if isinstance(run.status, ImportRunStatus) else str(run.status)
        return RunSummary(
            import_id=run.import_id,
            source=run.source,
            status=status,
            dry_run=bool(run.dry_run),
            record_count=run.record_count or 0,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_seconds=duration,
            totals=dict(run.counts_json or {}),
            timed_out=bool(metrics.get("timed_out", False)),
        )

    def get_report(self, import_id: str) -> BatchReport:
        """Rebuild the batch report from persisted audit entries."""

        run = self.get_run(import_id)
        rows = (
            self.session.query(ImportAuditEntry)
            .filter(ImportAuditEntry.import_id == import_id)
            .order_by(ImportAuditEntry.record_index.asc())
            .all()
        )
        entries = [AuditEntry.from_row(row) for row in rows]
        started_at = run.started_at or run.created_at
        return finalize(
            import_id,
            entries,
            started_at=started_at,
            finished_at=run.finished_at or started_at,
            dry_run=bool(run.dry_run),
        )

    def _apply_filters(self, query, filters: RunFilters):
        predicates = []
        if filters.statuses:
            predicates.append(ImportRun.status.in_(filters.statuses))
        if filters.sources:
            predicates.append(ImportRun.source.in_(filters.sources))
        if not filters.include_dry_runs:
            predicates.append(ImportRun.dry_run.is_(False))
        if predicates:
            query = query.filter(and_(*predicates))
        return query


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.isdigit():
        return max(1, int(candidate))
    raise ValueError(f"Expected positive integer for pagination, received '{candidate}'.")


def _coerce_status(value: str | ImportRunStatus) -> ImportRunStatus:
    if isinstance(value, ImportRunStatus):
        return value
    try:
        return ImportRunStatus(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None


def _resolve_sort_expression(sort: str):
    descending = sort.startswith("-")
    expression = VALID_SORT_FIELDS.get(sort.lstrip("-"))
    if expression is None:
        raise ValueError(f"Unsupported sort field '{sort}'.")
    return expression.desc() if descending else expression.asc()


__all__ = [
    "ImportRunService",
    "RunFilters",
    "RunListResult",
    "RunSummary",
    "resolve_run_status",
]
