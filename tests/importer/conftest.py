from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from artwork_app.models import ImportAuditEntry, ImportRun, ImportRunStatus, db


@pytest.fixture
def run_factory(app):
    created_runs: list[ImportRun] = []

    def _factory(
        *,
        import_id: str | None = None,
        source: str = "vancouver",
        status: ImportRunStatus = ImportRunStatus.SUCCEEDED,
        started_offset_minutes: int = 0,
        duration_seconds: int = 120,
        dry_run: bool = False,
        totals: dict | None = None,
    ) -> ImportRun:
        now = datetime.now(timezone.utc)
        started_at = now.replace(microsecond=0) - timedelta(minutes=started_offset_minutes)
        finished_at = started_at + timedelta(seconds=duration_seconds)
        run = ImportRun(
            import_id=import_id or f"run-{len(created_runs)}",
            source=source,
            status=status,
            dry_run=dry_run,
            record_count=sum((totals or {}).values()),
            started_at=started_at,
            finished_at=finished_at,
            counts_json=totals or {"created": 0, "updated": 0, "merged": 0, "skipped": 0, "duplicates": 0, "errors": 0},
            metrics_json={"duration_seconds": float(duration_seconds), "timed_out": False, "worker_count": 4},
        )
        db.session.add(run)
        db.session.commit()
        created_runs.append(run)
        return run

    yield _factory

    db.session.query(ImportAuditEntry).delete()
    for run in created_runs:
        db.session.delete(run)
    db.session.commit()
