"""
Importer Celery tasks.

Tasks only read input and hand it to ``run_import``; the Celery app wraps each
call in a Flask application context.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from celery import shared_task
from flask import current_app

from artwork_app.importer.pipeline import run_import
from artwork_app.importer.utils import load_records


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
        "app_version": getattr(self.app, "user_options", {}).get("version"),
    }


@shared_task(name="importer.pipeline.run_artwork_import", bind=True)
def run_artwork_import(
    self,
    *,
    import_id: str,
    file_path: str | None = None,
    records: Sequence[Mapping[str, Any]] | None = None,
    config_overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Run one artwork batch on the importer worker and return the report payload.

    Exactly one of ``file_path`` and ``records`` must be given.
    """

    if (file_path is None) == (records is None):
        raise ValueError("Provide exactly one of file_path or records.")
    batch = load_records(file_path) if file_path is not None else list(records or ())

    current_app.logger.info(
        "Importer task received batch",
        extra={
            "importer_import_id": import_id,
            "importer_task_id": getattr(self.request, "id", None),
            "importer_record_count": len(batch),
            "importer_file_path": file_path,
        },
    )
    report = run_import(import_id, batch, dict(config_overrides or {}))
    return report.to_dict()


__all__ = ["importer_healthcheck", "run_artwork_import"]
