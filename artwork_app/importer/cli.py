"""
CLI commands for artwork imports.

``flask importer run`` executes a batch inline (or queues it on the worker
with ``--async``) and prints the batch report as JSON. ``report`` and
``runs`` read back persisted runs.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo
from sqlalchemy.exc import NoResultFound

from artwork_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from artwork_app.importer.errors import DuplicateImportError
from artwork_app.importer.pipeline import ImportRunService, RunFilters, run_import
from artwork_app.importer.utils import BatchFileError, load_records
from artwork_app.utils.importer import build_import_config, is_importer_enabled
from config.importer import ImportConfigError


@click.group(name="importer")
@click.pass_context
def importer_cli(ctx):
    """Artwork import commands."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Optional[Celery]:
    """
    Retrieve the registered Celery instance, raising a helpful error if missing.
    """
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _generate_import_id() -> str:
    return f"cli-{datetime.now(timezone.utc):%Y%m%dT%H%M%S}-{uuid4().hex[:8]}"


def _collect_overrides(**options: Any) -> dict[str, Any]:
    return {name: value for name, value in options.items() if value is not None}


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get("importer", {})
    if not state.get("worker_enabled") and not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    app.extensions.setdefault("importer", {})["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("run")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Batch file (.json, .jsonl or .csv).",
)
@click.option("--import-id", help="Batch identifier; generated when omitted. Each identifier runs once.")
@click.option("--source", help="Source system that scopes external ids in this batch.")
@click.option(
    "--create-missing-artists/--no-create-missing-artists",
    default=None,
    help="Create artists that cannot be matched (defaults to IMPORTER_CREATE_MISSING_ARTISTS).",
)
@click.option("--threshold", type=float, help="Merge confidence threshold (0-1).")
@click.option("--max-workers", type=int, help="Worker threads for the batch (1-8).")
@click.option("--timeout", "timeout_seconds", type=int, help="Batch deadline in seconds.")
@click.option("--allow-missing-coordinates", is_flag=True, help="Accept records without coordinates.")
@click.option("--dry-run", is_flag=True, help="Run every decision but roll back all writes.")
@click.option("--async", "run_async", is_flag=True, help="Queue the batch on the importer worker instead.")
@click.pass_context
def importer_run(
    ctx,
    file_path: Path,
    import_id: Optional[str],
    source: Optional[str],
    create_missing_artists: Optional[bool],
    threshold: Optional[float],
    max_workers: Optional[int],
    timeout_seconds: Optional[int],
    allow_missing_coordinates: bool,
    dry_run: bool,
    run_async: bool,
):
    """Import an artwork batch file and print the batch report."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()

    import_id = import_id or _generate_import_id()
    overrides = _collect_overrides(
        source=source,
        create_missing_artists=create_missing_artists,
        merge_confidence_threshold=threshold,
        max_workers=max_workers,
        batch_timeout_seconds=timeout_seconds,
        allow_missing_coordinates=allow_missing_coordinates or None,
        dry_run=dry_run or None,
    )
    try:
        build_import_config(overrides, app=app)
    except ImportConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if run_async:
        celery_app = _resolve_celery(app)
        async_result = celery_app.send_task(
            "importer.pipeline.run_artwork_import",
            kwargs={
                "import_id": import_id,
                "file_path": str(file_path.resolve()),
                "config_overrides": overrides,
            },
        )
        app.logger.info(
            "Importer batch queued via CLI",
            extra={"importer_import_id": import_id, "importer_task_id": async_result.id},
        )
        click.echo(json.dumps({"importId": import_id, "taskId": async_result.id, "status": "queued"}))
        return

    try:
        records = load_records(file_path)
    except BatchFileError as exc:
        raise click.ClickException(str(exc)) from exc

    with app.app_context():
        try:
            report = run_import(import_id, records, overrides, app=app)
        except (DuplicateImportError, ImportConfigError) as exc:
            raise click.ClickException(str(exc)) from exc

    click.echo(json.dumps(report.to_dict(), indent=2, default=str))


@importer_cli.command("report")
@click.argument("import_id")
@click.pass_context
def importer_report(ctx, import_id: str):
    """Print the persisted report for IMPORT_ID."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            report = ImportRunService().get_report(import_id)
        except NoResultFound as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(report.to_dict(), indent=2, default=str))


@importer_cli.command("runs")
@click.option("--status", "statuses", multiple=True, help="Filter by run status (repeatable).")
@click.option("--limit", default=25, show_default=True, type=int)
@click.pass_context
def importer_runs(ctx, statuses: tuple[str, ...], limit: int):
    """List recent import runs."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    try:
        filters = RunFilters.coerce(page_size=limit, statuses=statuses)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    with app.app_context():
        result = ImportRunService().list_runs(filters)
    click.echo(json.dumps([item.to_dict() for item in result.items], indent=2, default=str))


__all__ = ["get_disabled_importer_group", "importer_cli"]
