"""
Celery wiring for background artwork imports.

A worker is only built once the importer is enabled. Without explicit broker
settings the worker falls back to a SQLite transport in the instance folder,
which is enough to queue batches on a single machine.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
# Seconds a task may keep running after the batch deadline while in-flight
# records finish and the report is written.
TASK_GRACE_SECONDS = 120

_NOISY_LOGGERS = ("celery.worker.strategy", "kombu.transport.virtual")


@dataclass(frozen=True)
class WorkerSettings:
    broker_url: str
    result_backend: str
    queue: str
    soft_time_limit: int
    time_limit: int
    extra: Mapping[str, Any] | None = None


def _sqlite_transport_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    instance_dir = Path(app.instance_path)
    if not configured:
        path = instance_dir / DEFAULT_SQLITE_FILENAME
    else:
        path = Path(configured)
        if not path.is_absolute():
            path = instance_dir / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _parse_extra_conf(app: Flask) -> Mapping[str, Any] | None:
    raw = app.config.get("CELERY_CONFIG")
    if not raw:
        return None
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
        return None
    if not isinstance(parsed, dict):
        app.logger.warning("CELERY_CONFIG must decode to an object; ignoring value.")
        return None
    return parsed


def resolve_worker_settings(app: Flask) -> WorkerSettings:
    """
    Collect broker, queue and time-limit settings from the Flask config.

    Time limits default to the batch deadline plus ``TASK_GRACE_SECONDS`` so a
    worker never kills a batch that is still inside its own deadline.
    """

    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker_url and result_backend):
        # Celery expects forward slashes even on Windows.
        sqlite_file = _sqlite_transport_path(app).as_posix()
        broker_url = broker_url or f"sqla+sqlite:///{sqlite_file}"
        result_backend = result_backend or f"db+sqlite:///{sqlite_file}"

    batch_timeout = int(app.config.get("IMPORTER_BATCH_TIMEOUT_SECONDS", 60))
    soft_limit = int(app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT") or batch_timeout + TASK_GRACE_SECONDS)
    hard_limit = int(app.config.get("IMPORTER_TASK_TIME_LIMIT") or soft_limit + 60)
    return WorkerSettings(
        broker_url=broker_url,
        result_backend=result_backend,
        queue=app.config.get("IMPORTER_QUEUE_NAME") or DEFAULT_QUEUE_NAME,
        soft_time_limit=soft_limit,
        time_limit=max(hard_limit, soft_limit),
        extra=_parse_extra_conf(app),
    )


def create_celery_app(app: Flask) -> Celery:
    """Build a Celery app whose tasks run inside ``app``'s context."""

    settings = resolve_worker_settings(app)
    celery_app = Celery(
        app.import_name,
        broker=settings.broker_url,
        backend=settings.result_backend,
        include=("artwork_app.importer.tasks",),
    )
    celery_app.conf.update(
        task_default_queue=settings.queue,
        task_default_exchange=settings.queue,
        task_default_routing_key=settings.queue,
        task_queues=[Queue(settings.queue)],
        # One batch at a time per worker process; a batch already fans out to
        # its own thread pool.
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_track_started=True,
        result_extended=True,
        broker_connection_retry_on_startup=True,
        task_soft_time_limit=settings.soft_time_limit,
        task_time_limit=settings.time_limit,
        worker_hijack_root_logger=False,
        worker_task_log_format="[%(asctime)s: %(levelname)s][%(task_name)s(%(task_id)s)] %(message)s",
    )
    if settings.extra:
        celery_app.conf.update(settings.extra)

    app.logger.info(
        "Importer worker configured",
        extra={
            "importer_celery_broker_url": settings.broker_url,
            "importer_celery_queue": settings.queue,
            "importer_celery_time_limit": settings.time_limit,
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = state["celery_app"] = create_celery_app(app)
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Return the importer's Celery app, or ``None`` when the importer is off."""

    state: dict[str, Any] | None = app.extensions.get("importer")  # type: ignore[arg-type]
    if not state or not state.get("enabled"):
        return state.get("celery_app") if state else None
    return ensure_celery_app(app, state)


__all__ = [
    "DEFAULT_QUEUE_NAME",
    "WorkerSettings",
    "create_celery_app",
    "ensure_celery_app",
    "get_celery_app",
    "resolve_worker_settings",
]
