"""
Importer feature package.

Registers the ``flask importer`` CLI group and, when the importer is enabled,
the Celery worker app. State lives in ``app.extensions['importer']``.
"""

from __future__ import annotations

from flask import Flask

from artwork_app.utils.importer import is_importer_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .pipeline import BatchReport, ImportRunService, RunFilters, run_import

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "BatchReport",
    "ImportRunService",
    "RunFilters",
    "get_celery_app",
    "init_importer",
    "run_import",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Wire the importer into ``app`` based on ``IMPORTER_ENABLED``.
    """
    enabled = is_importer_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("IMPORTER_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)
    _set_cli(app, enabled=True)
    app.logger.info(
        "Importer enabled",
        extra={
            "importer_worker_enabled": state["worker_enabled"],
            "importer_max_workers": app.config.get("IMPORTER_MAX_WORKERS"),
        },
    )
