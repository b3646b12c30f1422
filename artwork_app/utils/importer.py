"""
Utility helpers for importer feature flag checks and per-batch config.
"""

from __future__ import annotations

from typing import Any, Mapping

from flask import current_app

from config.importer import ImportConfig


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def build_import_config(overrides: Mapping[str, Any] | None = None, app=None) -> ImportConfig:
    """Resolve an ``ImportConfig`` from app settings plus per-batch overrides."""
    return ImportConfig.from_app_config(_get_config(app), overrides)
