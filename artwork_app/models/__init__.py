# artwork_app/models/__init__.py
"""
Database models package
"""

from .artwork import Artist, Artwork, artwork_artists
from .base import BaseModel, db
from .importer import ExternalIdMap, ImportAuditEntry, ImportRun, ImportRunStatus, MergeLog

__all__ = [
    "db",
    "BaseModel",
    "Artist",
    "Artwork",
    "artwork_artists",
    "ExternalIdMap",
    "ImportAuditEntry",
    "ImportRun",
    "ImportRunStatus",
    "MergeLog",
]
