"""
Importer-specific SQLAlchemy models: runs, the per-record audit log,
external ID mapping, and merge history.
"""

from .schema import ExternalIdMap, ImportAuditEntry, ImportRun, ImportRunStatus, MergeLog

__all__ = [
    "ExternalIdMap",
    "ImportAuditEntry",
    "ImportRun",
    "ImportRunStatus",
    "MergeLog",
]
