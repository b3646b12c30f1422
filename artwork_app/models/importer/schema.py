"""
SQLAlchemy models for importer bookkeeping.

``ImportRun`` tracks one batch, ``ImportAuditEntry`` is the append-only
per-record log, ``ExternalIdMap`` backs identifier-based idempotency, and
``MergeLog`` keeps before/after snapshots of every merge.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class ImportRun(BaseModel):
    """Metadata describing a single batch import."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    import_id: Mapped[str] = mapped_column(db.String(100), nullable=False, unique=True, index=True)
    source: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    record_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    metrics_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    config_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Effective ImportConfig used for the batch.",
    )
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    audit_entries = relationship(
        "ImportAuditEntry",
        back_populates="import_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ImportAuditEntry.record_index",
    )
    merge_events = relationship(
        "MergeLog",
        back_populates="import_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("idx_import_runs_source_status", "source", "status"),)


class ImportAuditEntry(BaseModel):
    """Durable, append-only record of what happened to one input record."""

    __tablename__ = "import_audit_entries"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int | None] = mapped_column(
        ForeignKey("import_runs.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    import_id: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    record_index: Mapped[int] = mapped_column(db.Integer, nullable=False)
    action: Mapped[str] = mapped_column(db.String(20), nullable=False, index=True)
    confidence: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    matched_artwork_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    resulting_artwork_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    matched_reason: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    field_changes: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    warnings: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    details_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Candidate context, tag conflict count, coordinate skip flag.",
    )
    recorded_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    import_run = relationship("ImportRun", back_populates="audit_entries")

    __table_args__ = (
        UniqueConstraint("import_id", "record_index", name="uq_import_audit_entries_record"),
        CheckConstraint(
            "action IN ('created', 'updated', 'merged', 'skipped', 'duplicate', 'error')",
            name="ck_import_audit_entries_action",
        ),
    )


class ExternalIdMap(BaseModel):
    """Maps source-scoped external IDs to catalog entities to support idempotency."""

    __tablename__ = "external_id_map"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    entity_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    external_system: Mapped[str] = mapped_column(db.String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
    run_id: Mapped[int | None] = mapped_column(ForeignKey("import_runs.id", ondelete="SET NULL"), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "external_system",
            "external_id",
            name="uq_external_id_map_entity",
        ),
        Index(
            "idx_external_id_map_entity",
            "entity_type",
            "entity_id",
        ),
    )

    def mark_seen(
        self,
        *,
        run_id: int | None = None,
        seen_at: datetime | None = None,
    ) -> None:
        """Update bookkeeping for an external identifier that was observed again."""

        self.last_seen_at = seen_at or datetime.now(timezone.utc)
        if run_id is not None:
            self.run_id = run_id


class MergeLog(BaseModel):
    """Auditable record of an import record merged into an existing artwork."""

    __tablename__ = "merge_log"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int | None] = mapped_column(
        ForeignKey("import_runs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    artwork_id: Mapped[int] = mapped_column(
        ForeignKey("artworks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    record_index: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    decision_type: Mapped[str] = mapped_column(db.String(50), nullable=False, default="score")
    confidence: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    snapshot_before: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    snapshot_after: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Merge metadata (score breakdown, survivorship decisions, tag conflicts).",
    )

    import_run = relationship("ImportRun", back_populates="merge_events")
    artwork = relationship("Artwork")


__all__ = [
    "ExternalIdMap",
    "ImportAuditEntry",
    "ImportRun",
    "ImportRunStatus",
    "MergeLog",
]
