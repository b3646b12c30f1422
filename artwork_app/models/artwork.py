"""
Catalog entities the importer reads and writes.

Artworks and artists are the authoritative store. External identifiers for
both live in ``ExternalIdMap`` (see ``models.importer.schema``) so the same
idempotency lookup serves every entity type.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db

artwork_artists = db.Table(
    "artwork_artists",
    db.Column("artwork_id", db.Integer, ForeignKey("artworks.id", ondelete="CASCADE"), primary_key=True),
    db.Column("artist_id", db.Integer, ForeignKey("artists.id", ondelete="CASCADE"), primary_key=True),
    db.Column(
        "linked_at",
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    ),
)


class Artwork(BaseModel):
    """A physical art object at a location."""

    __tablename__ = "artworks"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    lat: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    tags: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    source_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)

    artists = relationship(
        "Artist",
        secondary=artwork_artists,
        back_populates="artworks",
        order_by="Artist.id",
    )

    __table_args__ = (
        CheckConstraint("lat IS NULL OR (lat >= -90 AND lat <= 90)", name="ck_artworks_lat_range"),
        CheckConstraint("lon IS NULL OR (lon >= -180 AND lon <= 180)", name="ck_artworks_lon_range"),
        Index("idx_artworks_lat_lon", "lat", "lon"),
    )

    @property
    def artist_ids(self) -> tuple[int, ...]:
        return tuple(artist.id for artist in self.artists)

    def __repr__(self) -> str:
        return f"<Artwork {self.id} {self.title!r}>"


class Artist(BaseModel):
    """A person or collective credited on artworks."""

    __tablename__ = "artists"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    canonical_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    canonical_key: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    aliases: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True, index=True)
    provenance: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Import provenance for auto-created artists (autoCreatedFromImport, sourceRecordIndex).",
    )

    artworks = relationship("Artwork", secondary=artwork_artists, back_populates="artists")

    __table_args__ = (CheckConstraint("canonical_name <> ''", name="ck_artists_name_non_empty"),)

    def add_alias(self, name: str) -> bool:
        """Record an alternate spelling. Returns True when the alias is new."""

        cleaned = (name or "").strip()
        if not cleaned or cleaned == self.canonical_name or cleaned in (self.aliases or []):
            return False
        # Reassign so the JSON column is flagged dirty.
        self.aliases = [*(self.aliases or []), cleaned]
        return True

    def append_note(self, text: str) -> None:
        cleaned = (text or "").strip()
        if not cleaned:
            return
        self.notes = f"{self.notes}\n{cleaned}" if self.notes else cleaned

    def __repr__(self) -> str:
        return f"<Artist {self.id} {self.canonical_name!r}>"


__all__ = ["Artist", "Artwork", "artwork_artists"]
