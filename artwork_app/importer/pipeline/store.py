"""
SQLAlchemy-backed storage collaborator for the import pipeline.

Every read and write the pipeline makes against artworks, artists, the
external ID map, the merge log, and the audit log goes through ``ArtworkStore``.
The store only flushes; committing or rolling back is the caller's job (see
``TransactionExecutor.transaction``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from sqlalchemy.orm import Session

from artwork_app.importer.pipeline.normalize import canonical_key
from artwork_app.importer.pipeline.spatial import NearbyArtwork, bounding_box, haversine_meters
from artwork_app.models import Artist, Artwork, ExternalIdMap, ImportAuditEntry, MergeLog, db

if TYPE_CHECKING:
    from artwork_app.importer.pipeline.artist_resolver import ArtistLookupSnapshot
    from artwork_app.importer.pipeline.audit import AuditEntry

ENTITY_TYPE_ARTWORK = "artwork"

ARTWORK_SCALAR_FIELDS: tuple[str, ...] = ("title", "description", "lat", "lon", "tags", "source_url")


class ArtworkNotFound(LookupError):
    def __init__(self, artwork_id: int) -> None:
        super().__init__(f"Artwork {artwork_id} does not exist.")
        self.artwork_id = artwork_id


class ArtistNotFound(LookupError):
    def __init__(self, artist_id: int) -> None:
        super().__init__(f"Artist {artist_id} does not exist.")
        self.artist_id = artist_id


class ExternalIdConflict(LookupError):
    def __init__(self, external_ref: tuple[str, str], owner_id: int) -> None:
        super().__init__(f"{external_ref[0]} id '{external_ref[1]}' already belongs to artwork {owner_id}.")
        self.external_ref = external_ref
        self.owner_id = owner_id


@dataclass(frozen=True)
class ArtworkSnapshot:
    """Read-only view of a stored artwork used for scoring and merging."""

    id: int
    title: str | None
    description: str | None
    lat: float | None
    lon: float | None
    tags: Mapping[str, str]
    source_url: str | None
    artist_ids: tuple[int, ...]
    external_ids: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "lat": self.lat,
            "lon": self.lon,
            "tags": dict(self.tags),
            "source_url": self.source_url,
            "artist_ids": list(self.artist_ids),
            "external_ids": dict(self.external_ids),
        }


@dataclass(frozen=True)
class ArtistSummary:
    id: int
    canonical_name: str
    canonical_key: str
    aliases: tuple[str, ...] = ()
    source_url: str | None = None

    @classmethod
    def from_model(cls, artist: Artist) -> "ArtistSummary":
        return cls(
            id=artist.id,
            canonical_name=artist.canonical_name,
            canonical_key=artist.canonical_key,
            aliases=tuple(artist.aliases or ()),
            source_url=artist.source_url,
        )


class ArtworkStore:
    """Storage operations consumed by the dedupe pipeline."""

    def __init__(self, session: Session | None = None, *, run_id: int | None = None) -> None:
        self.session = session or db.session
        self.run_id = run_id

    # ------------------------------------------------------------------
    # Artworks
    # ------------------------------------------------------------------

    def query_nearby_artworks(self, lat: float, lon: float, radius_meters: float) -> list[NearbyArtwork]:
        """Artworks within ``radius_meters`` ordered by distance, then id."""

        box = bounding_box(lat, lon, radius_meters)
        rows = (
            self.session.query(Artwork.id, Artwork.lat, Artwork.lon)
            .filter(
                Artwork.lat.isnot(None),
                Artwork.lon.isnot(None),
                Artwork.lat.between(box.min_lat, box.max_lat),
                Artwork.lon.between(box.min_lon, box.max_lon),
            )
            .all()
        )
        hits: list[NearbyArtwork] = []
        for artwork_id, artwork_lat, artwork_lon in rows:
            distance = haversine_meters(lat, lon, artwork_lat, artwork_lon)
            if distance <= radius_meters:
                hits.append(NearbyArtwork(artwork_id, artwork_lat, artwork_lon, distance))
        hits.sort(key=lambda hit: (hit.distance_meters, hit.artwork_id))
        return hits

    def _external_ids_for(self, entity_type: str, entity_id: int) -> dict[str, str]:
        rows = (
            self.session.query(ExternalIdMap)
            .filter_by(entity_type=entity_type, entity_id=entity_id)
            .order_by(ExternalIdMap.id.asc())
            .all()
        )
        mapping: dict[str, str] = {}
        for row in rows:
            mapping.setdefault(row.external_system, row.external_id)
        return mapping

    def get_artwork_by_id(self, artwork_id: int) -> ArtworkSnapshot | None:
        artwork = self.session.get(Artwork, artwork_id)
        if artwork is None:
            return None
        return ArtworkSnapshot(
            id=artwork.id,
            title=artwork.title,
            description=artwork.description,
            lat=artwork.lat,
            lon=artwork.lon,
            tags=dict(artwork.tags or {}),
            source_url=artwork.source_url,
            artist_ids=artwork.artist_ids,
            external_ids=self._external_ids_for(ENTITY_TYPE_ARTWORK, artwork.id),
        )

    def find_artwork_by_external_id(self, source: str, external_id: str | None) -> int | None:
        if not external_id:
            return None
        id_map = (
            self.session.query(ExternalIdMap)
            .filter_by(entity_type=ENTITY_TYPE_ARTWORK, external_system=source, external_id=external_id)
            .first()
        )
        return id_map.entity_id if id_map is not None else None

    def _artist(self, artist_id: int) -> Artist:
        artist = self.session.get(Artist, artist_id)
        if artist is None:
            raise ArtistNotFound(artist_id)
        return artist

    def _link_external_id(self, artwork_id: int, external_ref: tuple[str, str]) -> None:
        source, external_id = external_ref
        existing = (
            self.session.query(ExternalIdMap)
            .filter_by(entity_type=ENTITY_TYPE_ARTWORK, external_system=source, external_id=external_id)
            .first()
        )
        if existing is not None:
            if existing.entity_id != artwork_id:
                raise ExternalIdConflict(external_ref, existing.entity_id)
            existing.mark_seen(run_id=self.run_id)
            return
        self.session.add(
            ExternalIdMap(
                entity_type=ENTITY_TYPE_ARTWORK,
                entity_id=artwork_id,
                external_system=source,
                external_id=external_id,
                run_id=self.run_id,
            )
        )

    def mark_external_id_seen(self, source: str, external_id: str) -> None:
        id_map = (
            self.session.query(ExternalIdMap)
            .filter_by(entity_type=ENTITY_TYPE_ARTWORK, external_system=source, external_id=external_id)
            .first()
        )
        if id_map is not None:
            id_map.mark_seen(run_id=self.run_id)
            self.session.flush()

    def upsert_artwork(
        self,
        values: Mapping[str, Any],
        *,
        artwork_id: int | None = None,
        add_artist_ids: Iterable[int] = (),
        external_ref: tuple[str, str] | None = None,
    ) -> int:
        """
        Insert a new artwork (``artwork_id`` is None) or update the given one.

        Only keys present in ``values`` are written. Artist links are only ever
        added, never removed.
        """

        unknown = set(values) - set(ARTWORK_SCALAR_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported artwork field(s): {', '.join(sorted(unknown))}")

        if artwork_id is None:
            artwork = Artwork(tags={})
            self.session.add(artwork)
        else:
            artwork = self.session.get(Artwork, artwork_id)
            if artwork is None:
                raise ArtworkNotFound(artwork_id)

        for field_name, value in values.items():
            if field_name == "tags":
                value = dict(value or {})
            setattr(artwork, field_name, value)

        linked = set(artwork.artist_ids)
        for artist_id in add_artist_ids:
            if artist_id in linked:
                continue
            artwork.artists.append(self._artist(artist_id))
            linked.add(artist_id)

        self.session.flush()
        if external_ref is not None:
            self._link_external_id(artwork.id, external_ref)
            self.session.flush()
        return artwork.id

    # ------------------------------------------------------------------
    # Artists
    # ------------------------------------------------------------------

    def list_artists(self) -> list[ArtistSummary]:
        return [ArtistSummary.from_model(artist) for artist in self.session.query(Artist).order_by(Artist.id).all()]

    def load_artist_snapshot(self) -> "ArtistLookupSnapshot":
        from artwork_app.importer.pipeline.artist_resolver import ArtistLookupSnapshot

        return ArtistLookupSnapshot.from_artists(self.list_artists())

    def find_artist_by_key(self, key: str) -> ArtistSummary | None:
        if not key:
            return None
        artist = self.session.query(Artist).filter_by(canonical_key=key).order_by(Artist.id.asc()).first()
        return ArtistSummary.from_model(artist) if artist is not None else None

    def find_artist_by_source_url(self, source_url: str | None) -> ArtistSummary | None:
        if not source_url:
            return None
        artist = self.session.query(Artist).filter_by(source_url=source_url).order_by(Artist.id.asc()).first()
        return ArtistSummary.from_model(artist) if artist is not None else None

    def find_artists_fuzzy(self, name: str, *, limit: int = 50) -> list[ArtistSummary]:
        """Prefilter artists sharing the first characters of the canonical key."""

        key = canonical_key(name)
        if not key:
            return []
        prefix = key[:3]
        artists = (
            self.session.query(Artist)
            .filter(Artist.canonical_key.like(f"{prefix}%"))
            .order_by(Artist.id.asc())
            .limit(limit)
            .all()
        )
        return [ArtistSummary.from_model(artist) for artist in artists]

    def create_artist(
        self,
        name: str,
        *,
        source_url: str | None = None,
        provenance: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> int:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValueError("Artist name cannot be blank.")
        artist = Artist(
            canonical_name=cleaned,
            canonical_key=canonical_key(cleaned),
            aliases=[],
            source_url=source_url,
            provenance=dict(provenance) if provenance else None,
            notes=notes,
        )
        self.session.add(artist)
        self.session.flush()
        return artist.id

    def add_artist_alias(self, artist_id: int, alias: str) -> bool:
        added = self._artist(artist_id).add_alias(alias)
        if added:
            self.session.flush()
        return added

    def note_artist_source_url(self, artist_id: int, source_url: str, note: str) -> bool:
        """Append ``note`` when the artist already carries a different source URL."""

        artist = self._artist(artist_id)
        if not artist.source_url or artist.source_url == source_url:
            return False
        artist.append_note(note)
        self.session.flush()
        return True

    # ------------------------------------------------------------------
    # Audit and merge history
    # ------------------------------------------------------------------

    def record_merge(
        self,
        *,
        artwork_id: int,
        record_index: int,
        decision_type: str,
        confidence: float | None,
        snapshot_before: Mapping[str, Any],
        snapshot_after: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        merge_log = MergeLog(
            run_id=self.run_id,
            artwork_id=artwork_id,
            record_index=record_index,
            decision_type=decision_type,
            confidence=confidence,
            snapshot_before=dict(snapshot_before),
            snapshot_after=dict(snapshot_after),
            metadata_json=dict(metadata) if metadata else None,
        )
        self.session.add(merge_log)
        self.session.flush()
        return merge_log.id

    def append_audit_entry(self, entry: "AuditEntry") -> None:
        """Append one entry to the durable audit log. Rows are never updated."""

        self.session.add(
            ImportAuditEntry(
                run_id=self.run_id,
                import_id=entry.import_id,
                record_index=entry.record_index,
                action=entry.action,
                confidence=entry.confidence,
                matched_artwork_id=entry.matched_artwork_id,
                resulting_artwork_id=entry.resulting_artwork_id,
                matched_reason=entry.matched_reason,
                reason=entry.reason,
                field_changes=dict(entry.field_changes) if entry.field_changes else None,
                errors=list(entry.errors) or None,
                warnings=[warning.to_dict() for warning in entry.warnings] or None,
                details_json={
                    "tags_conflict_count": entry.tags_conflict_count,
                    "skipped_coordinate_merge": entry.skipped_coordinate_merge,
                    "candidates": [dict(candidate) for candidate in entry.candidates],
                },
                recorded_at=entry.timestamp or datetime.now(timezone.utc),
            )
        )
        self.session.flush()


__all__ = [
    "ARTWORK_SCALAR_FIELDS",
    "ENTITY_TYPE_ARTWORK",
    "ArtistNotFound",
    "ArtistSummary",
    "ArtworkNotFound",
    "ArtworkSnapshot",
    "ArtworkStore",
    "ExternalIdConflict",
]
