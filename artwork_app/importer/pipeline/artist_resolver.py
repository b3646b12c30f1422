"""
Artist resolution for import records.

Each credited name is matched against an ``ArtistLookupSnapshot`` taken once at
batch start, then against the live store so artists created earlier in the
same batch are reused. Fuzzy matches must clear a deliberately high
similarity bar (0.95 by default) because linking two different people is much
harder to undo than a duplicate artist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Protocol, Sequence

from flask import current_app, has_app_context
from rapidfuzz import fuzz, process

from artwork_app.importer.errors import ARTIST_NOT_FOUND, ResolutionWarning
from artwork_app.importer.pipeline.normalize import canonical_key
from artwork_app.importer.pipeline.store import ArtistSummary
from config.importer import DEFAULT_ARTIST_SIMILARITY_THRESHOLD

MATCH_KEY = "canonical_key"
MATCH_SOURCE_URL = "source_url"
MATCH_FUZZY = "fuzzy"
MATCH_CREATED = "created"


class ArtistStore(Protocol):
    def find_artist_by_key(self, key: str) -> ArtistSummary | None: ...

    def find_artist_by_source_url(self, source_url: str | None) -> ArtistSummary | None: ...

    def find_artists_fuzzy(self, name: str, *, limit: int = 50) -> list[ArtistSummary]: ...

    def create_artist(self, name: str, **kwargs) -> int: ...

    def add_artist_alias(self, artist_id: int, alias: str) -> bool: ...

    def note_artist_source_url(self, artist_id: int, source_url: str, note: str) -> bool: ...


@dataclass(frozen=True)
class ArtistLookupSnapshot:
    """
    Immutable artist lookup tables for one batch.

    ``by_key`` maps canonical keys (names and aliases) to the lowest artist id
    carrying them; ``fuzzy_keys``/``fuzzy_ids`` are parallel sequences used for
    similarity search.
    """

    by_key: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    by_source_url: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    fuzzy_keys: tuple[str, ...] = ()
    fuzzy_ids: tuple[int, ...] = ()

    @classmethod
    def from_artists(cls, artists: Iterable[ArtistSummary]) -> "ArtistLookupSnapshot":
        by_key: dict[str, int] = {}
        by_source_url: dict[str, int] = {}
        fuzzy_keys: list[str] = []
        fuzzy_ids: list[int] = []
        for artist in sorted(artists, key=lambda item: item.id):
            keys = [artist.canonical_key or canonical_key(artist.canonical_name)]
            keys.extend(canonical_key(alias) for alias in artist.aliases)
            for key in keys:
                if not key:
                    continue
                by_key.setdefault(key, artist.id)
                fuzzy_keys.append(key)
                fuzzy_ids.append(artist.id)
            if artist.source_url:
                by_source_url.setdefault(artist.source_url, artist.id)
        return cls(
            by_key=MappingProxyType(by_key),
            by_source_url=MappingProxyType(by_source_url),
            fuzzy_keys=tuple(fuzzy_keys),
            fuzzy_ids=tuple(fuzzy_ids),
        )

    def __len__(self) -> int:
        return len(set(self.fuzzy_ids))

    def best_fuzzy(self, key: str, *, score_cutoff: float = 0.0) -> tuple[int, float] | None:
        """Best ``(artist_id, similarity)`` at or above ``score_cutoff`` (0..1)."""

        if not key or not self.fuzzy_keys:
            return None
        match = process.extractOne(
            key,
            self.fuzzy_keys,
            scorer=fuzz.ratio,
            score_cutoff=score_cutoff * 100.0,
        )
        if match is None:
            return None
        _, score, index = match
        return self.fuzzy_ids[index], score / 100.0


@dataclass(frozen=True)
class ResolvedArtist:
    artist_id: int
    created: bool
    name: str
    match: str
    similarity: float | None = None


@dataclass(frozen=True)
class ArtistResolution:
    resolved: tuple[ResolvedArtist, ...] = ()
    warnings: tuple[ResolutionWarning, ...] = ()

    @property
    def artist_ids(self) -> tuple[int, ...]:
        seen: list[int] = []
        for item in self.resolved:
            if item.artist_id not in seen:
                seen.append(item.artist_id)
        return tuple(seen)

    @property
    def created_ids(self) -> tuple[int, ...]:
        return tuple(item.artist_id for item in self.resolved if item.created)

    def as_pairs(self) -> list[tuple[int, bool]]:
        return [(item.artist_id, item.created) for item in self.resolved]


class ArtistResolver:
    """Resolve credited names to artist ids, optionally creating missing artists."""

    def __init__(
        self,
        store: ArtistStore,
        *,
        import_id: str,
        similarity_threshold: float = DEFAULT_ARTIST_SIMILARITY_THRESHOLD,
    ) -> None:
        self.store = store
        self.import_id = import_id
        self.similarity_threshold = similarity_threshold

    def _best_store_fuzzy(self, name: str, key: str) -> tuple[int, float] | None:
        best: tuple[int, float] | None = None
        for artist in self.store.find_artists_fuzzy(name):
            candidate_keys = [artist.canonical_key, *(canonical_key(alias) for alias in artist.aliases)]
            for candidate_key in candidate_keys:
                if not candidate_key:
                    continue
                similarity = fuzz.ratio(key, candidate_key) / 100.0
                if best is None or similarity > best[1] or (similarity == best[1] and artist.id < best[0]):
                    best = (artist.id, similarity)
        return best

    def _match_existing(
        self,
        name: str,
        key: str,
        lookup: ArtistLookupSnapshot,
        source_url: str | None,
    ) -> ResolvedArtist | None:
        if key in lookup.by_key:
            return ResolvedArtist(lookup.by_key[key], False, name, MATCH_KEY, 1.0)
        if source_url and source_url in lookup.by_source_url:
            return ResolvedArtist(lookup.by_source_url[source_url], False, name, MATCH_SOURCE_URL)

        live = self.store.find_artist_by_key(key)
        if live is not None:
            return ResolvedArtist(live.id, False, name, MATCH_KEY, 1.0)
        live = self.store.find_artist_by_source_url(source_url)
        if live is not None:
            return ResolvedArtist(live.id, False, name, MATCH_SOURCE_URL)

        candidates = [
            match
            for match in (
                lookup.best_fuzzy(key, score_cutoff=self.similarity_threshold),
                self._best_store_fuzzy(name, key),
            )
            if match is not None and match[1] >= self.similarity_threshold
        ]
        if not candidates:
            return None
        artist_id, similarity = max(candidates, key=lambda item: (item[1], -item[0]))
        # Keep the variant spelling so the next batch hits the exact-key path.
        self.store.add_artist_alias(artist_id, name)
        return ResolvedArtist(artist_id, False, name, MATCH_FUZZY, round(similarity, 3))

    def resolve(
        self,
        names: Sequence[str],
        lookup: ArtistLookupSnapshot,
        create_missing: bool,
        *,
        record_index: int | None = None,
        artist_source_url: str | None = None,
    ) -> ArtistResolution:
        """
        Resolve each name independently.

        A source URL on the record only identifies the artist when exactly one
        name is credited. When that name matches an artist by name whose stored
        source URL differs, the record's URL is kept as a note on the artist.
        """

        source_url = artist_source_url if len(names) == 1 else None
        resolved: list[ResolvedArtist] = []
        warnings: list[ResolutionWarning] = []

        for name in names:
            key = canonical_key(name)
            if not key:
                continue
            match = self._match_existing(name, key, lookup, source_url)
            if match is not None:
                resolved.append(match)
                if source_url and match.match != MATCH_SOURCE_URL:
                    self.store.note_artist_source_url(
                        match.artist_id,
                        source_url,
                        f"Import {self.import_id} (record {record_index}) credits this artist with source URL {source_url}.",
                    )
                continue

            if create_missing:
                artist_id = self.store.create_artist(
                    name,
                    source_url=source_url,
                    provenance={
                        "autoCreatedFromImport": self.import_id,
                        "sourceRecordIndex": record_index,
                    },
                    notes=f"Auto-created from import {self.import_id} (record {record_index}).",
                )
                resolved.append(ResolvedArtist(artist_id, True, name, MATCH_CREATED))
                if has_app_context():
                    current_app.logger.info(
                        "Importer created artist",
                        extra={
                            "importer_import_id": self.import_id,
                            "importer_record_index": record_index,
                            "importer_artist_id": artist_id,
                        },
                    )
                continue

            warnings.append(
                ResolutionWarning(
                    field="artist",
                    code=ARTIST_NOT_FOUND,
                    message=f"No artist matches '{name}'; artwork saved without this credit.",
                )
            )

        return ArtistResolution(resolved=tuple(resolved), warnings=tuple(warnings))


__all__ = [
    "ArtistLookupSnapshot",
    "ArtistResolution",
    "ArtistResolver",
    "ResolvedArtist",
]
