"""
Duplicate scoring between an import record and a nearby stored artwork.

Confidence is additive over independent signals (distance tier, title
similarity, shared artists) and clamped to [0, 1]. An external identifier
equal to the artwork's identifier for the same source short-circuits to 1.0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from artwork_app.importer.pipeline.fuzzy_features import (
    artist_contribution,
    compute_artist_overlap,
    compute_title_similarity,
    summarize_features,
    weighted_score,
)
from artwork_app.importer.pipeline.normalize import ImportRecord
from artwork_app.importer.pipeline.spatial import haversine_meters, tier_for_distance
from artwork_app.importer.pipeline.store import ArtworkSnapshot
from config.importer import ScoringWeights, SpatialThresholds

REASON_EXTERNAL_ID = "external_id_exact_match"


@dataclass(frozen=True)
class DuplicateCandidate:
    artwork_id: int
    distance_meters: float | None
    title_similarity: float
    artist_overlap_score: float
    external_id_exact_match: bool
    confidence: float
    tier: str | None = None
    shared_artist_count: int = 0
    breakdown: Mapping[str, float] = field(default_factory=dict)

    @property
    def matched_reason(self) -> str:
        if self.external_id_exact_match:
            return REASON_EXTERNAL_ID
        fired = [f"distance_{self.tier}"] if self.tier else []
        if self.breakdown.get("title", 0.0) > 0:
            fired.append("title")
        if self.shared_artist_count:
            fired.append("artist")
        return "+".join(fired) or "none"

    def to_dict(self) -> dict[str, Any]:
        return {
            "artworkId": self.artwork_id,
            "distanceMeters": None if self.distance_meters is None else round(self.distance_meters, 2),
            "titleSimilarity": round(self.title_similarity, 3),
            "artistOverlapScore": round(self.artist_overlap_score, 3),
            "externalIdExactMatch": self.external_id_exact_match,
            "confidence": round(self.confidence, 3),
            "tier": self.tier,
            "breakdown": dict(self.breakdown),
        }


def _is_external_match(record: ImportRecord, artwork: ArtworkSnapshot) -> bool:
    if not record.external_id:
        return False
    return artwork.external_ids.get(record.source) == record.external_id


def score(
    record: ImportRecord,
    artwork: ArtworkSnapshot,
    distance_meters: float | None,
    *,
    resolved_artist_ids: Iterable[int] = (),
    weights: ScoringWeights | None = None,
    thresholds: SpatialThresholds | None = None,
) -> DuplicateCandidate:
    """Score one record/artwork pair. ``distance_meters`` is computed if omitted."""

    weights = weights or ScoringWeights()
    thresholds = thresholds or SpatialThresholds()

    if distance_meters is None and record.has_coordinates and artwork.lat is not None and artwork.lon is not None:
        distance_meters = haversine_meters(record.lat, record.lon, artwork.lat, artwork.lon)

    tier = tier_for_distance(distance_meters, thresholds) if distance_meters is not None else None
    title_similarity = compute_title_similarity(record.title, artwork.title)
    shared, overlap = compute_artist_overlap(resolved_artist_ids, artwork.artist_ids)
    external_match = _is_external_match(record, artwork)

    contributions = {
        "distance": weights.distance_weight(tier),
        "title": weights.title * title_similarity,
        "artist": artist_contribution(shared, weights),
    }
    if external_match:
        confidence = 1.0
    else:
        confidence = weighted_score(
            {"distance": contributions["distance"], "title": title_similarity, "artist": contributions["artist"]},
            weights,
        )

    return DuplicateCandidate(
        artwork_id=artwork.id,
        distance_meters=distance_meters,
        title_similarity=title_similarity,
        artist_overlap_score=overlap,
        external_id_exact_match=external_match,
        confidence=confidence,
        tier=tier,
        shared_artist_count=shared,
        breakdown=summarize_features(contributions),
    )


def rank_candidates(candidates: Sequence[DuplicateCandidate]) -> list[DuplicateCandidate]:
    """
    Highest confidence first.

    Equal confidence prefers an external-id match, then the lower artwork id,
    so ordering never depends on query or thread order.
    """

    return sorted(
        candidates,
        key=lambda item: (-round(item.confidence, 6), not item.external_id_exact_match, item.artwork_id),
    )


__all__ = [
    "REASON_EXTERNAL_ID",
    "DuplicateCandidate",
    "rank_candidates",
    "score",
]
