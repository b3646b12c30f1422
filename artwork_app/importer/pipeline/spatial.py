"""
Spatial candidate lookup for duplicate detection.

Distances are great-circle (haversine) meters. The store does the indexed
bounding-box query; this module owns the geometry, the tier cutoffs, and the
deterministic ordering of candidates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from config.importer import SpatialThresholds

EARTH_RADIUS_METERS = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_000.0

TIER_HIGH = "high"
TIER_MEDIUM = "medium"
TIER_LOW = "low"


@dataclass(frozen=True)
class NearbyArtwork:
    artwork_id: int
    lat: float
    lon: float
    distance_meters: float


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


class NearbyArtworkQuery(Protocol):
    def query_nearby_artworks(self, lat: float, lon: float, radius_meters: float) -> Sequence[NearbyArtwork]: ...


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box(lat: float, lon: float, radius_meters: float) -> BoundingBox:
    """
    Degree box that contains every point within ``radius_meters``.

    The longitude span widens with latitude. When the circle reaches a pole,
    or the span would exceed a hemisphere, every longitude is included.
    """

    lat_delta = radius_meters / METERS_PER_DEGREE_LAT
    min_lat = lat - lat_delta
    max_lat = lat + lat_delta
    cos_lat = math.cos(math.radians(lat))
    lon_delta = lat_delta / cos_lat if cos_lat > 1e-6 else 180.0
    if min_lat <= -90.0 or max_lat >= 90.0 or lon_delta >= 180.0:
        return BoundingBox(max(-90.0, min_lat), min(90.0, max_lat), -180.0, 180.0)
    return BoundingBox(
        min_lat=min_lat,
        max_lat=max_lat,
        min_lon=max(-180.0, lon - lon_delta),
        max_lon=min(180.0, lon + lon_delta),
    )


def tier_for_distance(distance_meters: float, thresholds: SpatialThresholds) -> str | None:
    if distance_meters <= thresholds.high:
        return TIER_HIGH
    if distance_meters <= thresholds.medium:
        return TIER_MEDIUM
    if distance_meters <= thresholds.low:
        return TIER_LOW
    return None


class SpatialCandidateIndex:
    """Tiered nearby-artwork lookup over a store's indexed spatial query."""

    def __init__(self, store: NearbyArtworkQuery, thresholds: SpatialThresholds | None = None) -> None:
        self.store = store
        self.thresholds = thresholds or SpatialThresholds()

    def find_nearby(
        self,
        lat: float,
        lon: float,
        max_radius_meters: float | None = None,
    ) -> list[tuple[int, float]]:
        """
        Return ``(artwork_id, distance_meters)`` pairs within range.

        Ordered by distance ascending, ties broken by artwork id. The radius is
        never wider than the low tier.
        """

        radius = self.thresholds.max_radius
        if max_radius_meters is not None:
            radius = min(radius, max_radius_meters)
        rows = self.store.query_nearby_artworks(lat, lon, radius)
        hits = [(row.artwork_id, row.distance_meters) for row in rows if row.distance_meters <= radius]
        hits.sort(key=lambda item: (item[1], item[0]))
        return hits

    def tier(self, distance_meters: float) -> str | None:
        return tier_for_distance(distance_meters, self.thresholds)


__all__ = [
    "EARTH_RADIUS_METERS",
    "TIER_HIGH",
    "TIER_LOW",
    "TIER_MEDIUM",
    "BoundingBox",
    "NearbyArtwork",
    "SpatialCandidateIndex",
    "bounding_box",
    "haversine_meters",
    "tier_for_distance",
]
