import pytest

from artwork_app.importer.pipeline.spatial import (
    TIER_HIGH,
    TIER_LOW,
    TIER_MEDIUM,
    NearbyArtwork,
    SpatialCandidateIndex,
    bounding_box,
    haversine_meters,
    tier_for_distance,
)
from artwork_app.importer.pipeline.store import ArtworkStore
from config.importer import ImportConfigError, SpatialThresholds

BASE_LAT = 49.28
BASE_LON = -123.12


class _StaticStore:
    def __init__(self, rows):
        self.rows = rows
        self.radii = []

    def query_nearby_artworks(self, lat, lon, radius_meters):
        self.radii.append(radius_meters)
        return list(self.rows)


def test_haversine_one_degree_of_latitude():
    assert haversine_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_195, rel=1e-3)
    assert haversine_meters(BASE_LAT, BASE_LON, BASE_LAT, BASE_LON) == 0.0


def test_bounding_box_widens_longitude_with_latitude():
    equator = bounding_box(0.0, 0.0, 100.0)
    north = bounding_box(60.0, 0.0, 100.0)

    assert equator.max_lat - equator.min_lat == pytest.approx(north.max_lat - north.min_lat)
    assert (north.max_lon - north.min_lon) > (equator.max_lon - equator.min_lon)


def test_bounding_box_near_pole_is_clamped():
    box = bounding_box(90.0, 10.0, 100.0)
    assert box.max_lat == 90.0
    assert box.min_lon == -180.0
    assert box.max_lon == 180.0


def test_bounding_box_spans_all_longitudes_when_circle_reaches_pole():
    box = bounding_box(89.9995, -40.0, 100.0)
    assert box.max_lat == 90.0
    assert (box.min_lon, box.max_lon) == (-180.0, 180.0)

    temperate = bounding_box(BASE_LAT, BASE_LON, 100.0)
    assert temperate.min_lon > -180.0
    assert temperate.max_lon < 180.0


@pytest.mark.parametrize(
    "distance, expected",
    [
        (0.0, TIER_HIGH),
        (10.0, TIER_HIGH),
        (10.01, TIER_MEDIUM),
        (50.0, TIER_MEDIUM),
        (99.9, TIER_LOW),
        (100.0, TIER_LOW),
        (100.5, None),
    ],
)
def test_tier_boundaries_are_inclusive(distance, expected):
    assert tier_for_distance(distance, SpatialThresholds()) == expected


def test_thresholds_must_be_ordered():
    with pytest.raises(ImportConfigError):
        SpatialThresholds(high=60.0, medium=50.0, low=100.0)


def test_find_nearby_orders_by_distance_then_id_and_caps_radius():
    store = _StaticStore(
        [
            NearbyArtwork(7, 0, 0, 30.0),
            NearbyArtwork(3, 0, 0, 30.0),
            NearbyArtwork(1, 0, 0, 5.0),
            NearbyArtwork(9, 0, 0, 140.0),
        ]
    )
    index = SpatialCandidateIndex(store)

    assert index.find_nearby(BASE_LAT, BASE_LON, max_radius_meters=500) == [(1, 5.0), (3, 30.0), (7, 30.0)]
    assert store.radii == [100.0]

    assert index.find_nearby(BASE_LAT, BASE_LON, max_radius_meters=20) == [(1, 5.0)]


def test_find_nearby_against_store(make_artwork):
    near = make_artwork("Near", BASE_LAT + 0.00005, BASE_LON)
    mid = make_artwork("Mid", BASE_LAT + 0.0003, BASE_LON)
    far = make_artwork("Far", BASE_LAT + 0.0008, BASE_LON)
    make_artwork("Outside", BASE_LAT + 0.0012, BASE_LON)
    make_artwork("Elsewhere", 10.0, 10.0)

    index = SpatialCandidateIndex(ArtworkStore())
    hits = index.find_nearby(BASE_LAT, BASE_LON)

    assert [artwork_id for artwork_id, _ in hits] == [near, mid, far]
    assert [index.tier(distance) for _, distance in hits] == [TIER_HIGH, TIER_MEDIUM, TIER_LOW]


def test_find_nearby_returns_empty_when_nothing_in_range(make_artwork):
    make_artwork("Far away", 10.0, 10.0)
    assert SpatialCandidateIndex(ArtworkStore()).find_nearby(BASE_LAT, BASE_LON) == []


def test_store_finds_artwork_on_far_side_of_pole(make_artwork):
    across = make_artwork("Polar Marker", 89.99999, -175.0)

    hits = ArtworkStore().query_nearby_artworks(89.99999, 10.0, 100.0)

    assert [hit.artwork_id for hit in hits] == [across]
    assert hits[0].distance_meters < 10.0
