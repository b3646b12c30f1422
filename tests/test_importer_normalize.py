import math

import pytest

from artwork_app.importer.errors import (
    INVALID_COORDINATES,
    INVALID_RECORD,
    TEXT_TRUNCATED,
    TITLE_TOO_LONG,
    RecordValidationError,
)
from artwork_app.importer.pipeline.normalize import (
    MAX_TEXT_LENGTH,
    NormalizedRecord,
    RecordRejected,
    canonical_key,
    normalize,
    normalize_coordinates,
    normalize_record,
    split_artist_names,
    strip_html,
)


def _ok(raw, index=0, **kwargs):
    result = normalize(raw, index, **kwargs)
    assert isinstance(result, NormalizedRecord), result
    return result.record


def test_normalize_accepts_camel_and_snake_case_keys():
    camel = _ok(
        {
            "externalId": "VAN-1",
            "title": "  Blue   Whale Mural ",
            "artistNames": "Jane Doe",
            "lat": "49.28",
            "lng": -123.12,
            "sourceUrl": "https://example.org/1",
        }
    )
    snake = _ok(
        {
            "external_id": "VAN-1",
            "title": "Blue Whale Mural",
            "artist_names": ["Jane Doe"],
            "latitude": 49.28,
            "longitude": -123.12,
            "source_url": "https://example.org/1",
        }
    )

    assert camel.title == "Blue Whale Mural"
    assert camel.lat == pytest.approx(49.28)
    assert camel.to_payload() == snake.to_payload()


def test_normalize_uses_default_source_when_record_has_none():
    record = _ok({"title": "A", "lat": 1, "lon": 1}, default_source="vancouver")
    assert record.source == "vancouver"

    scoped = _ok({"title": "A", "lat": 1, "lon": 1, "source": "osm"}, default_source="vancouver")
    assert scoped.source == "osm"


@pytest.mark.parametrize(
    "lat, lon",
    [
        (200, 10),
        (10, 181),
        (None, None),
        (10, None),
        ("north", 10),
        (math.nan, 10),
        (math.inf, 10),
        (0, 0),
    ],
)
def test_invalid_coordinates_are_rejected(lat, lon):
    result = normalize({"title": "A", "lat": lat, "lon": lon}, 3)

    assert isinstance(result, RecordRejected)
    assert result.record_index == 3
    assert result.error.code == INVALID_COORDINATES


def test_missing_coordinates_allowed_only_when_both_absent():
    record = _ok({"title": "Floating"}, allow_missing_coordinates=True)
    assert record.lat is None and record.lon is None
    assert not record.has_coordinates

    with pytest.raises(RecordValidationError) as excinfo:
        normalize_coordinates(49.0, None, allow_missing=True)
    assert excinfo.value.field == "lon"


def test_boundary_coordinates_are_valid():
    assert normalize_coordinates(-90, 180) == (-90.0, 180.0)
    assert normalize_coordinates("90", "-180") == (90.0, -180.0)


def test_title_is_stripped_of_markup_and_length_checked():
    record = _ok({"title": "<b>Totem</b> &amp; <script>alert(1)</script>Pole", "lat": 1, "lon": 1})
    assert record.title == "Totem & Pole"

    result = normalize({"title": "x" * 501, "lat": 1, "lon": 1}, 0)
    assert isinstance(result, RecordRejected)
    assert result.error.code == TITLE_TOO_LONG


def test_non_mapping_record_is_invalid():
    result = normalize(["not", "a", "record"], 7)
    assert isinstance(result, RecordRejected)
    assert result.error.code == INVALID_RECORD


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Jane Doe, John Smith", ("Jane Doe", "John Smith")),
        ("Jane Doe & John Smith", ("Jane Doe", "John Smith")),
        ("Jane Doe and John Smith", ("Jane Doe", "John Smith")),
        ("Jane Doe AND John Smith", ("Jane Doe", "John Smith")),
        ("Jane Doe And John Smith", ("Jane Doe", "John Smith")),
        ("Sandy Anderson", ("Sandy Anderson",)),
        ("Doe, Jane", ("Jane Doe",)),
        ("Doe, Jane & John Smith", ("Doe", "Jane", "John Smith")),
        ("Jane Doe, jane doe,  ", ("Jane Doe",)),
        (["Ana María", "Ana Maria"], ("Ana María",)),
        (None, ()),
    ],
)
def test_split_artist_names(raw, expected):
    assert split_artist_names(raw) == expected


def test_canonical_key_drops_diacritics_and_punctuation():
    assert canonical_key("  José   Ñúñez-Smith! ") == "jose nunezsmith"
    assert canonical_key(None) == ""


def test_strip_html_removes_handlers_and_javascript_urls():
    cleaned = strip_html('<a href="javascript:alert(1)" onclick="x()">link</a> onload=evil() javascript:void(0)')
    assert "javascript" not in cleaned.lower()
    assert "onload" not in cleaned
    assert "link" in cleaned


def test_long_description_and_tags_are_truncated_with_warning():
    record = _ok(
        {
            "title": "A",
            "lat": 1,
            "lon": 1,
            "description": "d" * (MAX_TEXT_LENGTH + 5),
            "tags": {"material": "m" * (MAX_TEXT_LENGTH + 1), "type": "mural"},
        }
    )

    assert len(record.description) == MAX_TEXT_LENGTH
    assert len(record.tags["material"]) == MAX_TEXT_LENGTH
    assert record.tags["type"] == "mural"
    assert {warning.code for warning in record.warnings} == {TEXT_TRUNCATED}
    assert {warning.field for warning in record.warnings} == {"description", "tags.material"}


def test_tags_accept_key_value_list():
    record = _ok({"title": "A", "lat": 1, "lon": 1, "tags": [{"key": "material", "value": "bronze"}]})
    assert record.tags == {"material": "bronze"}


def test_normalize_record_raises_for_invalid_input():
    with pytest.raises(RecordValidationError) as excinfo:
        normalize_record({"title": "A", "lat": 95, "lon": 0}, 0)
    assert excinfo.value.code == INVALID_COORDINATES
    assert excinfo.value.to_dict()["field"] == "lat"
