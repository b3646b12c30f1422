import pytest

from artwork_app.utils.importer import build_import_config, is_importer_enabled
from config.base import _coerce_bool, _coerce_int
from config.importer import ImportConfig, ImportConfigError, ScoringWeights, SpatialThresholds


def test_defaults_match_documented_values():
    config = ImportConfig()
    assert config.create_missing_artists is False
    assert config.merge_confidence_threshold == 0.85
    assert config.spatial_thresholds == SpatialThresholds(10.0, 50.0, 100.0)
    assert config.weights == ScoringWeights()
    assert config.batch_timeout_seconds == 60
    assert config.max_workers == 4
    assert config.artist_similarity_threshold == 0.95
    assert config.ambiguity_margin is None


def test_from_mapping_accepts_camel_case_and_nested_values():
    config = ImportConfig.from_mapping(
        {
            "createMissingArtists": "yes",
            "mergeConfidenceThreshold": "0.9",
            "spatialThresholds": {"high": 5, "medium": 25, "low": 75},
            "weights": {"distance": {"high": 0.5}, "artistCap": 0.6},
            "maxWorkers": "8",
            "source": "  osm ",
        }
    )

    assert config.create_missing_artists is True
    assert config.merge_confidence_threshold == 0.9
    assert config.spatial_thresholds.low == 75.0
    assert config.weights.distance_high == 0.5
    assert config.weights.artist_cap == 0.6
    assert config.max_workers == 8
    assert config.source == "osm"


def test_from_mapping_skips_none_values():
    base = ImportConfig(merge_confidence_threshold=0.7)
    assert ImportConfig.from_mapping({"merge_confidence_threshold": None}, base=base) == base


@pytest.mark.parametrize(
    "overrides",
    [
        {"merge_confidence_threshold": 1.2},
        {"max_workers": 0},
        {"max_workers": 9},
        {"batch_timeout_seconds": -1},
        {"source": " "},
        {"create_missing_artists": "maybe"},
        {"spatial_thresholds": {"high": 60, "medium": 50, "low": 100}},
        {"spatial_thresholds": {"huge": 1}},
        {"weights": {"title": -0.1}},
        {"weights": {"colour": 0.1}},
        {"merge_confidence_threshold": True},
        {"unknownOption": 1},
    ],
)
def test_invalid_overrides_raise(overrides):
    with pytest.raises(ImportConfigError):
        ImportConfig.from_mapping(overrides)


def test_from_app_config_then_overrides(app):
    app.config.update(
        IMPORTER_CREATE_MISSING_ARTISTS=True,
        IMPORTER_MERGE_CONFIDENCE_THRESHOLD=0.8,
        IMPORTER_DEFAULT_SOURCE="city",
        IMPORTER_MAX_WORKERS=2,
    )

    config = build_import_config({"max_workers": 3}, app=app)

    assert config.create_missing_artists is True
    assert config.merge_confidence_threshold == 0.8
    assert config.source == "city"
    assert config.max_workers == 3


def test_is_importer_enabled_reads_flag(app):
    assert is_importer_enabled(app) is True
    app.config["IMPORTER_ENABLED"] = False
    assert is_importer_enabled(app) is False


def test_distance_weight_by_tier():
    weights = ScoringWeights()
    assert weights.distance_weight("high") == 0.6
    assert weights.distance_weight("medium") == 0.3
    assert weights.distance_weight("low") == 0.1
    assert weights.distance_weight(None) == 0.0


def test_env_coercion_helpers():
    assert _coerce_bool("On", default=False) is True
    assert _coerce_bool(None, default=True) is True
    assert _coerce_int("12", 4, minimum=1, maximum=8) == 8
    assert _coerce_int("bad", 4, minimum=1, maximum=8) == 4


def test_scalar_distance_weight_scales_lower_tiers():
    config = ImportConfig.from_mapping({"weights": {"distance": 0.8, "title": 0.3, "artist": 0.2}})

    assert config.weights.distance_high == 0.8
    assert config.weights.distance_medium == pytest.approx(0.4)
    assert config.weights.distance_low == pytest.approx(0.8 / 6)
    assert config.weights.title == 0.3
    assert config.weights.artist == 0.2


def test_scalar_distance_weight_matches_defaults_and_yields_to_explicit_tiers():
    defaults = ImportConfig.from_mapping({"weights": {"distance": 0.6, "title": 0.3, "artist": 0.2}}).weights
    assert defaults.distance_medium == pytest.approx(ScoringWeights().distance_medium)
    assert defaults.distance_low == pytest.approx(ScoringWeights().distance_low)

    mixed = ImportConfig.from_mapping({"weights": {"distance_low": 0.05, "distance": 0.5}}).weights
    assert mixed.distance_high == 0.5
    assert mixed.distance_low == 0.05
