"""
Batch-level configuration for artwork imports.

``ImportConfig`` is the single place where merge thresholds, spatial tiers,
scoring weights, and concurrency limits are defined. Defaults are applied here
at the batch boundary; pipeline modules only ever receive a fully populated
instance.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Mapping

DEFAULT_MERGE_CONFIDENCE_THRESHOLD = 0.85
DEFAULT_ARTIST_SIMILARITY_THRESHOLD = 0.95
DEFAULT_BATCH_TIMEOUT_SECONDS = 60
DEFAULT_MAX_WORKERS = 4
MAX_WORKERS_CEILING = 8
DEFAULT_SOURCE = "import"


class ImportConfigError(ValueError):
    """Raised when an import configuration value is missing or invalid."""


@dataclass(frozen=True)
class SpatialThresholds:
    """Distance tiers in meters. Anything beyond ``low`` is not a candidate."""

    high: float = 10.0
    medium: float = 50.0
    low: float = 100.0

    def __post_init__(self) -> None:
        values = (self.high, self.medium, self.low)
        if any(not math.isfinite(value) or value <= 0 for value in values):
            raise ImportConfigError("Spatial thresholds must be positive, finite distances.")
        if not (self.high <= self.medium <= self.low):
            raise ImportConfigError("Spatial thresholds must satisfy high <= medium <= low.")

    @property
    def max_radius(self) -> float:
        return self.low


@dataclass(frozen=True)
class ScoringWeights:
    """
    Contribution of each signal to a duplicate confidence score.

    Attributes:
        distance_high / distance_medium / distance_low: Contribution for a
            candidate inside the matching spatial tier.
        title: Multiplier applied to the 0..1 title similarity.
        artist: Contribution per artist shared with the candidate artwork.
        artist_cap: Upper bound for the combined artist contribution.
    """

    distance_high: float = 0.6
    distance_medium: float = 0.3
    distance_low: float = 0.1
    title: float = 0.3
    artist: float = 0.2
    artist_cap: float = 0.4

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if not math.isfinite(value) or value < 0:
                raise ImportConfigError(f"Scoring weight {item.name} must be a non-negative number.")

    def distance_weight(self, tier: str | None) -> float:
        return {
            "high": self.distance_high,
            "medium": self.distance_medium,
            "low": self.distance_low,
        }.get(tier or "", 0.0)


@dataclass(frozen=True)
class ImportConfig:
    create_missing_artists: bool = False
    merge_confidence_threshold: float = DEFAULT_MERGE_CONFIDENCE_THRESHOLD
    spatial_thresholds: SpatialThresholds = field(default_factory=SpatialThresholds)
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    batch_timeout_seconds: int = DEFAULT_BATCH_TIMEOUT_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS
    artist_similarity_threshold: float = DEFAULT_ARTIST_SIMILARITY_THRESHOLD
    source: str = DEFAULT_SOURCE
    allow_missing_coordinates: bool = False
    ambiguity_margin: float | None = None
    dry_run: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.merge_confidence_threshold <= 1.0:
            raise ImportConfigError("merge_confidence_threshold must be between 0 and 1.")
        if not 0.0 <= self.artist_similarity_threshold <= 1.0:
            raise ImportConfigError("artist_similarity_threshold must be between 0 and 1.")
        if self.batch_timeout_seconds < 0:
            raise ImportConfigError("batch_timeout_seconds cannot be negative.")
        if not 1 <= self.max_workers <= MAX_WORKERS_CEILING:
            raise ImportConfigError(f"max_workers must be between 1 and {MAX_WORKERS_CEILING}.")
        if not self.source or not self.source.strip():
            raise ImportConfigError("source must be a non-empty string.")
        if self.ambiguity_margin is not None and not 0.0 <= self.ambiguity_margin <= 1.0:
            raise ImportConfigError("ambiguity_margin must be between 0 and 1 when set.")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None, *, base: "ImportConfig | None" = None) -> "ImportConfig":
        """
        Build a config from loosely structured overrides (CLI flags, task kwargs).

        Keys may be snake_case or camelCase. Unknown keys raise ``ImportConfigError``
        so typos in operator input are not silently ignored.
        """

        config = base or cls()
        if not raw:
            return config

        overrides: dict[str, Any] = {}
        for raw_key, value in raw.items():
            key = _ALIASES.get(raw_key, raw_key)
            if key not in _FIELD_NAMES:
                raise ImportConfigError(f"Unknown import config option: {raw_key}")
            if value is None:
                continue
            overrides[key] = value

        if "spatial_thresholds" in overrides:
            overrides["spatial_thresholds"] = _coerce_thresholds(overrides["spatial_thresholds"])
        if "weights" in overrides:
            overrides["weights"] = _coerce_weights(overrides["weights"])
        for key in ("merge_confidence_threshold", "artist_similarity_threshold", "ambiguity_margin"):
            if key in overrides:
                overrides[key] = _coerce_number(overrides[key], key)
        for key in ("batch_timeout_seconds", "max_workers"):
            if key in overrides:
                overrides[key] = int(_coerce_number(overrides[key], key))
        for key in ("create_missing_artists", "allow_missing_coordinates", "dry_run"):
            if key in overrides:
                overrides[key] = _coerce_flag(overrides[key], key)
        if "source" in overrides:
            overrides["source"] = str(overrides["source"]).strip()

        return replace(config, **overrides)

    @classmethod
    def from_app_config(
        cls, app_config: Mapping[str, Any], overrides: Mapping[str, Any] | None = None
    ) -> "ImportConfig":
        """Apply Flask ``IMPORTER_*`` settings, then explicit per-batch overrides."""

        base = cls(
            create_missing_artists=bool(app_config.get("IMPORTER_CREATE_MISSING_ARTISTS", False)),
            merge_confidence_threshold=float(
                app_config.get("IMPORTER_MERGE_CONFIDENCE_THRESHOLD", DEFAULT_MERGE_CONFIDENCE_THRESHOLD)
            ),
            batch_timeout_seconds=int(app_config.get("IMPORTER_BATCH_TIMEOUT_SECONDS", DEFAULT_BATCH_TIMEOUT_SECONDS)),
            max_workers=int(app_config.get("IMPORTER_MAX_WORKERS", DEFAULT_MAX_WORKERS)),
            artist_similarity_threshold=float(
                app_config.get("IMPORTER_ARTIST_SIMILARITY_THRESHOLD", DEFAULT_ARTIST_SIMILARITY_THRESHOLD)
            ),
            source=str(app_config.get("IMPORTER_DEFAULT_SOURCE") or DEFAULT_SOURCE),
            allow_missing_coordinates=bool(app_config.get("IMPORTER_ALLOW_MISSING_COORDINATES", False)),
        )
        return cls.from_mapping(overrides, base=base)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_FIELD_NAMES = frozenset(item.name for item in fields(ImportConfig))
_ALIASES = {
    "createMissingArtists": "create_missing_artists",
    "mergeConfidenceThreshold": "merge_confidence_threshold",
    "spatialThresholds": "spatial_thresholds",
    "batchTimeoutSeconds": "batch_timeout_seconds",
    "maxWorkers": "max_workers",
    "artistSimilarityThreshold": "artist_similarity_threshold",
    "allowMissingCoordinates": "allow_missing_coordinates",
    "ambiguityMargin": "ambiguity_margin",
    "dryRun": "dry_run",
}


def _coerce_number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ImportConfigError(f"{name} must be numeric.")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ImportConfigError(f"{name} must be numeric, got {value!r}.") from exc
    if not math.isfinite(number):
        raise ImportConfigError(f"{name} must be finite.")
    return number


def _coerce_flag(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ImportConfigError(f"{name} must be a boolean, got {value!r}.")


def _coerce_thresholds(value: Any) -> SpatialThresholds:
    if isinstance(value, SpatialThresholds):
        return value
    if not isinstance(value, Mapping):
        raise ImportConfigError("spatial_thresholds must be a mapping of high/medium/low meters.")
    unknown = set(value) - {"high", "medium", "low"}
    if unknown:
        raise ImportConfigError(f"Unknown spatial threshold(s): {', '.join(sorted(unknown))}")
    return SpatialThresholds(**{key: _coerce_number(val, f"spatial_thresholds.{key}") for key, val in value.items()})


def _coerce_weights(value: Any) -> ScoringWeights:
    if isinstance(value, ScoringWeights):
        return value
    if not isinstance(value, Mapping):
        raise ImportConfigError("weights must be a mapping.")

    flattened: dict[str, float] = {}
    for key, val in value.items():
        if key == "distance" and isinstance(val, Mapping):
            for tier, tier_value in val.items():
                flattened[f"distance_{tier}"] = _coerce_number(tier_value, f"weights.distance.{tier}")
            continue
        if key == "distance":
            # A single distance weight sets the high tier; lower tiers keep the default proportions.
            high = _coerce_number(val, "weights.distance")
            defaults = ScoringWeights()
            flattened.setdefault("distance_high", high)
            flattened.setdefault("distance_medium", high * defaults.distance_medium / defaults.distance_high)
            flattened.setdefault("distance_low", high * defaults.distance_low / defaults.distance_high)
            continue
        name = {"artistCap": "artist_cap"}.get(key, key)
        flattened[name] = _coerce_number(val, f"weights.{key}")

    valid = {item.name for item in fields(ScoringWeights)}
    unknown = set(flattened) - valid
    if unknown:
        raise ImportConfigError(f"Unknown scoring weight(s): {', '.join(sorted(unknown))}")
    return ScoringWeights(**flattened)


__all__ = [
    "DEFAULT_BATCH_TIMEOUT_SECONDS",
    "DEFAULT_MERGE_CONFIDENCE_THRESHOLD",
    "ImportConfig",
    "ImportConfigError",
    "ScoringWeights",
    "SpatialThresholds",
]
