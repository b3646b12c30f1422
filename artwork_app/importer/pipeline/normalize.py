"""
Input normalization for artwork import records.

Raw records arrive from loosely structured sources (JSON dumps, CSV
conversions, scraper output). ``normalize`` turns one raw mapping into a
``NormalizedRecord`` or a ``RecordRejected`` carrying the validation error, so
the batch controller has to handle both outcomes explicitly.
"""

from __future__ import annotations

import html
import math
import re
import unicodedata
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Iterable, Mapping, Sequence

from flask import current_app, has_app_context

from artwork_app.importer.errors import (
    INVALID_COORDINATES,
    INVALID_FIELD,
    INVALID_RECORD,
    TEXT_TRUNCATED,
    TITLE_TOO_LONG,
    RecordValidationError,
    ResolutionWarning,
)

MAX_TEXT_LENGTH = 10_000
MAX_TITLE_LENGTH = 500

_WHITESPACE_RE = re.compile(r"\s+")
_DANGEROUS_BLOCK_RE = re.compile(
    r"<(script|style|iframe|object|embed)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_DANGEROUS_OPEN_RE = re.compile(r"<(script|style|iframe|object|embed)\b[^>]*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_EVENT_HANDLER_RE = re.compile(r"\bon[a-z]+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]+)", re.IGNORECASE)
_JS_URL_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_ARTIST_SEPARATOR_RE = re.compile(r"\s*(?:,|&|\band\b)\s*", re.IGNORECASE)
_AND_WORD_RE = re.compile(r"\band\b", re.IGNORECASE)
_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)

_KEY_ALIASES: Mapping[str, Sequence[str]] = {
    "external_id": ("externalId", "external_id", "id"),
    "source": ("source", "source_system"),
    "title": ("title", "name"),
    "artist_names": ("artistNames", "artist_names", "artists", "artist"),
    "artist_source_url": ("artistSourceUrl", "artist_source_url", "artistUrl"),
    "lat": ("lat", "latitude"),
    "lon": ("lon", "lng", "longitude"),
    "tags": ("tags",),
    "description": ("description",),
    "source_url": ("sourceUrl", "source_url", "url"),
}


@dataclass(frozen=True)
class ImportRecord:
    """A validated, canonicalized import record."""

    record_index: int
    source: str
    external_id: str | None
    title: str | None
    artist_names: tuple[str, ...]
    lat: float | None
    lon: float | None
    tags: Mapping[str, str] = field(default_factory=dict)
    description: str | None = None
    source_url: str | None = None
    artist_source_url: str | None = None
    warnings: tuple[ResolutionWarning, ...] = ()

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("warnings")
        payload.pop("record_index")
        payload["artist_names"] = list(self.artist_names)
        payload["tags"] = dict(self.tags)
        return payload


@dataclass(frozen=True)
class NormalizedRecord:
    ok: ClassVar[bool] = True
    record: ImportRecord


@dataclass(frozen=True)
class RecordRejected:
    ok: ClassVar[bool] = False
    record_index: int
    error: RecordValidationError


NormalizationResult = NormalizedRecord | RecordRejected


def canonical_key(name: object | None) -> str:
    """
    Lookup key for artist names.

    Lowercased, diacritics and punctuation removed, internal whitespace
    collapsed to single spaces.
    """

    if name is None:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(name))
    without_marks = "".join(char for char in decomposed if not unicodedata.combining(char))
    stripped = _PUNCTUATION_RE.sub("", without_marks.lower()).replace("_", "")
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def strip_html(value: str) -> str:
    """Remove markup, embedded scripts, inline handlers, and ``javascript:`` URLs."""

    text = _DANGEROUS_BLOCK_RE.sub("", value)
    text = _DANGEROUS_OPEN_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    # Entities can smuggle markup through the first pass.
    text = html.unescape(text)
    text = _DANGEROUS_BLOCK_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    return _JS_URL_RE.sub("", text)


def _clean_text(value: object | None, *, collapse: bool = True) -> str:
    if value is None:
        return ""
    text = strip_html(value if isinstance(value, str) else str(value))
    if collapse:
        return _WHITESPACE_RE.sub(" ", text).strip()
    return text.replace("\r\n", "\n").strip()


def _extract_value(payload: Mapping[str, Any], field_name: str) -> Any:
    for key in _KEY_ALIASES[field_name]:
        if key in payload:
            return payload[key]
    return None


def _log_truncation(record_index: int, field_name: str, length: int) -> None:
    if has_app_context():
        current_app.logger.warning(
            "Import record text truncated",
            extra={
                "importer_record_index": record_index,
                "importer_field": field_name,
                "importer_original_length": length,
                "importer_max_length": MAX_TEXT_LENGTH,
            },
        )


def _truncate(
    text: str,
    *,
    record_index: int,
    field_name: str,
    warnings: list[ResolutionWarning],
) -> str:
    if len(text) <= MAX_TEXT_LENGTH:
        return text
    _log_truncation(record_index, field_name, len(text))
    warnings.append(
        ResolutionWarning(
            field=field_name,
            code=TEXT_TRUNCATED,
            message=f"Truncated from {len(text)} to {MAX_TEXT_LENGTH} characters.",
        )
    )
    return text[:MAX_TEXT_LENGTH]


def _parse_coordinate(value: Any, name: str) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise RecordValidationError(INVALID_COORDINATES, f"{name} must be numeric.", field=name)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise RecordValidationError(INVALID_COORDINATES, f"{name} is not a number: {value!r}", field=name) from exc
    if not math.isfinite(number):
        raise RecordValidationError(INVALID_COORDINATES, f"{name} must be finite.", field=name)
    return number


def normalize_coordinates(
    raw_lat: Any,
    raw_lon: Any,
    *,
    allow_missing: bool = False,
) -> tuple[float | None, float | None]:
    """
    Validate a coordinate pair.

    Both values missing is accepted only when ``allow_missing`` is set. A lone
    missing value, non-finite numbers, out-of-range values, and the ``(0, 0)``
    placeholder are rejected with ``INVALID_COORDINATES``.
    """

    lat = _parse_coordinate(raw_lat, "lat")
    lon = _parse_coordinate(raw_lon, "lon")

    if lat is None and lon is None:
        if allow_missing:
            return None, None
        raise RecordValidationError(INVALID_COORDINATES, "Coordinates are required.", field="lat")
    if lat is None or lon is None:
        missing = "lat" if lat is None else "lon"
        raise RecordValidationError(INVALID_COORDINATES, f"{missing} is missing.", field=missing)
    if not -90.0 <= lat <= 90.0:
        raise RecordValidationError(INVALID_COORDINATES, f"lat {lat} is outside [-90, 90].", field="lat")
    if not -180.0 <= lon <= 180.0:
        raise RecordValidationError(INVALID_COORDINATES, f"lon {lon} is outside [-180, 180].", field="lon")
    if lat == 0.0 and lon == 0.0:
        raise RecordValidationError(INVALID_COORDINATES, "Coordinates (0, 0) are a placeholder.", field="lat")
    return lat, lon


def _split_single(text: str) -> list[str]:
    if text.count(",") == 1 and "&" not in text and not _AND_WORD_RE.search(text):
        last, first = (part.strip() for part in text.split(",", 1))
        # "Doe, Jane" is one person; "Jane Doe, John Smith" is two.
        if last and first and len(first.split(" ")) == 1:
            return [f"{first} {last}"]
    return [part.strip() for part in _ARTIST_SEPARATOR_RE.split(text) if part and part.strip()]


def split_artist_names(value: object | None) -> tuple[str, ...]:
    """
    Split a credit string (or list of credit strings) into individual names.

    Separators are ``,``, ``&`` and the word ``and``. Order is preserved and
    repeats of the same canonical name are dropped.
    """

    if value is None:
        return ()
    items: Iterable[object] = value if isinstance(value, (list, tuple)) else (value,)

    names: list[str] = []
    seen: set[str] = set()
    for item in items:
        text = _clean_text(item)
        if not text:
            continue
        for name in _split_single(text):
            key = canonical_key(name)
            if not key or key in seen:
                continue
            seen.add(key)
            names.append(name)
    return tuple(names)


def _normalize_tags(
    raw_tags: Any,
    *,
    record_index: int,
    warnings: list[ResolutionWarning],
) -> dict[str, str]:
    if raw_tags is None:
        return {}
    if isinstance(raw_tags, Mapping):
        pairs = raw_tags.items()
    elif isinstance(raw_tags, (list, tuple)):
        try:
            pairs = [(item["key"], item.get("value")) for item in raw_tags]
        except (TypeError, KeyError) as exc:
            raise RecordValidationError(
                INVALID_FIELD, "tags must be a mapping or a list of {key, value} objects.", field="tags"
            ) from exc
    else:
        raise RecordValidationError(INVALID_FIELD, "tags must be a mapping.", field="tags")

    tags: dict[str, str] = {}
    for raw_key, raw_value in pairs:
        key = _clean_text(raw_key)
        if not key or raw_value is None:
            continue
        value = _clean_text(raw_value, collapse=False)
        tags[key] = _truncate(value, record_index=record_index, field_name=f"tags.{key}", warnings=warnings)
    return tags


def _optional_text(value: Any) -> str | None:
    text = _clean_text(value)
    return text or None


def normalize_record(
    raw: Mapping[str, Any] | ImportRecord,
    record_index: int,
    *,
    default_source: str = "import",
    allow_missing_coordinates: bool = False,
) -> ImportRecord:
    """Normalize one record, raising ``RecordValidationError`` on invalid input."""

    if isinstance(raw, ImportRecord):
        raw = raw.to_payload()
    if not isinstance(raw, Mapping):
        raise RecordValidationError(INVALID_RECORD, f"Record must be an object, got {type(raw).__name__}.")

    warnings: list[ResolutionWarning] = []
    lat, lon = normalize_coordinates(
        _extract_value(raw, "lat"),
        _extract_value(raw, "lon"),
        allow_missing=allow_missing_coordinates,
    )

    title = _optional_text(_extract_value(raw, "title"))
    if title is not None and len(title) > MAX_TITLE_LENGTH:
        raise RecordValidationError(
            TITLE_TOO_LONG,
            f"title is {len(title)} characters; limit is {MAX_TITLE_LENGTH}.",
            field="title",
        )

    description = _clean_text(_extract_value(raw, "description"), collapse=False) or None
    if description is not None:
        description = _truncate(description, record_index=record_index, field_name="description", warnings=warnings)

    source = _optional_text(_extract_value(raw, "source")) or default_source
    external_id = _optional_text(_extract_value(raw, "external_id"))

    return ImportRecord(
        record_index=record_index,
        source=source,
        external_id=external_id,
        title=title,
        artist_names=split_artist_names(_extract_value(raw, "artist_names")),
        lat=lat,
        lon=lon,
        tags=_normalize_tags(_extract_value(raw, "tags"), record_index=record_index, warnings=warnings),
        description=description,
        source_url=_optional_text(_extract_value(raw, "source_url")),
        artist_source_url=_optional_text(_extract_value(raw, "artist_source_url")),
        warnings=tuple(warnings),
    )


def normalize(
    raw: Mapping[str, Any] | ImportRecord,
    record_index: int,
    *,
    default_source: str = "import",
    allow_missing_coordinates: bool = False,
) -> NormalizationResult:
    """Normalize one record into ``NormalizedRecord`` or ``RecordRejected``."""

    try:
        record = normalize_record(
            raw,
            record_index,
            default_source=default_source,
            allow_missing_coordinates=allow_missing_coordinates,
        )
    except RecordValidationError as exc:
        return RecordRejected(record_index=record_index, error=exc)
    return NormalizedRecord(record=record)


__all__ = [
    "MAX_TEXT_LENGTH",
    "MAX_TITLE_LENGTH",
    "ImportRecord",
    "NormalizationResult",
    "NormalizedRecord",
    "RecordRejected",
    "canonical_key",
    "normalize",
    "normalize_coordinates",
    "normalize_record",
    "split_artist_names",
    "strip_html",
]
