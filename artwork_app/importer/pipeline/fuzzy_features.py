from __future__ import annotations

from typing import Iterable, Mapping

from rapidfuzz import fuzz, utils

from artwork_app.importer.pipeline.normalize import canonical_key
from config.importer import ScoringWeights


def _clean_text(value: object | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def compute_title_similarity(title1: object | None, title2: object | None) -> float:
    """Token-order-insensitive title similarity (0..1). Blank titles never match."""

    text1 = utils.default_process(_clean_text(title1))
    text2 = utils.default_process(_clean_text(title2))
    if not text1 or not text2:
        return 0.0
    return float(max(0.0, min(1.0, fuzz.token_sort_ratio(text1, text2) / 100.0)))


def compute_name_similarity(name1: object | None, name2: object | None) -> float:
    """Edit-distance similarity between two artist names on their canonical keys (0..1)."""

    key1 = canonical_key(name1)
    key2 = canonical_key(name2)
    if not key1 or not key2:
        return 0.0
    return float(max(0.0, min(1.0, fuzz.ratio(key1, key2) / 100.0)))


def compute_artist_overlap(incoming_ids: Iterable[int], candidate_ids: Iterable[int]) -> tuple[int, float]:
    """
    Return ``(shared_count, overlap_score)``.

    The score is the share of incoming artists already linked to the candidate,
    so a record crediting one artist who is on the candidate scores 1.0.
    """

    incoming = set(incoming_ids)
    if not incoming:
        return 0, 0.0
    shared = len(incoming & set(candidate_ids))
    return shared, shared / len(incoming)


def artist_contribution(shared_count: int, weights: ScoringWeights) -> float:
    return min(shared_count * weights.artist, weights.artist_cap)


def weighted_score(features: Mapping[str, float], weights: ScoringWeights) -> float:
    """Sum feature contributions and clamp to [0, 1].

    Expected keys: ``distance`` (already tier-weighted), ``title`` (0..1
    similarity) and ``artist`` (already capped contribution). Missing keys
    default to 0.0.
    """

    total = (
        max(0.0, features.get("distance", 0.0))
        + weights.title * max(0.0, min(1.0, features.get("title", 0.0)))
        + max(0.0, features.get("artist", 0.0))
    )
    return float(max(0.0, min(1.0, total)))


def summarize_features(features: Mapping[str, float]) -> dict[str, float]:
    """Clamp feature scores to [0,1] and round to 3 decimal places for persistence."""

    return {key: round(max(0.0, min(1.0, value)), 3) for key, value in features.items()}


__all__ = [
    "artist_contribution",
    "compute_artist_overlap",
    "compute_name_similarity",
    "compute_title_similarity",
    "summarize_features",
    "weighted_score",
]
