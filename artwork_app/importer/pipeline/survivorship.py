"""
Field-level merge policy for import records merged into existing artworks.

Scalar fields go through the survivorship profile (stored data first, incoming
only fills blanks). Tags are unioned with the stored value winning each
conflict, artist links are appended, and the record's external identifier is
added so the next delivery matches exactly.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, MutableMapping, Sequence

from artwork_app.importer.errors import EXTERNAL_ID_CONFLICT, ResolutionWarning
from artwork_app.importer.pipeline.normalize import ImportRecord
from artwork_app.importer.pipeline.store import ArtworkSnapshot
from config.survivorship import DEFAULT_PROFILE, FieldRule, SurvivorshipProfile

SourceTier = str


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _is_effectively_null(value: Any) -> bool:
    return _normalize_value(value) is None


@dataclass(frozen=True)
class FieldCandidate:
    tier: SourceTier
    value: Any


@dataclass(frozen=True)
class FieldDecision:
    field_name: str
    group_name: str
    winner: FieldCandidate
    losers: Sequence[FieldCandidate]
    changed: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field_name,
            "group": self.group_name,
            "winner_tier": self.winner.tier,
            "changed": self.changed,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class SurvivorshipResult:
    resolved_values: Mapping[str, Any]
    decisions: Sequence[FieldDecision]
    stats: Mapping[str, int]


def _candidate_for_tier(
    tier: SourceTier,
    field_name: str,
    *,
    incoming_payload: Mapping[str, Any],
    core_snapshot: Mapping[str, Any],
) -> FieldCandidate:
    if tier == "existing_core":
        value = core_snapshot.get(field_name)
    elif tier == "incoming":
        value = incoming_payload.get(field_name)
    else:
        value = None
    return FieldCandidate(tier=tier, value=_normalize_value(value))


def _select_winner(rule: FieldRule, candidates: Sequence[FieldCandidate]) -> tuple[FieldCandidate, list[FieldCandidate]]:
    if not candidates:
        raise ValueError(f"Expected at least one candidate for field {rule.field_name}.")

    winner = candidates[0]
    if rule.prefer_non_null:
        for candidate in candidates:
            if not _is_effectively_null(candidate.value):
                winner = candidate
                break

    losers = [candidate for candidate in candidates if candidate is not winner]
    return winner, losers


def apply_survivorship(
    *,
    profile: SurvivorshipProfile,
    incoming_payload: Mapping[str, Any],
    core_snapshot: Mapping[str, Any],
) -> SurvivorshipResult:
    resolved: MutableMapping[str, Any] = {}
    decisions: list[FieldDecision] = []
    stats: Counter[str] = Counter()

    for group in profile.field_groups:
        for rule in group.fields:
            field_name = rule.field_name
            tier_sequence = list(rule.tier_order)
            for tier in profile.default_tier_order:
                if tier not in tier_sequence:
                    tier_sequence.append(tier)

            candidates = [
                _candidate_for_tier(
                    tier,
                    field_name,
                    incoming_payload=incoming_payload,
                    core_snapshot=core_snapshot,
                )
                for tier in tier_sequence
            ]
            winner, losers = _select_winner(rule, candidates)
            resolved[field_name] = winner.value

            changed = winner.value != _normalize_value(core_snapshot.get(field_name))
            if winner.tier == "incoming":
                stats["incoming_wins"] += 1
            else:
                stats["core_wins"] += 1
            stats["fields_changed" if changed else "fields_unchanged"] += 1

            decisions.append(
                FieldDecision(
                    field_name=field_name,
                    group_name=group.name,
                    winner=winner,
                    losers=tuple(losers),
                    changed=changed,
                    reason=f"{winner.tier} selected",
                )
            )

    return SurvivorshipResult(resolved_values=dict(resolved), decisions=tuple(decisions), stats=dict(stats))


def merge_tags(existing: Mapping[str, str], incoming: Mapping[str, str]) -> tuple[dict[str, str], int]:
    """
    Union two tag maps; the existing value wins every conflict.

    Returns the merged map and the number of incoming values discarded. An
    existing key with a blank value is filled and does not count as a conflict.
    """

    merged = dict(existing)
    conflicts = 0
    for key, value in incoming.items():
        if key not in merged:
            merged[key] = value
            continue
        current = merged[key]
        if _is_effectively_null(current):
            if not _is_effectively_null(value):
                merged[key] = value
            continue
        if current != value:
            conflicts += 1
    return merged, conflicts


@dataclass(frozen=True)
class MergeOutcome:
    """
    Result of merging one record into one artwork.

    ``changes`` holds only the artwork columns that must be written back.
    """

    changes: Mapping[str, Any] = field(default_factory=dict)
    field_changes: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    tags_conflict_count: int = 0
    added_artist_ids: tuple[int, ...] = ()
    external_ref: tuple[str, str] | None = None
    warnings: tuple[ResolutionWarning, ...] = ()
    decisions: tuple[FieldDecision, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.changes or self.added_artist_ids or self.external_ref)


def merge_artwork(
    existing: ArtworkSnapshot,
    record: ImportRecord,
    resolved_artist_ids: Iterable[int],
    *,
    profile: SurvivorshipProfile = DEFAULT_PROFILE,
) -> MergeOutcome:
    incoming_payload = {
        "title": record.title,
        "description": record.description,
        "source_url": record.source_url,
    }
    core_snapshot = existing.to_dict()
    survivorship = apply_survivorship(
        profile=profile,
        incoming_payload=incoming_payload,
        core_snapshot=core_snapshot,
    )

    changes: dict[str, Any] = {}
    field_changes: dict[str, dict[str, Any]] = {}
    for decision in survivorship.decisions:
        if decision.changed:
            old_value = core_snapshot.get(decision.field_name)
            changes[decision.field_name] = decision.winner.value
            field_changes[decision.field_name] = {"old": old_value, "new": decision.winner.value}

    merged_tags, conflicts = merge_tags(existing.tags, record.tags)
    if merged_tags != dict(existing.tags):
        changes["tags"] = merged_tags
        field_changes["tags"] = {"old": dict(existing.tags), "new": merged_tags}

    linked = set(existing.artist_ids)
    added_artists = tuple(artist_id for artist_id in dict.fromkeys(resolved_artist_ids) if artist_id not in linked)
    if added_artists:
        field_changes["artist_ids"] = {
            "old": list(existing.artist_ids),
            "new": [*existing.artist_ids, *added_artists],
        }

    external_ref: tuple[str, str] | None = None
    warnings: list[ResolutionWarning] = []
    if record.external_id:
        current = existing.external_ids.get(record.source)
        if current is None:
            external_ref = (record.source, record.external_id)
            field_changes["external_ids"] = {
                "old": dict(existing.external_ids),
                "new": {**existing.external_ids, record.source: record.external_id},
            }
        elif current != record.external_id:
            warnings.append(
                ResolutionWarning(
                    field="external_id",
                    code=EXTERNAL_ID_CONFLICT,
                    message=(
                        f"Artwork {existing.id} already has {record.source} id '{current}'; "
                        f"kept it and ignored '{record.external_id}'."
                    ),
                )
            )

    return MergeOutcome(
        changes=changes,
        field_changes=field_changes,
        tags_conflict_count=conflicts,
        added_artist_ids=added_artists,
        external_ref=external_ref,
        warnings=tuple(warnings),
        decisions=tuple(survivorship.decisions),
    )


def summarize_decisions(decisions: Iterable[FieldDecision]) -> Mapping[str, Any]:
    """Per-group counts of changed fields and incoming wins, for merge metadata."""

    summary: MutableMapping[str, MutableMapping[str, Any]] = {}
    for decision in decisions:
        group = summary.setdefault(decision.group_name, {"changed": 0, "total": 0, "incoming_wins": 0})
        group["total"] += 1
        if decision.changed:
            group["changed"] += 1
        if decision.winner.tier == "incoming":
            group["incoming_wins"] += 1
    return {group: dict(values) for group, values in summary.items()}


__all__ = [
    "FieldCandidate",
    "FieldDecision",
    "MergeOutcome",
    "SurvivorshipResult",
    "apply_survivorship",
    "merge_artwork",
    "merge_tags",
    "summarize_decisions",
]
