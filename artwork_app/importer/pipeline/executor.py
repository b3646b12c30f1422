"""
Per-record transaction execution.

``TransactionExecutor.transaction()`` brackets one record: everything the
pipeline writes for that record (new artists, aliases, the artwork row, links,
external ids, merge history) commits together or not at all.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from artwork_app.importer.errors import EXTERNAL_ID_CONFLICT, ExecutionError, ResolutionWarning
from artwork_app.importer.pipeline.decision import Create, FlagAmbiguous, MergeDecision, MergeInto
from artwork_app.importer.pipeline.normalize import ImportRecord
from artwork_app.importer.pipeline.store import ArtworkSnapshot, ArtworkStore
from artwork_app.importer.pipeline.survivorship import merge_artwork, summarize_decisions
from config.survivorship import DEFAULT_PROFILE, SurvivorshipProfile

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_MERGED = "merged"
ACTION_SKIPPED = "skipped"
ACTION_DUPLICATE = "duplicate"
ACTION_ERROR = "error"

REASON_AMBIGUOUS = "ambiguous"

DECISION_TYPE_EXTERNAL_ID = "external_id"
DECISION_TYPE_SCORE = "score"


@dataclass(frozen=True)
class ExecutionResult:
    action: str
    artwork_id: int | None = None
    field_changes: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    tags_conflict_count: int = 0
    warnings: tuple[ResolutionWarning, ...] = ()
    reason: str | None = None
    merge_log_id: int | None = None


def _external_id_conflict(external_ref: tuple[str, str], owner: int, artwork_id: int | None) -> ResolutionWarning:
    target = f"artwork {artwork_id}" if artwork_id is not None else "the new artwork"
    return ResolutionWarning(
        field="external_id",
        code=EXTERNAL_ID_CONFLICT,
        message=f"{external_ref[0]} id '{external_ref[1]}' already belongs to artwork {owner}; not linked to {target}.",
    )


def _creation_changes(record: ImportRecord, artist_ids: Iterable[int]) -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    for field_name, value in (
        ("title", record.title),
        ("description", record.description),
        ("lat", record.lat),
        ("lon", record.lon),
        ("source_url", record.source_url),
    ):
        if value is not None:
            changes[field_name] = {"old": None, "new": value}
    if record.tags:
        changes["tags"] = {"old": None, "new": dict(record.tags)}
    linked = list(artist_ids)
    if linked:
        changes["artist_ids"] = {"old": None, "new": linked}
    if record.external_id:
        changes["external_ids"] = {"old": None, "new": {record.source: record.external_id}}
    return changes


class TransactionExecutor:
    """Apply merge decisions through an ``ArtworkStore``."""

    def __init__(
        self,
        store: ArtworkStore,
        *,
        profile: SurvivorshipProfile = DEFAULT_PROFILE,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.session = store.session
        self.profile = profile
        self.dry_run = dry_run

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            if self.dry_run:
                self.session.rollback()
            else:
                self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def apply(
        self,
        decision: MergeDecision,
        record: ImportRecord,
        resolved_artist_ids: Iterable[int],
        *,
        candidate_artwork: ArtworkSnapshot | None = None,
    ) -> ExecutionResult:
        """
        Perform the mutation ``decision`` calls for.

        Storage failures are raised as ``ExecutionError``; the caller's
        ``transaction()`` block rolls the record back.
        """

        artist_ids = tuple(dict.fromkeys(resolved_artist_ids))
        try:
            if isinstance(decision, FlagAmbiguous):
                return ExecutionResult(action=ACTION_SKIPPED, reason=REASON_AMBIGUOUS)
            if isinstance(decision, MergeInto):
                return self._merge(decision, record, artist_ids, candidate_artwork)
            if isinstance(decision, Create):
                return self._create(record, artist_ids)
        except (SQLAlchemyError, LookupError) as exc:
            raise ExecutionError(str(exc), record_index=record.record_index) from exc
        raise TypeError(f"Unsupported merge decision: {decision!r}")

    def _create(self, record: ImportRecord, artist_ids: tuple[int, ...]) -> ExecutionResult:
        values = {
            "title": record.title,
            "description": record.description,
            "lat": record.lat,
            "lon": record.lon,
            "tags": dict(record.tags),
            "source_url": record.source_url,
        }
        field_changes = _creation_changes(record, artist_ids)
        warnings: list[ResolutionWarning] = []
        external_ref = (record.source, record.external_id) if record.external_id else None
        if external_ref is not None:
            owner = self.store.find_artwork_by_external_id(*external_ref)
            if owner is not None:
                warnings.append(_external_id_conflict(external_ref, owner, None))
                external_ref = None
                field_changes.pop("external_ids", None)
        artwork_id = self.store.upsert_artwork(values, add_artist_ids=artist_ids, external_ref=external_ref)
        return ExecutionResult(
            action=ACTION_CREATED,
            artwork_id=artwork_id,
            field_changes=field_changes,
            warnings=tuple(warnings),
        )

    def _merge(
        self,
        decision: MergeInto,
        record: ImportRecord,
        artist_ids: tuple[int, ...],
        candidate_artwork: ArtworkSnapshot | None,
    ) -> ExecutionResult:
        before = candidate_artwork
        if before is None or before.id != decision.artwork_id:
            before = self.store.get_artwork_by_id(decision.artwork_id)
        if before is None:
            raise ExecutionError(
                f"Artwork {decision.artwork_id} disappeared before merge.",
                record_index=record.record_index,
            )

        outcome = merge_artwork(before, record, artist_ids, profile=self.profile)
        warnings = list(outcome.warnings)
        external_ref = outcome.external_ref
        field_changes = dict(outcome.field_changes)
        if external_ref is not None:
            owner = self.store.find_artwork_by_external_id(*external_ref)
            if owner is not None and owner != before.id:
                warnings.append(_external_id_conflict(external_ref, owner, before.id))
                external_ref = None
                field_changes.pop("external_ids", None)

        changed = bool(outcome.changes or outcome.added_artist_ids or external_ref)
        via_external_id = decision.via_external_id
        if via_external_id:
            action = ACTION_UPDATED if changed else ACTION_DUPLICATE
        else:
            action = ACTION_MERGED

        if not changed:
            if record.external_id:
                self.store.mark_external_id_seen(record.source, record.external_id)
            return ExecutionResult(
                action=action,
                artwork_id=before.id,
                tags_conflict_count=outcome.tags_conflict_count,
                warnings=tuple(warnings),
            )

        self.store.upsert_artwork(
            outcome.changes,
            artwork_id=before.id,
            add_artist_ids=outcome.added_artist_ids,
            external_ref=external_ref,
        )
        after = self.store.get_artwork_by_id(before.id)
        merge_log_id = self.store.record_merge(
            artwork_id=before.id,
            record_index=record.record_index,
            decision_type=DECISION_TYPE_EXTERNAL_ID if via_external_id else DECISION_TYPE_SCORE,
            confidence=decision.candidate.confidence,
            snapshot_before=before.to_dict(),
            snapshot_after=after.to_dict() if after is not None else {},
            metadata={
                "matched_reason": decision.candidate.matched_reason,
                "breakdown": dict(decision.candidate.breakdown),
                "survivorship_decisions": summarize_decisions(outcome.decisions),
                "tags_conflict_count": outcome.tags_conflict_count,
            },
        )
        if has_app_context():
            current_app.logger.debug(
                "Importer merged record into artwork",
                extra={
                    "importer_record_index": record.record_index,
                    "importer_artwork_id": before.id,
                    "importer_action": action,
                    "importer_fields_changed": sorted(field_changes),
                },
            )
        return ExecutionResult(
            action=action,
            artwork_id=before.id,
            field_changes=field_changes,
            tags_conflict_count=outcome.tags_conflict_count,
            warnings=tuple(warnings),
            merge_log_id=merge_log_id,
        )


__all__ = [
    "ACTION_CREATED",
    "ACTION_DUPLICATE",
    "ACTION_ERROR",
    "ACTION_MERGED",
    "ACTION_SKIPPED",
    "ACTION_UPDATED",
    "DECISION_TYPE_EXTERNAL_ID",
    "DECISION_TYPE_SCORE",
    "REASON_AMBIGUOUS",
    "ExecutionResult",
    "TransactionExecutor",
]
