"""
Merge/create decisions.

The policy is conservative: anything below the confidence threshold becomes a
new artwork. A near miss (some signal fired but not enough) is kept on the
``Create`` decision so the audit entry can surface it for review.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from artwork_app.importer.pipeline.normalize import ImportRecord
from artwork_app.importer.pipeline.scoring import DuplicateCandidate
from config.importer import DEFAULT_MERGE_CONFIDENCE_THRESHOLD


@dataclass(frozen=True)
class Create:
    near_miss: DuplicateCandidate | None = None


@dataclass(frozen=True)
class MergeInto:
    artwork_id: int
    candidate: DuplicateCandidate

    @property
    def via_external_id(self) -> bool:
        return self.candidate.external_id_exact_match


@dataclass(frozen=True)
class FlagAmbiguous:
    candidates: tuple[DuplicateCandidate, ...]


MergeDecision = Create | MergeInto | FlagAmbiguous


def _ambiguous_candidates(
    ranked: Sequence[DuplicateCandidate],
    threshold: float,
    margin: float,
) -> tuple[DuplicateCandidate, ...]:
    best = ranked[0]
    if best.external_id_exact_match:
        return ()
    tied = tuple(
        candidate
        for candidate in ranked
        if candidate.confidence >= threshold and best.confidence - candidate.confidence <= margin
    )
    return tied if len(tied) > 1 else ()


def decide(
    record: ImportRecord,
    best: DuplicateCandidate | None,
    threshold: float = DEFAULT_MERGE_CONFIDENCE_THRESHOLD,
    *,
    ranked: Sequence[DuplicateCandidate] = (),
    ambiguity_margin: float | None = None,
) -> MergeDecision:
    """
    Choose what to do with ``record`` given its best candidate.

    ``ranked`` and ``ambiguity_margin`` only matter for ambiguity flagging,
    which stays off unless a margin is configured.
    """

    if best is None:
        return Create()

    if best.confidence >= threshold:
        if ambiguity_margin is not None and ranked:
            tied = _ambiguous_candidates(ranked, threshold, ambiguity_margin)
            if tied:
                return FlagAmbiguous(candidates=tied)
        return MergeInto(artwork_id=best.artwork_id, candidate=best)

    if best.confidence > 0:
        return Create(near_miss=best)
    return Create()


__all__ = [
    "Create",
    "FlagAmbiguous",
    "MergeDecision",
    "MergeInto",
    "decide",
]
