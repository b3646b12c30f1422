"""Artwork import pipeline: normalize, match, decide, execute, audit."""

from __future__ import annotations

from .artist_resolver import ArtistLookupSnapshot, ArtistResolution, ArtistResolver
from .audit import AuditCollector, AuditEntry, BatchReport, BatchTotals, finalize
from .decision import Create, FlagAmbiguous, MergeDecision, MergeInto, decide
from .engine import run_import
from .executor import ExecutionResult, TransactionExecutor
from .normalize import ImportRecord, NormalizedRecord, RecordRejected, canonical_key, normalize
from .run_service import ImportRunService, RunFilters
from .scoring import DuplicateCandidate, rank_candidates, score
from .spatial import SpatialCandidateIndex, haversine_meters
from .store import ArtworkSnapshot, ArtworkStore
from .survivorship import MergeOutcome, merge_artwork, merge_tags

__all__ = [
    "ArtistLookupSnapshot",
    "ArtistResolution",
    "ArtistResolver",
    "ArtworkSnapshot",
    "ArtworkStore",
    "AuditCollector",
    "AuditEntry",
    "BatchReport",
    "BatchTotals",
    "Create",
    "DuplicateCandidate",
    "ExecutionResult",
    "FlagAmbiguous",
    "ImportRecord",
    "ImportRunService",
    "MergeDecision",
    "MergeInto",
    "MergeOutcome",
    "NormalizedRecord",
    "RecordRejected",
    "RunFilters",
    "SpatialCandidateIndex",
    "TransactionExecutor",
    "canonical_key",
    "decide",
    "finalize",
    "haversine_meters",
    "merge_artwork",
    "merge_tags",
    "normalize",
    "rank_candidates",
    "run_import",
    "score",
]
