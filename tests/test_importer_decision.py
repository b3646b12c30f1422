from artwork_app.importer.pipeline.decision import Create, FlagAmbiguous, MergeInto, decide
from artwork_app.importer.pipeline.normalize import ImportRecord
from artwork_app.importer.pipeline.scoring import DuplicateCandidate, rank_candidates

RECORD = ImportRecord(
    record_index=0,
    source="vancouver",
    external_id=None,
    title="Blue Whale Mural",
    artist_names=(),
    lat=49.28,
    lon=-123.12,
)


def _candidate(artwork_id, confidence, *, external=False):
    return DuplicateCandidate(
        artwork_id=artwork_id,
        distance_meters=3.0,
        title_similarity=1.0,
        artist_overlap_score=0.0,
        external_id_exact_match=external,
        confidence=confidence,
    )


def test_no_candidate_creates():
    assert decide(RECORD, None) == Create()


def test_at_threshold_merges():
    best = _candidate(3, 0.85)
    decision = decide(RECORD, best)
    assert isinstance(decision, MergeInto)
    assert decision.artwork_id == 3
    assert decision.via_external_id is False


def test_below_threshold_is_near_miss():
    best = _candidate(3, 0.84)
    decision = decide(RECORD, best)
    assert isinstance(decision, Create)
    assert decision.near_miss == best


def test_zero_confidence_is_plain_create():
    assert decide(RECORD, _candidate(3, 0.0)) == Create()


def test_custom_threshold():
    assert isinstance(decide(RECORD, _candidate(3, 0.6), 0.5), MergeInto)
    assert isinstance(decide(RECORD, _candidate(3, 0.9), 0.95), Create)


def test_external_id_match_merges():
    decision = decide(RECORD, _candidate(8, 1.0, external=True))
    assert isinstance(decision, MergeInto)
    assert decision.via_external_id is True


def test_ambiguity_only_flagged_when_margin_configured():
    ranked = rank_candidates([_candidate(5, 0.91), _candidate(2, 0.9)])

    assert isinstance(decide(RECORD, ranked[0], ranked=ranked), MergeInto)

    decision = decide(RECORD, ranked[0], ranked=ranked, ambiguity_margin=0.05)
    assert isinstance(decision, FlagAmbiguous)
    assert [candidate.artwork_id for candidate in decision.candidates] == [5, 2]


def test_ambiguity_ignores_candidates_outside_margin_or_threshold():
    ranked = rank_candidates([_candidate(5, 0.99), _candidate(2, 0.9), _candidate(7, 0.8)])
    decision = decide(RECORD, ranked[0], ranked=ranked, ambiguity_margin=0.05)
    assert isinstance(decision, MergeInto)
    assert decision.artwork_id == 5


def test_external_id_match_is_never_ambiguous():
    ranked = rank_candidates([_candidate(5, 1.0, external=True), _candidate(2, 1.0)])
    decision = decide(RECORD, ranked[0], ranked=ranked, ambiguity_margin=0.1)
    assert isinstance(decision, MergeInto)
    assert decision.artwork_id == 5
