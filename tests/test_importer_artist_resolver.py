from artwork_app.importer.errors import ARTIST_NOT_FOUND
from artwork_app.importer.pipeline.artist_resolver import (
    MATCH_CREATED,
    MATCH_FUZZY,
    MATCH_KEY,
    MATCH_SOURCE_URL,
    ArtistLookupSnapshot,
    ArtistResolver,
)
from artwork_app.importer.pipeline.store import ArtistSummary, ArtworkStore
from artwork_app.models import Artist, db


def _resolver(import_id="imp-artists", **kwargs):
    store = ArtworkStore()
    return ArtistResolver(store, import_id=import_id, **kwargs), store


def test_snapshot_prefers_lowest_id_for_shared_key():
    snapshot = ArtistLookupSnapshot.from_artists(
        [
            ArtistSummary(id=9, canonical_name="Jane Doe", canonical_key="jane doe"),
            ArtistSummary(id=4, canonical_name="Jane  Doe", canonical_key="jane doe", aliases=("J. Doe",)),
        ]
    )

    assert snapshot.by_key["jane doe"] == 4
    assert snapshot.by_key["j doe"] == 4
    assert len(snapshot) == 2


def test_exact_name_and_alias_match(make_artist):
    jane = make_artist("Jane Doe")
    banksy = make_artist("Banksy", aliases=["Robin Gunningham"])
    resolver, store = _resolver()

    resolution = resolver.resolve(["JANE DOE", "robin gunningham"], store.load_artist_snapshot(), False)

    assert resolution.artist_ids == (jane, banksy)
    assert [item.match for item in resolution.resolved] == [MATCH_KEY, MATCH_KEY]
    assert resolution.warnings == ()
    assert resolution.created_ids == ()


def test_fuzzy_match_above_threshold_records_alias(make_artist):
    artist_id = make_artist("Alexandra Konstantinopoulou")
    resolver, store = _resolver()

    resolution = resolver.resolve(["Alexandra Konstantinopolou"], store.load_artist_snapshot(), False)

    assert resolution.artist_ids == (artist_id,)
    assert resolution.resolved[0].match == MATCH_FUZZY
    assert resolution.resolved[0].similarity >= 0.95
    assert "Alexandra Konstantinopolou" in db.session.get(Artist, artist_id).aliases


def test_similar_name_below_threshold_is_not_linked(make_artist):
    make_artist("Jane Doe")
    resolver, store = _resolver()

    resolution = resolver.resolve(["Jane Dough"], store.load_artist_snapshot(), False)

    assert resolution.artist_ids == ()
    assert len(resolution.warnings) == 1
    assert resolution.warnings[0].code == ARTIST_NOT_FOUND
    assert resolution.warnings[0].field == "artist"
    assert db.session.query(Artist).count() == 1


def test_create_missing_artist_with_provenance():
    resolver, store = _resolver(import_id="imp-create")
    lookup = store.load_artist_snapshot()

    resolution = resolver.resolve(["New Painter"], lookup, True, record_index=4)

    assert resolution.as_pairs() == [(resolution.artist_ids[0], True)]
    assert resolution.resolved[0].match == MATCH_CREATED
    artist = db.session.get(Artist, resolution.artist_ids[0])
    assert artist.canonical_name == "New Painter"
    assert artist.canonical_key == "new painter"
    assert artist.provenance == {"autoCreatedFromImport": "imp-create", "sourceRecordIndex": 4}


def test_artist_created_earlier_in_batch_is_reused():
    resolver, store = _resolver()
    lookup = store.load_artist_snapshot()

    first = resolver.resolve(["New Painter"], lookup, True, record_index=0)
    second = resolver.resolve(["new painter"], lookup, True, record_index=1)

    assert second.artist_ids == first.artist_ids
    assert second.created_ids == ()
    assert db.session.query(Artist).count() == 1


def test_source_url_identifies_single_credit_only(make_artist):
    studio = make_artist("Studio Nord", source_url="https://artists.example/nord")
    resolver, store = _resolver()
    lookup = store.load_artist_snapshot()

    single = resolver.resolve(["Nord Collective"], lookup, False, artist_source_url="https://artists.example/nord")
    assert single.artist_ids == (studio,)
    assert single.resolved[0].match == MATCH_SOURCE_URL

    multiple = resolver.resolve(
        ["Nord Collective", "Someone Else"],
        lookup,
        False,
        artist_source_url="https://artists.example/nord",
    )
    assert multiple.artist_ids == ()
    assert [warning.code for warning in multiple.warnings] == [ARTIST_NOT_FOUND, ARTIST_NOT_FOUND]


def test_artist_resolution_dedupes_ids(make_artist):
    jane = make_artist("Jane Doe", aliases=["J Doe"])
    resolver, store = _resolver()

    resolution = resolver.resolve(["Jane Doe", "J Doe"], store.load_artist_snapshot(), False)

    assert resolution.artist_ids == (jane,)
    assert len(resolution.resolved) == 2


def test_source_url_matches_artist_created_earlier_in_batch():
    resolver, store = _resolver()
    lookup = store.load_artist_snapshot()

    first = resolver.resolve(["Studio Nord"], lookup, True, record_index=0, artist_source_url="https://artists.example/nord")
    second = resolver.resolve(["Nord Collective"], lookup, False, record_index=1, artist_source_url="https://artists.example/nord")

    assert second.artist_ids == first.artist_ids
    assert second.resolved[0].match == MATCH_SOURCE_URL
    assert db.session.query(Artist).count() == 1


def test_conflicting_source_url_is_noted_on_matched_artist(make_artist):
    jane = make_artist("Jane Doe", source_url="https://artists.example/jane")
    resolver, store = _resolver(import_id="imp-notes")
    lookup = store.load_artist_snapshot()

    resolution = resolver.resolve(["Jane Doe"], lookup, False, record_index=3, artist_source_url="https://other.example/jd")

    assert resolution.artist_ids == (jane,)
    artist = db.session.get(Artist, jane)
    assert artist.source_url == "https://artists.example/jane"
    assert "https://other.example/jd" in artist.notes
    assert "imp-notes" in artist.notes


def test_matching_source_url_adds_no_note(make_artist):
    jane = make_artist("Jane Doe", source_url="https://artists.example/jane")
    resolver, store = _resolver()

    resolver.resolve(["Jane Doe"], store.load_artist_snapshot(), False, artist_source_url="https://artists.example/jane")

    assert not db.session.get(Artist, jane).notes
