import json

import pytest

from artwork_app.importer.errors import EXTERNAL_ID_CONFLICT
from artwork_app.importer.pipeline.normalize import ImportRecord
from artwork_app.importer.pipeline.store import ArtworkSnapshot
from artwork_app.importer.pipeline.survivorship import (
    apply_survivorship,
    merge_artwork,
    merge_tags,
    summarize_decisions,
)
from config.survivorship import DEFAULT_PROFILE, SurvivorshipConfigError, load_profile


def _snapshot(**overrides):
    values = {
        "id": 11,
        "title": "Blue Whale Mural",
        "description": None,
        "lat": 49.28,
        "lon": -123.12,
        "tags": {"material": "paint"},
        "source_url": None,
        "artist_ids": (1,),
        "external_ids": {},
    }
    values.update(overrides)
    return ArtworkSnapshot(**values)


def _record(**overrides):
    values = {
        "record_index": 2,
        "source": "vancouver",
        "external_id": None,
        "title": "Blue Whale",
        "artist_names": (),
        "lat": 49.28001,
        "lon": -123.12001,
    }
    values.update(overrides)
    return ImportRecord(**values)


def test_apply_survivorship_keeps_existing_and_fills_blanks():
    result = apply_survivorship(
        profile=DEFAULT_PROFILE,
        incoming_payload={"title": "New title", "description": "From import", "source_url": "  "},
        core_snapshot={"title": "Stored title", "description": "", "source_url": None},
    )

    assert result.resolved_values == {"title": "Stored title", "description": "From import", "source_url": None}
    changed = {decision.field_name for decision in result.decisions if decision.changed}
    assert changed == {"description"}
    assert result.stats["incoming_wins"] == 1


def test_merge_tags_existing_wins_and_counts_conflicts():
    merged, conflicts = merge_tags(
        {"material": "paint", "type": "mural", "year": ""},
        {"material": "bronze", "type": "mural", "year": "1999", "artist_statement": "hello"},
    )

    assert merged == {"material": "paint", "type": "mural", "year": "1999", "artist_statement": "hello"}
    assert conflicts == 1


def test_merge_artwork_fills_blank_fields_only():
    outcome = merge_artwork(
        _snapshot(),
        _record(description="Painted in 2019", source_url="https://example.org/whale", tags={"material": "bronze"}),
        [1],
    )

    assert outcome.changes == {"description": "Painted in 2019", "source_url": "https://example.org/whale"}
    assert outcome.field_changes["description"] == {"old": None, "new": "Painted in 2019"}
    assert "title" not in outcome.field_changes
    assert "tags" not in outcome.field_changes
    assert outcome.tags_conflict_count == 1
    assert outcome.added_artist_ids == ()
    assert outcome.changed is True


def test_merge_artwork_adds_artists_and_tags():
    outcome = merge_artwork(_snapshot(description="Kept"), _record(tags={"type": "mural"}), [1, 4, 4])

    assert outcome.added_artist_ids == (4,)
    assert outcome.field_changes["artist_ids"] == {"old": [1], "new": [1, 4]}
    assert outcome.changes["tags"] == {"material": "paint", "type": "mural"}
    assert outcome.field_changes["tags"]["old"] == {"material": "paint"}


def test_merge_artwork_links_external_id_for_new_source():
    outcome = merge_artwork(_snapshot(external_ids={"osm": "n1"}), _record(external_id="VAN-7"), [])

    assert outcome.external_ref == ("vancouver", "VAN-7")
    assert outcome.field_changes["external_ids"]["new"] == {"osm": "n1", "vancouver": "VAN-7"}
    assert outcome.warnings == ()


def test_merge_artwork_conflicting_external_id_is_warned_not_linked():
    outcome = merge_artwork(_snapshot(external_ids={"vancouver": "VAN-1"}), _record(external_id="VAN-7"), [])

    assert outcome.external_ref is None
    assert [warning.code for warning in outcome.warnings] == [EXTERNAL_ID_CONFLICT]


def test_merge_artwork_no_change():
    outcome = merge_artwork(
        _snapshot(description="Kept", source_url="https://example.org"),
        _record(tags={"material": "paint"}),
        [1],
    )
    assert outcome.changed is False
    assert outcome.field_changes == {}


def test_summarize_decisions_groups_counts():
    outcome = merge_artwork(_snapshot(), _record(description="Filled"), [])
    summary = summarize_decisions(outcome.decisions)

    assert summary["descriptive"] == {"changed": 1, "total": 2, "incoming_wins": 1}
    assert summary["provenance"] == {"changed": 0, "total": 1, "incoming_wins": 0}


def test_load_profile_defaults_and_override(tmp_path):
    assert load_profile({}) is DEFAULT_PROFILE

    override = tmp_path / "profile.json"
    override.write_text(
        json.dumps(
            {
                "key": "incoming-first",
                "field_groups": [
                    {
                        "name": "descriptive",
                        "fields": [{"field_name": "title", "tier_order": ["incoming", "existing_core"]}],
                    }
                ],
            }
        )
    )
    profile = load_profile({"IMPORTER_SURVIVORSHIP_PROFILE_PATH": str(override)})

    assert profile.key == "incoming-first"
    assert profile.field_names == ("title",)
    outcome = merge_artwork(_snapshot(), _record(title="Renamed"), [], profile=profile)
    assert outcome.changes == {"title": "Renamed"}


def test_load_profile_yaml_override(tmp_path):
    override = tmp_path / "profile.yaml"
    override.write_text("key: yaml-profile\nfield_groups:\n  - name: provenance\n    fields:\n      - field_name: source_url\n")

    profile = load_profile({"IMPORTER_SURVIVORSHIP_PROFILE_PATH": str(override)})
    assert profile.key == "yaml-profile"
    assert profile.find_rule("source_url") is not None


def test_load_profile_rejects_unknown_tier(tmp_path):
    override = tmp_path / "profile.json"
    override.write_text(json.dumps({"default_tier_order": ["staging"]}))

    with pytest.raises(SurvivorshipConfigError):
        load_profile({"IMPORTER_SURVIVORSHIP_PROFILE_PATH": str(override)})
