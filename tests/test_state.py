import json
from datetime import timedelta

import pytest

from feedseq_core.config import TimeConstants, TrackingConfig
from feedseq_core.errors import ViewerStateError
from feedseq_core.parsing import to_epoch_ms
from feedseq_user.signals import (
    expire_tag_preferences,
    record_character_view,
    record_served,
    record_tag_interaction,
    record_view,
    top_tags,
)
from feedseq_user.state import (
    ViewerState,
    dump_viewer_state,
    merge_served,
    parse_viewer_state,
)

from conftest import NOW


def test_record_view_sets_timestamp_and_images():
    state = record_view(ViewerState(), "c1", ["i1", "i2"], now=NOW)
    assert state.seen_characters == {"c1": NOW}
    assert state.seen_images == {"c1": ["i1", "i2"]}


def test_record_view_returns_new_state():
    original = ViewerState()
    updated = record_view(original, "c1", ["i1"], now=NOW)
    assert original.seen_characters == {}
    assert original.seen_images == {}
    assert updated is not original


def test_record_view_twice_overwrites_timestamp():
    later = NOW + timedelta(seconds=5)
    state = record_view(ViewerState(), "c1", ["i1"], now=NOW)
    state = record_view(state, "c1", ["i1"], now=later)
    assert state.seen_characters == {"c1": later}
    assert state.seen_images["c1"] == ["i1"]


def test_seen_images_capped_to_most_recent():
    state = ViewerState()
    ids = [f"img{i}" for i in range(60)]
    for chunk in range(0, 60, 7):
        state = record_view(state, "c1", ids[chunk : chunk + 7], now=NOW)
    assert len(state.seen_images["c1"]) == 50
    assert state.seen_images["c1"] == ids[10:]


def test_record_view_without_images_keeps_image_history():
    state = record_view(ViewerState(), "c1", ["i1"], now=NOW)
    state = record_view(state, "c1", now=NOW)
    assert state.seen_images["c1"] == ["i1"]


def test_stale_entries_are_purged_together():
    old = NOW - timedelta(days=31)
    state = ViewerState(
        seen_characters={"old": old, "fresh": NOW - timedelta(days=2)},
        seen_images={"old": ["x"], "fresh": ["y"], "orphan": ["z"]},
        served_characters={"gone": old},
    )
    state = record_view(state, "new", now=NOW)
    assert set(state.seen_characters) == {"fresh", "new"}
    assert set(state.seen_images) == {"fresh"}
    assert state.served_characters == {}


def test_purge_honours_anonymous_window():
    state = ViewerState(seen_characters={"a": NOW - timedelta(days=8)})
    state = record_view(state, "b", now=NOW, constants=TimeConstants.anonymous())
    assert set(state.seen_characters) == {"b"}


def test_tag_interaction_credits_before_single_decay():
    state = record_tag_interaction(ViewerState(), ["Anime", "anime"], 1.0)
    assert state.tag_preferences["anime"] == pytest.approx(2.0 * 0.95)
    assert state.preferred_tags == ["anime"]


def test_tag_interaction_decays_existing_and_drops_small():
    state = ViewerState(tag_preferences={"old": 0.1, "kept": 1.0})
    state = record_tag_interaction(state, ["new"], 0.5)
    assert "old" not in state.tag_preferences
    assert state.tag_preferences["kept"] == pytest.approx(0.95)
    assert state.tag_preferences["new"] == pytest.approx(0.475)
    # preferred list is computed before the decay pass
    assert state.preferred_tags == ["kept", "new", "old"]


def test_preferred_tags_limited_to_top_ten():
    weights = {f"t{i}": float(i) for i in range(15)}
    state = record_tag_interaction(ViewerState(tag_preferences=weights), [], 1.0)
    assert state.preferred_tags == [f"t{i}" for i in range(14, 4, -1)]


def test_top_tags_ties_keep_insertion_order():
    assert top_tags({"b": 1.0, "a": 1.0, "c": 2.0}, 2) == ["c", "b"]


def test_character_view_adds_weak_tag_signal():
    state = record_character_view(ViewerState(), "c1", ["i1"], ["Elf"], now=NOW)
    assert state.seen_characters == {"c1": NOW}
    assert state.tag_preferences["elf"] == pytest.approx(0.5 * 0.95)


def test_character_view_without_tags_skips_decay():
    state = ViewerState(tag_preferences={"elf": 1.0})
    state = record_character_view(state, "c1", now=NOW)
    assert state.tag_preferences == {"elf": 1.0}


def test_dump_and_parse_keep_client_format():
    state = record_tag_interaction(
        record_view(ViewerState(), "c1", ["i1"], now=NOW), ["Elf"], now=NOW
    )
    blob = dump_viewer_state(state)
    raw = json.loads(blob)
    assert raw["seenCharacters"] == {"c1": to_epoch_ms(NOW)}
    assert raw["seenImages"] == {"c1": ["i1"]}
    assert parse_viewer_state(blob) == state


def test_parse_accepts_client_blob():
    blob = json.dumps(
        {
            "version": 1,
            "seenCharacters": {"c1": to_epoch_ms(NOW), "bad": "nope"},
            "seenImages": {"c1": ["i1", "i1", "i2"]},
            "tagPreferences": {"Elf": "2.5"},
            "preferredTags": ["Elf"],
            "servedCharacters": {},
            "lastUpdated": 0,
        }
    )
    state = parse_viewer_state(blob)
    assert state.seen_characters == {"c1": NOW}
    assert state.seen_images == {"c1": ["i1", "i2"]}
    assert state.tag_preferences == {"elf": 2.5}
    assert state.preferred_tags == ["elf"]


@pytest.mark.parametrize(
    "blob",
    [None, "", "{not json", "[1, 2]", b"\xff\xfe", json.dumps({"version": 99})],
)
def test_parse_degrades_to_empty_state(blob):
    state = parse_viewer_state(blob)
    assert state == ViewerState()


def test_parse_rejects_oversized_blob():
    blob = json.dumps({"seenImages": {"c": ["x" * 200]}})
    state = parse_viewer_state(blob, tracking=TrackingConfig(max_state_bytes=64))
    assert state == ViewerState()


def test_parse_strict_raises():
    with pytest.raises(ViewerStateError):
        parse_viewer_state("{not json", strict=True)


def test_merge_served_keeps_newer_timestamp():
    state = ViewerState(
        seen_characters={"a": NOW - timedelta(days=3), "b": NOW},
        served_characters={"a": NOW - timedelta(hours=1), "b": NOW - timedelta(days=1), "c": NOW},
    )
    merged = merge_served(state)
    assert merged.seen_characters == {
        "a": NOW - timedelta(hours=1),
        "b": NOW,
        "c": NOW,
    }
    assert state.seen_characters["a"] == NOW - timedelta(days=3)


def test_tag_interaction_accepts_a_single_tag_string():
    state = record_tag_interaction(ViewerState(), "Anime", now=NOW)
    assert state.tag_preferences == {"anime": pytest.approx(0.95)}
    assert state.preferred_tags == ["anime"]


def test_record_served_stamps_ids_without_tag_signal():
    state = ViewerState(
        tag_preferences={"elf": 1.0},
        served_characters={"stale": NOW - timedelta(days=31)},
        last_updated=NOW - timedelta(days=1),
    )
    state = record_served(state, ["a", "b"], now=NOW)
    assert state.served_characters == {"a": NOW, "b": NOW}
    assert state.seen_characters == {}
    assert state.tag_preferences == {"elf": 1.0}
    assert state.last_updated == NOW


def test_record_served_honours_anonymous_window():
    state = ViewerState(
        seen_characters={"old": NOW - timedelta(days=8)},
        served_characters={"old": NOW - timedelta(days=8)},
    )
    state = record_served(state, "new", now=NOW, constants=TimeConstants.anonymous())
    assert state.served_characters == {"new": NOW}
    assert state.seen_characters == {}


def test_merge_served_folds_client_blob_into_stored_state():
    stored = ViewerState(seen_characters={"a": NOW - timedelta(days=3), "b": NOW})
    blob = json.dumps(
        {
            "servedCharacters": {
                "a": to_epoch_ms(NOW - timedelta(hours=1)),
                "b": to_epoch_ms(NOW - timedelta(days=1)),
                "c": to_epoch_ms(NOW),
            }
        }
    )
    merged = merge_served(stored, blob)
    assert merged.seen_characters == {
        "a": NOW - timedelta(hours=1),
        "b": NOW,
        "c": NOW,
    }


def test_merge_served_ignores_unusable_client_blob():
    stored = ViewerState(seen_characters={"a": NOW})
    assert merge_served(stored, "{not json") == stored


def test_stale_tag_preferences_reset_on_next_update():
    state = ViewerState(
        tag_preferences={"old": 3.0},
        preferred_tags=["old"],
        last_updated=NOW - timedelta(days=31),
    )
    state = record_tag_interaction(state, ["new"], now=NOW)
    assert state.tag_preferences == {"new": pytest.approx(0.95)}
    assert state.preferred_tags == ["new"]


def test_recent_tag_preferences_survive_expiry_check():
    state = ViewerState(tag_preferences={"elf": 1.0}, last_updated=NOW - timedelta(days=29))
    assert expire_tag_preferences(state, now=NOW) is state


def test_last_updated_uses_client_format():
    raw = json.loads(dump_viewer_state(record_view(ViewerState(), "c1", now=NOW)))
    assert raw["lastUpdated"] == to_epoch_ms(NOW)
