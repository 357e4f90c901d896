"""Tests for the series state store."""

import json

import pytest

from boz_series.core.errors import StatePersistenceError
from boz_series.models.disc import ResolutionSource
from boz_series.models.media import MediaIdentity, MediaType
from boz_series.services.disc_parser import parse_disc_name
from boz_series.services.state_store import SeriesStateStore

from conftest import make_tracks


def process(store, state, disc_name, track_count, **kwargs):
    """Compute and apply a disc the way the coordinator does."""
    auto = kwargs.pop("use_auto_increment", False)
    record = store.compute_next_disc_info(
        state, disc_name, track_count, parsed=parse_disc_name(disc_name), use_auto_increment=auto
    )
    store.apply_update(state, record, record.episode_count, was_auto_increment=auto)
    return record


def test_get_or_create_persists_defaults(store, state_dir):
    state = store.get_or_create("Demo Show")

    assert state.current_season == 1
    assert state.next_episode == 1
    assert state.next_disc_number == 1
    assert store.state_path.exists()

    reloaded = SeriesStateStore(state_dir).get_existing("  DEMO   show ")
    assert reloaded is not None
    assert reloaded.series_title == "Demo Show"


def test_get_existing_does_not_create(store):
    assert store.get_existing("Nothing Here") is None
    assert not store.state_path.exists()


def test_demo_show_two_discs(store):
    state = store.get_or_create("Demo Show")

    record = store.compute_next_disc_info(state, "Demo_S1_D1", 4, parsed=parse_disc_name("Demo_S1_D1"))
    assert (record.season, record.starting_episode, record.episode_count) == (1, 1, 4)
    store.apply_update(state, record, 4)
    assert state.next_episode == 5

    record = store.compute_next_disc_info(state, "Demo_S1_D2", 4, parsed=parse_disc_name("Demo_S1_D2"))
    assert (record.season, record.starting_episode, record.episode_count) == (1, 5, 4)
    store.apply_update(state, record, 4)
    assert state.next_episode == 9
    assert state.next_disc_number == 3
    assert state.season_episode_counts == {1: 8}
    assert len(state.processed_discs) == 2


def test_double_tracks_widen_episode_count(store):
    state = store.get_or_create("Demo Show")
    tracks = make_tracks(4)
    tracks[1].is_double = True

    record = store.compute_next_disc_info(state, "Demo_S1_D1", 4, ripped_tracks=tracks)

    assert record.episode_count == 5
    assert record.track_to_episode_mapping == {0: [1], 1: [2, 3], 2: [4], 3: [5]}
    assert record.last_episode == 5


def test_identical_disc_reuses_recorded_run(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)
    process(store, state, "Demo_S1_D2", 4)

    first = store.compute_next_disc_info(state, "Demo_S1_D1", 4, parsed=parse_disc_name("Demo_S1_D1"))
    store.apply_update(state, first, first.episode_count)
    second = store.compute_next_disc_info(state, "demo_s1_d1", 4, parsed=parse_disc_name("demo_s1_d1"))

    assert first.source == ResolutionSource.SHAPE_PATTERN
    assert (first.season, first.starting_episode, first.episode_count) == (1, 1, 4)
    assert (second.season, second.starting_episode, second.episode_count) == (1, 1, 4)
    assert state.next_episode == 9
    assert len(state.processed_discs) == 2
    assert state.season_episode_counts[1] == 8


def test_different_track_count_is_a_different_shape(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)

    record = store.compute_next_disc_info(state, "Demo_S1_D1", 3, parsed=parse_disc_name("Demo_S1_D1"))

    assert record.source != ResolutionSource.SHAPE_PATTERN
    assert record.starting_episode == 5


def test_season_mismatch_is_flagged(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)

    record = store.compute_next_disc_info(state, "Demo_S2_D1", 4, parsed=parse_disc_name("Demo_S2_D1"))

    assert record.has_season_mismatch
    assert record.season == 2
    assert record.conflicting_season == 1
    assert record.starting_episode == 1
    assert record.source == ResolutionSource.PARSED_MARKERS


def test_mismatch_flagged_for_new_series(store):
    state = store.get_or_create("Demo Show")

    record = store.compute_next_disc_info(state, "Demo_S3_D1", 4, parsed=parse_disc_name("Demo_S3_D1"))

    assert record.has_season_mismatch
    assert record.conflicting_season == 1


def test_confirmed_season_change_moves_cursor(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)

    record = store.compute_next_disc_info(state, "Demo_S2_D1", 4, parsed=parse_disc_name("Demo_S2_D1"))
    record.season_confirmed = True
    store.apply_update(state, record, 4)

    assert state.current_season == 2
    assert state.next_episode == 5
    assert state.next_disc_number == 2
    assert state.season_episode_counts == {1: 4, 2: 4}


def test_unconfirmed_other_season_keeps_cursor(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)

    record = store.compute_next_disc_info(state, "Demo_S2_D1", 4, parsed=parse_disc_name("Demo_S2_D1"))
    store.apply_update(state, record, 4)

    assert state.current_season == 1
    assert state.next_episode == 5
    assert state.processed_discs[-1].season == 2


def test_next_episode_never_decreases(store):
    state = store.get_or_create("Demo Show")
    cursors = [state.next_episode]

    process(store, state, "Demo_S1_D1", 4)
    cursors.append(state.next_episode)
    process(store, state, "Demo_S1_D2", 4)
    cursors.append(state.next_episode)

    # A disc the user renumbered to an earlier run
    record = store.compute_next_disc_info(state, "Demo_S1_D9", 2)
    record.starting_episode = 1
    store.apply_update(state, record, 2)
    cursors.append(state.next_episode)

    process(store, state, "Demo_S1_D1", 4)
    cursors.append(state.next_episode)

    assert cursors == sorted(cursors)
    assert cursors[-1] == 9


def test_auto_increment_uses_disc_number_delta(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)

    record = store.compute_next_disc_info(
        state, "Demo_S1_D3", 4, parsed=parse_disc_name("Demo_S1_D3"), use_auto_increment=True
    )

    assert record.source == ResolutionSource.AUTO_INCREMENT
    assert record.disc_number == 3
    assert record.starting_episode == 9


def test_repeated_generic_label_under_auto_increment_continues(store):
    state = store.get_or_create("Demo Show")
    first = process(store, state, "DVD_VIDEO", 4, use_auto_increment=True)

    record = store.compute_next_disc_info(
        state, "DVD_VIDEO", 4, parsed=parse_disc_name("DVD_VIDEO"), use_auto_increment=True
    )

    assert first.starting_episode == 1
    assert record.source == ResolutionSource.AUTO_INCREMENT
    assert record.sequence_number == 2
    assert record.starting_episode == 5

    store.apply_update(state, record, 4, was_auto_increment=True)
    assert len(state.known_disc_patterns) == 2
    assert state.next_episode == 9


def test_auto_increment_rolls_over_finished_season(store):
    state = store.get_or_create("Demo Show")
    state.season_episode_totals[1] = 8

    process(store, state, "Demo_S1_D1", 4, use_auto_increment=True)
    assert state.current_season == 1

    process(store, state, "Demo_S1_D2", 4, use_auto_increment=True)
    assert state.current_season == 2
    assert state.next_episode == 1
    assert state.next_disc_number == 1


def test_failed_write_leaves_state_untouched(store, state_dir, monkeypatch):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)
    updated_at = state.updated_at

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("boz_series.services.state_store.os.replace", fail_replace)

    record = store.compute_next_disc_info(state, "Demo_S1_D2", 4, parsed=parse_disc_name("Demo_S1_D2"))
    with pytest.raises(StatePersistenceError):
        store.apply_update(state, record, 4)

    assert state.next_episode == 5
    assert len(state.processed_discs) == 1
    assert state.updated_at == updated_at
    assert store.get_existing("Demo Show").next_episode == 5

    monkeypatch.undo()
    on_disk = SeriesStateStore(state_dir).get_existing("Demo Show")
    assert on_disk.next_episode == 5
    assert not list(state_dir.glob("*.tmp"))


def test_transient_fields_are_not_persisted(store):
    state = store.get_or_create("Demo Show")
    process(store, state, "Demo_S1_D1", 4)

    data = json.loads(store.state_path.read_text())
    disc = data["series_states"][0]["processed_discs"][0]

    assert "source" not in disc
    assert "conflicting_season" not in disc
    assert "season_confirmed" not in disc


def test_legacy_list_file_is_upgraded(state_dir):
    state_dir.mkdir(parents=True)
    (state_dir / "media_state.json").write_text(
        json.dumps([{"series_title": "Old Show", "next_episode": 7, "unknown_field": True}])
    )

    state = SeriesStateStore(state_dir).get_existing("old show")

    assert state is not None
    assert state.next_episode == 7
    assert state.known_disc_patterns == []
    assert state.auto_increment_preference is None


def test_corrupt_file_is_moved_aside(state_dir):
    state_dir.mkdir(parents=True)
    (state_dir / "media_state.json").write_text("{not json")

    store = SeriesStateStore(state_dir)

    assert store.get_existing("Demo Show") is None
    assert len(list(state_dir.glob("media_state.json.corrupt-*"))) == 1
    store.get_or_create("Demo Show")
    assert json.loads(store.state_path.read_text())["series_states"][0]["series_title"] == "Demo Show"


def test_delete_forgets_series(store, state_dir):
    store.get_or_create("Demo Show")
    store.get_or_create("Other Show")

    assert store.delete("demo show")
    assert not store.delete("demo show")
    assert [s.series_title for s in SeriesStateStore(state_dir).all_states()] == ["Other Show"]


def test_manual_identification_shared_across_discs_of_a_set(store, state_dir):
    identity = MediaIdentity(title="Frasier", year=1993, external_id="tt0106004", media_type=MediaType.SERIES)
    store.save_manual_identification("Frasier_S8_D1_BD", identity)

    cached = SeriesStateStore(state_dir).get_manual_identification("FRASIER_S8_D2_BD")

    assert cached is not None
    assert cached.disc_name_pattern == "Frasier"
    assert cached.to_identity().external_id == "tt0106004"


def test_manual_movie_identification_needs_exact_pattern(store):
    identity = MediaIdentity(title="Some Movie", year=2010, media_type=MediaType.MOVIE)
    store.save_manual_identification("GENERIC_MOVIE", identity)

    assert store.get_manual_identification("GENERIC_MOVIE").media_title == "Some Movie"
    assert store.get_manual_identification("GENERIC_MOVIE_2") is None


def test_manual_identification_replaces_same_pattern(store):
    store.save_manual_identification("Demo_S1_D1", MediaIdentity(title="Wrong", media_type=MediaType.SERIES))
    store.save_manual_identification("Demo_S2_D1", MediaIdentity(title="Demo Show", media_type=MediaType.SERIES))

    assert store.get_manual_identification("Demo_S1_D3").media_title == "Demo Show"
