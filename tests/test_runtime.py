"""Tests for the polling loop and the per-disc pipeline."""

import asyncio

import pytest
from structlog.testing import capture_logs

from boz_series.core.config import Settings
from boz_series.core.errors import StatePersistenceError
from boz_series.models.media import MediaIdentity, MediaType
from boz_series.services.continuity import ContinuityCoordinator
from boz_series.services.identification import MediaIdentifier
from boz_series.services.makemkv import DiscAnalysis, DriveInfo
from boz_series.services.media_namer import MediaNamer
from boz_series.services.pattern_learning import PatternLearner
from boz_series.services.runtime import PERSISTENCE_ESCALATION_THRESHOLD, DiscProcessor, Ripper

from conftest import FakeConfirmer, make_tracks


def drive(disc_name="Demo_S1_D1", index=0, device="/dev/sr0"):
    return DriveInfo(index=index, drive_name="BD-RE", disc_name=disc_name, device_path=device,
                     has_disc=bool(disc_name))


class FakeMakeMKV:
    def __init__(self, drives=None, analysis=None, fail_rip=False, fail_analysis=False):
        self.drives = drives or []
        self.analysis = analysis
        self.fail_rip = fail_rip
        self.fail_analysis = fail_analysis
        self.ripped = []

    async def list_drives(self):
        return list(self.drives)

    async def analyze_disc(self, disc_index):
        if self.fail_analysis:
            raise RuntimeError("analysis failed")
        return self.analysis

    async def rip_title(self, disc_index, track, output_dir=None, progress_callback=None):
        if self.fail_rip:
            raise RuntimeError("MakeMKV rip failed with code 1")
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"title_t{track.index:02d}.mkv"
        path.write_text(track.name)
        track.output_path = str(path)
        self.ripped.append(track.index)
        return path


class FakeProcessor:
    def __init__(self, results=None, on_process=None):
        self.results = list(results or [])
        self.on_process = on_process
        self.calls = []

    async def process(self, drive):
        self.calls.append(drive.disc_name)
        if self.on_process is not None:
            self.on_process()
        result = self.results.pop(0) if self.results else True
        if isinstance(result, Exception):
            raise result
        return result


class FakeMetadata:
    async def get_episode_title(self, series_title, season_number, episode_number):
        return f"Episode {episode_number}"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        makemkv={"temp_dir": str(tmp_path / "temp")},
        library={"output_dir": str(tmp_path / "library")},
        state={"state_dir": str(tmp_path / "state")},
        disc_detection={"poll_interval": 1},
    )


def make_processor(settings, store, makemkv, identity):
    confirmer = FakeConfirmer(identity=identity)
    coordinator = ContinuityCoordinator(store, PatternLearner(store), confirmer, settings=settings.continuity)
    return DiscProcessor(
        settings,
        makemkv,
        MediaIdentifier(store, None, confirmer),
        coordinator,
        MediaNamer(settings.library),
        metadata=FakeMetadata(),
    )


def test_series_disc_is_ripped_into_library(settings, store, tmp_path):
    makemkv = FakeMakeMKV(analysis=DiscAnalysis("Demo_S1_D1", "DVD", 0, tracks=make_tracks(3)))
    identity = MediaIdentity(title="Demo Show", media_type=MediaType.SERIES)
    processor = make_processor(settings, store, makemkv, identity)

    assert asyncio.run(processor.process(drive()))

    season_dir = tmp_path / "library" / "TV Shows" / "Demo Show" / "Season 01"
    assert sorted(p.name for p in season_dir.iterdir()) == [
        "Demo Show - S01E01 - Episode 1.mkv",
        "Demo Show - S01E02 - Episode 2.mkv",
        "Demo Show - S01E03 - Episode 3.mkv",
    ]
    state = store.get_existing("Demo Show")
    assert state.next_episode == 4
    assert state.processed_discs[0].track_to_episode_mapping == {0: [1], 1: [2], 2: [3]}


def test_second_disc_continues_numbering(settings, store, tmp_path):
    identity = MediaIdentity(title="Demo Show", media_type=MediaType.SERIES)
    makemkv = FakeMakeMKV(analysis=DiscAnalysis("Demo_S1_D1", "DVD", 0, tracks=make_tracks(2)))
    asyncio.run(make_processor(settings, store, makemkv, identity).process(drive()))

    makemkv = FakeMakeMKV(analysis=DiscAnalysis("Demo_S1_D2", "DVD", 0, tracks=make_tracks(2)))
    asyncio.run(make_processor(settings, store, makemkv, identity).process(drive("Demo_S1_D2")))

    season_dir = tmp_path / "library" / "TV Shows" / "Demo Show" / "Season 01"
    assert (season_dir / "Demo Show - S01E04 - Episode 4.mkv").exists()


def test_movie_disc_rips_main_feature(settings, store, tmp_path):
    tracks = make_tracks(2)
    tracks[1].duration_seconds = 7000
    makemkv = FakeMakeMKV(analysis=DiscAnalysis("ALIEN", "Blu-ray disc", 0, tracks=tracks))
    identity = MediaIdentity(title="Alien", year=1979, media_type=MediaType.MOVIE)

    assert asyncio.run(make_processor(settings, store, makemkv, identity).process(drive("ALIEN")))

    assert makemkv.ripped == [1]
    assert (tmp_path / "library" / "Movies" / "Alien (1979)" / "Alien (1979).mkv").exists()
    assert store.get_existing("Alien") is None


def test_failed_rip_is_retried_and_state_untouched(settings, store):
    makemkv = FakeMakeMKV(analysis=DiscAnalysis("Demo_S1_D1", "DVD", 0, tracks=make_tracks(2)), fail_rip=True)
    identity = MediaIdentity(title="Demo Show", media_type=MediaType.SERIES)

    assert not asyncio.run(make_processor(settings, store, makemkv, identity).process(drive()))
    assert store.get_existing("Demo Show") is None


def test_failed_analysis_is_retried(settings, store):
    makemkv = FakeMakeMKV(fail_analysis=True)

    assert not asyncio.run(make_processor(settings, store, makemkv, None).process(drive()))


def test_unidentified_disc_is_skipped(settings, store):
    makemkv = FakeMakeMKV(analysis=DiscAnalysis("MYSTERY", "DVD", 0, tracks=make_tracks(1)))

    assert asyncio.run(make_processor(settings, store, makemkv, None).process(drive("MYSTERY")))
    assert makemkv.ripped == []


def test_handled_disc_is_not_processed_again(settings):
    processor = FakeProcessor()
    ripper = Ripper(settings, FakeMakeMKV(drives=[drive()]), processor)

    asyncio.run(ripper.poll_once())
    asyncio.run(ripper.poll_once())

    assert processor.calls == ["Demo_S1_D1"]


def test_reinserted_disc_is_processed_again(settings):
    makemkv = FakeMakeMKV(drives=[drive()])
    processor = FakeProcessor()
    ripper = Ripper(settings, makemkv, processor)

    asyncio.run(ripper.poll_once())
    makemkv.drives = [drive(disc_name="")]
    asyncio.run(ripper.poll_once())
    makemkv.drives = [drive()]
    asyncio.run(ripper.poll_once())

    assert processor.calls == ["Demo_S1_D1", "Demo_S1_D1"]


def test_unfinished_disc_is_retried(settings):
    processor = FakeProcessor(results=[False, True])
    ripper = Ripper(settings, FakeMakeMKV(drives=[drive()]), processor)

    for _ in range(3):
        asyncio.run(ripper.poll_once())

    assert processor.calls == ["Demo_S1_D1", "Demo_S1_D1"]


def test_ignored_drives_are_skipped(settings):
    settings.disc_detection.ignore_drives = ["/dev/sr1"]
    processor = FakeProcessor()
    makemkv = FakeMakeMKV(drives=[drive(index=0, device="/dev/sr0"), drive("OTHER_S1_D1", index=1, device="/dev/sr1")])

    asyncio.run(Ripper(settings, makemkv, processor).poll_once())

    assert processor.calls == ["Demo_S1_D1"]


def test_persistence_failures_escalate_and_disc_is_retried(settings):
    failure = StatePersistenceError("state/media_state.json", "read-only file system")
    processor = FakeProcessor(results=[failure] * PERSISTENCE_ESCALATION_THRESHOLD + [True])
    ripper = Ripper(settings, FakeMakeMKV(drives=[drive()]), processor)

    with capture_logs() as logs:
        for _ in range(PERSISTENCE_ESCALATION_THRESHOLD + 2):
            asyncio.run(ripper.poll_once())

    events = [entry["event"] for entry in logs]
    assert events.count("state_persistence_failed") == PERSISTENCE_ESCALATION_THRESHOLD
    assert events.count("state_storage_unavailable") == 1
    assert len(processor.calls) == PERSISTENCE_ESCALATION_THRESHOLD + 1
    assert ripper._persistence_failures == 0


def test_processing_error_moves_on_to_other_drives(settings):
    processor = FakeProcessor(results=[ValueError("Unknown media type: game"), True, True])
    makemkv = FakeMakeMKV(drives=[drive(), drive("OTHER_S1_D1", index=1, device="/dev/sr1")])
    ripper = Ripper(settings, makemkv, processor)

    with capture_logs() as logs:
        asyncio.run(ripper.poll_once())
    asyncio.run(ripper.poll_once())

    assert "disc_processing_failed" in [entry["event"] for entry in logs]
    assert processor.calls == ["Demo_S1_D1", "OTHER_S1_D1", "Demo_S1_D1"]
    assert ripper._handled == {0: "Demo_S1_D1", 1: "OTHER_S1_D1"}


def test_stop_ends_run_after_current_disc(settings):
    processor = FakeProcessor()
    ripper = Ripper(settings, FakeMakeMKV(drives=[drive(), drive("OTHER_S1_D1", index=1)]), None)
    processor.on_process = ripper.stop
    ripper.processor = processor

    asyncio.run(ripper.run())

    assert processor.calls == ["Demo_S1_D1"]
    assert not ripper.running
