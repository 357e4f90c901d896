"""Tests for library naming and file moves."""

import asyncio

import pytest

from boz_series.core.config import LibraryConfig
from boz_series.services.media_namer import MediaNamer


@pytest.fixture
def namer(tmp_path):
    return MediaNamer(LibraryConfig(output_dir=str(tmp_path / "library")))


def test_sanitize_filename():
    assert MediaNamer.sanitize_filename('What: "Now"?') == "What Now"
    assert MediaNamer.sanitize_filename("Trailing dots...") == "Trailing dots"
    assert MediaNamer.sanitize_filename("  Too   many  spaces ") == "Too many spaces"


def test_episode_tag():
    assert MediaNamer.episode_tag(1, [3]) == "S01E03"
    assert MediaNamer.episode_tag(8, [12, 11]) == "S08E11-E12"


def test_tv_path(namer, tmp_path):
    path = namer.generate_tv_path("Frasier", 8, [1], "Frasier's Curse")

    assert path == tmp_path / "library" / "TV Shows" / "Frasier" / "Season 08" / "Frasier - S08E01 - Frasier's Curse.mkv"


def test_tv_filename_without_title(namer):
    assert namer.generate_tv_filename("Demo Show", 1, [2, 3]) == "Demo Show - S01E02-E03.mkv"
    assert namer.generate_tv_filename("Demo Show", 1, [2], "???") == "Demo Show - S01E02.mkv"


def test_movie_path(namer, tmp_path):
    assert namer.generate_movie_path("Alien", 1979) == tmp_path / "library" / "Movies" / "Alien (1979)" / "Alien (1979).mkv"
    assert namer.generate_movie_filename("Alien") == "Alien.mkv"


def test_move_file_never_overwrites(namer, tmp_path):
    destination = namer.generate_tv_path("Demo Show", 1, [1])
    destination.parent.mkdir(parents=True)
    destination.write_text("existing")

    source = tmp_path / "title_t00.mkv"
    source.write_text("new")

    final = asyncio.run(namer.move_file(source, destination))

    assert final.name == "Demo Show - S01E01 (2).mkv"
    assert final.read_text() == "new"
    assert destination.read_text() == "existing"
    assert not source.exists()


def test_move_file_gives_up_after_retries(namer, tmp_path):
    with pytest.raises(OSError):
        asyncio.run(namer.move_file(tmp_path / "missing.mkv", tmp_path / "out" / "x.mkv", retries=2, retry_delay=0))
