"""Tests for disc label parsing."""

import pytest

from boz_series.services.disc_parser import DiscNameParser, disc_name_pattern, parse_disc_name


@pytest.mark.parametrize(
    "label,series,season,disc",
    [
        ("Demo_S1_D1", "Demo", 1, 1),
        ("Frasier_S8_D1_BD", "Frasier", 8, 1),
        ("THE_OFFICE_SEASON_3_DISC_1", "THE OFFICE", 3, 1),
        ("Name_Season_2_Disc_4", "Name", 2, 4),
        ("Breaking.Bad.S02D03", "Breaking Bad", 2, 3),
        ("frasier_s8_d2", "frasier", 8, 2),
    ],
)
def test_season_and_disc_markers(label, series, season, disc):
    info = parse_disc_name(label)

    assert info.series_name == series
    assert info.season == season
    assert info.disc_number == disc
    assert info.season_explicit
    assert info.disc_explicit


@pytest.mark.parametrize("label", ["Show Season 2", "Show_S02"])
def test_season_only(label):
    info = parse_disc_name(label)

    assert info.series_name == "Show"
    assert info.season == 2
    assert info.season_explicit
    assert not info.disc_explicit
    assert info.disc_number == 1


def test_disc_only():
    info = parse_disc_name("Show_D2")

    assert info.series_name == "Show"
    assert info.disc_number == 2
    assert info.disc_explicit
    assert not info.season_explicit
    assert info.season == 1


def test_label_without_markers():
    info = parse_disc_name("Demo Show")

    assert info.series_name == "Demo Show"
    assert info.season == 1
    assert info.disc_number == 1
    assert not info.has_explicit_markers


def test_empty_label_never_fails():
    info = DiscNameParser.parse("")

    assert info.series_name == ""
    assert not info.has_explicit_markers


def test_clean_name():
    assert DiscNameParser.clean_name("The_Office__-") == "The Office"
    assert DiscNameParser.clean_name("Breaking.Bad") == "Breaking Bad"


def test_name_pattern_is_shared_by_a_disc_set():
    assert disc_name_pattern("Frasier_S8_D1_BD") == "Frasier"
    assert disc_name_pattern("Frasier_S8_D2_BD") == "Frasier"
    assert disc_name_pattern("Show Season 2") == "Show"
    assert disc_name_pattern("Show_D3") == "Show"


def test_name_pattern_without_markers_is_the_cleaned_label():
    assert disc_name_pattern("GENERIC_MOVIE") == "GENERIC MOVIE"
    assert disc_name_pattern("DVD_VIDEO") == "DVD VIDEO"
