"""Tests for disc identification."""

import asyncio

from boz_series.models.media import MediaIdentity, MediaType
from boz_series.services.identification import MediaIdentifier

from conftest import FakeConfirmer


class FakeClient:
    def __init__(self, series=None, movie=None, dated_movie=None, enabled=True):
        self.series = series
        self.movie = movie
        self.dated_movie = dated_movie
        self.enabled = enabled
        self.searches = []

    async def search_series(self, title):
        self.searches.append(("series", title, None))
        return self.series

    async def search_movie(self, title, year=None):
        self.searches.append(("movie", title, year))
        return self.dated_movie if year else self.movie


def series(title="Frasier", confidence=1.0):
    return MediaIdentity(title=title, media_type=MediaType.SERIES, confidence=confidence, external_id="tt0106004")


def movie(title="Alien", year=1979, confidence=1.0):
    return MediaIdentity(title=title, year=year, media_type=MediaType.MOVIE, confidence=confidence)


def test_series_with_markers_is_trusted(store):
    client = FakeClient(series=series(confidence=0.55))
    identifier = MediaIdentifier(store, client, FakeConfirmer())

    identity = asyncio.run(identifier.identify("Frasier_S8_D1_BD"))

    assert identity.title == "Frasier"
    assert client.searches == [("series", "Frasier", None)]


def test_best_match_wins_for_unmarked_labels(store):
    client = FakeClient(series=series(title="Alien Nation", confidence=0.4), movie=movie(confidence=0.9))
    identifier = MediaIdentifier(store, client, FakeConfirmer())

    identity = asyncio.run(identifier.identify("ALIEN"))

    assert identity.media_type == MediaType.MOVIE
    assert identity.title == "Alien"


def test_year_in_label_narrows_movie_search(store):
    client = FakeClient(movie=movie(title="Heat", year=1986, confidence=0.5),
                        dated_movie=movie(title="Heat", year=1995, confidence=1.0))
    identifier = MediaIdentifier(store, client, FakeConfirmer())

    identity = asyncio.run(identifier.identify("HEAT_1995"))

    assert identity.year == 1995
    assert ("movie", "HEAT", 1995) in client.searches


def test_unsure_search_asks_and_caches_answer(store):
    answer = series(title="Demo Show")
    confirmer = FakeConfirmer(identity=answer)
    client = FakeClient(series=series(title="Something Else", confidence=0.3))
    identifier = MediaIdentifier(store, client, confirmer)

    first = asyncio.run(identifier.identify("DEMO_SHOW"))
    second = asyncio.run(identifier.identify("DEMO_SHOW"))

    assert first.title == "Demo Show"
    assert second.title == "Demo Show"
    assert confirmer.identify_calls == ["DEMO_SHOW"]
    assert store.get_manual_identification("DEMO_SHOW").media_type == MediaType.SERIES


def test_without_client_the_user_is_asked(store):
    confirmer = FakeConfirmer(identity=None)
    identifier = MediaIdentifier(store, FakeClient(enabled=False), confirmer)

    assert asyncio.run(identifier.identify("MYSTERY_DISC")) is None
    assert confirmer.identify_calls == ["MYSTERY_DISC"]
    assert store.get_manual_identification("MYSTERY_DISC") is None


def test_extract_year():
    assert MediaIdentifier.extract_year("HEAT_1995") == 1995
    assert MediaIdentifier.extract_year("Blade Runner (1982)") == 1982
    assert MediaIdentifier.extract_year("THX1138") is None
    assert MediaIdentifier.extract_year("Demo_S1_D1") is None


def test_describe():
    assert MediaIdentifier.describe(series()) == "series 'Frasier'"
    assert MediaIdentifier.describe(movie()) == "movie 'Alien' (1979)"
