"""Shared fixtures."""

from typing import Callable, Optional

import pytest

from boz_series.core.config import ContinuityConfig
from boz_series.models.disc import RippedTrack
from boz_series.models.media import MediaIdentity
from boz_series.models.series import DoubleEpisodeHandling
from boz_series.services.confirmation import ConfirmationResult, DiscProposal
from boz_series.services.continuity import ContinuityCoordinator
from boz_series.services.pattern_learning import PatternLearner
from boz_series.services.state_store import SeriesStateStore


class FakeConfirmer:
    """Scripted answers, recording every question asked."""

    def __init__(
        self,
        disc_results: Optional[list[ConfirmationResult]] = None,
        auto_increment: bool = False,
        double_answer: tuple[bool, Optional[DoubleEpisodeHandling]] = (True, None),
        choose_episode: Optional[Callable[[int, int], int]] = None,
        identity: Optional[MediaIdentity] = None,
    ):
        self.disc_results = list(disc_results or [])
        self.auto_increment = auto_increment
        self.double_answer = double_answer
        self.choose_episode = choose_episode
        self.identity = identity

        self.proposals: list[DiscProposal] = []
        self.auto_increment_calls: list[str] = []
        self.double_calls: list[int] = []
        self.selections: list[tuple[int, int, float]] = []
        self.identify_calls: list[str] = []

    async def confirm_disc(self, proposal):
        self.proposals.append(proposal)
        if self.disc_results:
            return self.disc_results.pop(0)
        return ConfirmationResult.accept()

    async def confirm_auto_increment(self, series_title, disc_name):
        self.auto_increment_calls.append(disc_name)
        return self.auto_increment

    async def confirm_double_episode(self, series_title, track, shortest_seconds):
        self.double_calls.append(track.index)
        return self.double_answer

    async def select_episode(self, series_title, season, track, position, suggested_episode, confidence):
        self.selections.append((position, suggested_episode, confidence))
        if self.choose_episode is not None:
            return self.choose_episode(position, suggested_episode)
        return suggested_episode

    async def identify_media(self, disc_name, search_title):
        self.identify_calls.append(disc_name)
        return self.identity


def make_tracks(count: int, duration: int = 1320) -> list[RippedTrack]:
    """Episode-length tracks with playlist names."""
    return [
        RippedTrack(
            index=i,
            name=f"Title {i}",
            duration_seconds=duration,
            size_bytes=1_000_000_000,
            source_file_name=f"{i:05d}.mpls",
        )
        for i in range(count)
    ]


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def store(state_dir):
    return SeriesStateStore(state_dir)


@pytest.fixture
def learner(store):
    return PatternLearner(store)


@pytest.fixture
def confirmer():
    return FakeConfirmer()


@pytest.fixture
def coordinator(store, learner, confirmer):
    return ContinuityCoordinator(store, learner, confirmer, settings=ContinuityConfig())
