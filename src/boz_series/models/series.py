"""Per-series continuity state."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .disc import DiscRecord, DiscShapePattern
from .patterns import EpisodeTrackPattern


class TrackSortingStrategy(str, Enum):
    """How the tracks of a disc are ordered into episodes."""

    BY_TRACK_ORDER = "by_track_order"  # MakeMKV title order
    BY_SOURCE_FILE = "by_source_file"  # Playlist file name (00042.mpls, ...)
    USER_CONFIRMED = "user_confirmed"  # Track order, each episode confirmed by the user


class DoubleEpisodeHandling(str, Enum):
    """What to do with a track much longer than its siblings."""

    ALWAYS_ASK = "always_ask"
    ALWAYS_SINGLE = "always_single"
    ALWAYS_DOUBLE = "always_double"


def normalize_title(title: str) -> str:
    """Key used to look up a series regardless of case and padding."""
    return " ".join(title.split()).casefold()


class SeriesState(BaseModel):
    """Continuity state for one series, keyed by normalized title."""

    series_title: str
    current_season: int = 1
    next_episode: int = Field(default=1, ge=1)
    next_disc_number: int = 1
    processed_discs: list[DiscRecord] = Field(default_factory=list)
    auto_increment: bool = False
    auto_increment_preference: Optional[bool] = None  # None = never asked
    season_episode_counts: dict[int, int] = Field(default_factory=dict)
    season_episode_totals: dict[int, int] = Field(default_factory=dict)
    known_disc_patterns: list[DiscShapePattern] = Field(default_factory=list)
    learned_patterns: list[EpisodeTrackPattern] = Field(default_factory=list)
    track_sorting_strategy: TrackSortingStrategy = TrackSortingStrategy.BY_TRACK_ORDER
    double_episode_handling: DoubleEpisodeHandling = DoubleEpisodeHandling.ALWAYS_ASK
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        return normalize_title(self.series_title)

    def discs_in_season(self, season: int) -> list[DiscRecord]:
        return [d for d in self.processed_discs if d.season == season]

    def find_disc(self, disc_name: str) -> Optional[DiscRecord]:
        """Most recent processed disc with this exact label."""
        for disc in reversed(self.processed_discs):
            if disc.disc_name.casefold() == disc_name.casefold():
                return disc
        return None

    def learned_pattern(self, season: int) -> Optional[EpisodeTrackPattern]:
        for pattern in self.learned_patterns:
            if pattern.season == season:
                return pattern
        return None
