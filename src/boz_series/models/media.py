"""Media identity models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class MediaType(str, Enum):
    """Type of media content."""

    MOVIE = "movie"
    SERIES = "series"
    UNKNOWN = "unknown"


class MediaIdentity(BaseModel):
    """What a disc was identified as."""

    title: str
    year: Optional[int] = None
    external_id: Optional[str] = None  # IMDb ID
    media_type: MediaType = MediaType.UNKNOWN
    confidence: float = 1.0  # Search confidence (1.0 = exact match)


class ManualIdentification(BaseModel):
    """Cached identity for a disc name pattern, reused for recurring labels."""

    disc_name_pattern: str
    media_title: str
    external_id: Optional[str] = None
    media_type: MediaType = MediaType.UNKNOWN
    year: Optional[int] = None
    identified_date: datetime = Field(default_factory=datetime.now)
    cached_identity: Optional[MediaIdentity] = None

    def to_identity(self) -> MediaIdentity:
        if self.cached_identity is not None:
            return self.cached_identity
        return MediaIdentity(
            title=self.media_title,
            year=self.year,
            external_id=self.external_id,
            media_type=self.media_type,
        )


class TVEpisode(BaseModel):
    """An episode from the metadata service."""

    episode_number: int
    episode_name: str
    season_number: int
    external_id: Optional[str] = None
    runtime: Optional[int] = None  # Duration in minutes
    overview: Optional[str] = None


class TVSeason(BaseModel):
    """A season's episode list as fetched from the metadata service."""

    series_title: str
    season_number: int
    external_id: Optional[str] = None
    episodes: list[TVEpisode] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=datetime.now)

    def get_episode(self, episode_number: int) -> Optional[TVEpisode]:
        for episode in self.episodes:
            if episode.episode_number == episode_number:
                return episode
        return None
