"""Disc, track and per-disc history models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .patterns import TrackSelectionPattern


class ResolutionSource(str, Enum):
    """Which signal decided a disc's season/episode run."""

    SHAPE_PATTERN = "shape_pattern"  # Identical disc seen before
    PARSED_MARKERS = "parsed_markers"  # Explicit season marker in the label
    AUTO_INCREMENT = "auto_increment"  # Disc-number arithmetic
    SEQUENTIAL = "sequential"  # Continue from the series cursor
    USER_OVERRIDE = "user_override"  # Triple supplied by the user


class RippedTrack(BaseModel):
    """A title on a disc as reported by MakeMKV."""

    index: int
    name: str
    duration_seconds: int
    size_bytes: int = 0
    chapters: int = 0
    source_file_name: Optional[str] = None  # e.g. "00042.mpls"
    output_file_name: Optional[str] = None  # File MakeMKV writes for this title
    output_path: Optional[str] = None  # Set once ripped
    is_double: bool = False  # One track holding two episodes

    @property
    def duration_formatted(self) -> str:
        """Return duration as HH:MM:SS."""
        hours, remainder = divmod(self.duration_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    @property
    def episode_span(self) -> int:
        """Number of logical episodes this track holds."""
        return 2 if self.is_double else 1


class ParsedDiscInfo(BaseModel):
    """Best-effort reading of a raw disc label."""

    series_name: str
    season: int = 1
    disc_number: int = 1
    season_explicit: bool = False
    disc_explicit: bool = False

    @property
    def has_explicit_markers(self) -> bool:
        return self.season_explicit or self.disc_explicit


class DiscShapePattern(BaseModel):
    """The Nth time a disc with this title and track count was processed."""

    disc_title: str
    track_count: int
    sequence_number: int = 1
    assigned_season: int
    starting_episode: int
    episode_count: int
    processed_date: datetime = Field(default_factory=datetime.now)

    def matches(self, disc_title: str, track_count: int) -> bool:
        return self.track_count == track_count and self.disc_title.casefold() == disc_title.strip().casefold()


class DiscRecord(BaseModel):
    """One processed (or in-flight) disc of a series."""

    disc_name: str
    season: int
    disc_number: int = 1
    starting_episode: int
    track_count: int
    episode_count: int = 0
    sequence_number: int = 1
    processed_date: datetime = Field(default_factory=datetime.now)
    track_to_episode_mapping: dict[int, list[int]] = Field(default_factory=dict)
    user_selections: list[TrackSelectionPattern] = Field(default_factory=list)

    # Resolution details, never persisted
    source: ResolutionSource = Field(default=ResolutionSource.SEQUENTIAL, exclude=True)
    conflicting_season: Optional[int] = Field(default=None, exclude=True)
    season_confirmed: bool = Field(default=False, exclude=True)

    @property
    def has_season_mismatch(self) -> bool:
        return self.conflicting_season is not None

    @property
    def last_episode(self) -> int:
        """Highest episode number this disc covers."""
        mapped = [ep for episodes in self.track_to_episode_mapping.values() for ep in episodes]
        if mapped:
            return max(mapped)
        return self.starting_episode + max(self.episode_count, 1) - 1

    def is_same_disc(self, other: "DiscRecord") -> bool:
        """Whether two records describe the same physical disc slot."""
        return (
            self.season == other.season
            and self.disc_number == other.disc_number
            and self.disc_name.casefold() == other.disc_name.casefold()
        )
