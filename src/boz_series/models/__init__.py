"""Pydantic models for series state, discs, patterns and media identity."""

from .disc import DiscRecord, DiscShapePattern, ParsedDiscInfo, ResolutionSource, RippedTrack
from .media import ManualIdentification, MediaIdentity, MediaType, TVEpisode, TVSeason
from .patterns import EpisodeTrackPattern, TrackSelectionPattern, TrackToEpisodeMapping
from .series import DoubleEpisodeHandling, SeriesState, TrackSortingStrategy, normalize_title

__all__ = [
    "DiscRecord",
    "DiscShapePattern",
    "DoubleEpisodeHandling",
    "EpisodeTrackPattern",
    "ManualIdentification",
    "MediaIdentity",
    "MediaType",
    "ParsedDiscInfo",
    "ResolutionSource",
    "RippedTrack",
    "SeriesState",
    "TVEpisode",
    "TVSeason",
    "TrackSelectionPattern",
    "TrackSortingStrategy",
    "TrackToEpisodeMapping",
    "normalize_title",
]
