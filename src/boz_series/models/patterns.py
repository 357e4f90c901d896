"""Pattern-learning models for user-confirmed episode ordering."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TrackSelectionPattern(BaseModel):
    """One user decision about which episode a track holds.

    Written once when the user confirms a track, read during pattern analysis.
    """

    model_config = ConfigDict(frozen=True)

    track_id: str
    track_name: str
    track_order_position: int  # 0-based position in the sorted track list
    suggested_episode: int
    selected_episode: int
    was_accepted: bool
    selection_date: datetime = Field(default_factory=datetime.now)
    selection_reason: str = ""  # "accepted", "manual_choice" or "rejected_suggestion"


class TrackToEpisodeMapping(BaseModel):
    """Learned episode for a track position."""

    track_position: int
    episode_number: int
    relative_offset: int = 0  # Episode minus the lowest episode on its disc
    confidence_score: float = 0.0
    sample_count: int = 1


class EpisodeTrackPattern(BaseModel):
    """Learned track -> episode mappings for one series season."""

    series_title: str = ""
    season: int
    track_mappings: list[TrackToEpisodeMapping] = Field(default_factory=list)
    usage_count: int = 0
    confidence_score: float = 0.0
    last_used: datetime = Field(default_factory=datetime.now)
    created_date: datetime = Field(default_factory=datetime.now)

    def mapping_at(self, track_position: int) -> Optional[TrackToEpisodeMapping]:
        """Get the mapping for a track position."""
        for mapping in self.track_mappings:
            if mapping.track_position == track_position:
                return mapping
        return None
