"""Episode titles and season sizes, cache first."""

import logging
from typing import Optional

from boz_series.models.media import TVEpisode, TVSeason
from boz_series.services.omdb_client import OMDbClient
from boz_series.services.season_cache import SeasonInfoCache

logger = logging.getLogger(__name__)


class EpisodeMetadataService:
    """Looks up season episode lists in the cache, falling back to OMDb."""

    def __init__(self, client: OMDbClient, cache: Optional[SeasonInfoCache] = None):
        self.client = client
        self.cache = cache

    async def get_season_episodes(
        self, series_title: str, season_number: int, external_id: Optional[str] = None
    ) -> Optional[TVSeason]:
        """
        Get a season's episodes.

        Args:
            series_title: Series title
            season_number: Season number
            external_id: Optional IMDb ID of the series

        Returns:
            TVSeason or None if unknown
        """
        if self.cache is not None:
            cached = await self.cache.get_season(series_title, season_number)
            if cached is not None:
                return cached

        season = await self.client.get_season_episodes(series_title, season_number, external_id)
        if season is None or not season.episodes:
            return None

        if self.cache is not None:
            await self.cache.store_season(season)
        return season

    async def get_episode(self, series_title: str, season_number: int, episode_number: int) -> Optional[TVEpisode]:
        season = await self.get_season_episodes(series_title, season_number)
        if season is None:
            return None
        return season.get_episode(episode_number)

    async def get_episode_title(self, series_title: str, season_number: int, episode_number: int) -> Optional[str]:
        episode = await self.get_episode(series_title, season_number, episode_number)
        return episode.episode_name if episode else None

    async def season_episode_total(self, series_title: str, season_number: int) -> Optional[int]:
        """Number of episodes in a season, None when unknown."""
        season = await self.get_season_episodes(series_title, season_number)
        if season is None:
            return None
        return max(e.episode_number for e in season.episodes)
