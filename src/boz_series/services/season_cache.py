"""SQLite cache of season episode lists from the metadata service."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from boz_series.database.session import Database
from boz_series.models.media import TVEpisode, TVSeason
from boz_series.repositories.season_cache_repository import SeasonCacheRepository

logger = logging.getLogger(__name__)


class SeasonInfoCache:
    """Caches season metadata so repeated discs of a series do not re-query OMDb.

    Entries older than the freshness window are treated as missing.
    """

    def __init__(self, database: Database, freshness_days: int = 30):
        """
        Initialize season cache.

        Args:
            database: Database holding the cache tables
            freshness_days: Days a cached season stays valid
        """
        self.database = database
        self.freshness = timedelta(days=freshness_days)
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.database.init()
            self._initialized = True

    def _is_fresh(self, season: TVSeason) -> bool:
        return datetime.now() - season.fetched_at < self.freshness

    async def get_season(self, series_title: str, season_number: int) -> Optional[TVSeason]:
        """
        Get a cached season.

        Returns:
            TVSeason if cached and fresh, None otherwise
        """
        await self._ensure_initialized()

        async with self.database.session() as session:
            repo = SeasonCacheRepository(session)
            season_orm = await repo.get_with_episodes(series_title, season_number)
            if season_orm is None:
                return None
            season = repo.to_pydantic(season_orm)

        if not self._is_fresh(season):
            logger.debug(f"Cached season expired: {series_title} S{season_number:02d}")
            return None

        logger.debug(f"Season cache hit: {series_title} S{season_number:02d} ({len(season.episodes)} episodes)")
        return season

    async def store_season(self, season: TVSeason) -> None:
        """Store or refresh a season."""
        await self._ensure_initialized()

        async with self.database.session() as session:
            await SeasonCacheRepository(session).upsert(season)

        logger.info(
            f"Cached {len(season.episodes)} episodes for {season.series_title} S{season.season_number:02d}"
        )

    async def get_episode(self, series_title: str, season_number: int, episode_number: int) -> Optional[TVEpisode]:
        """Get one cached episode, None if the season is missing or stale."""
        season = await self.get_season(series_title, season_number)
        if season is None:
            return None
        return season.get_episode(episode_number)

    async def clear_expired(self) -> int:
        """
        Remove seasons older than the freshness window.

        Returns:
            Number of seasons removed
        """
        await self._ensure_initialized()

        cutoff = datetime.now() - self.freshness
        async with self.database.session() as session:
            removed = await SeasonCacheRepository(session).delete_fetched_before(cutoff)

        if removed:
            logger.info(f"Removed {removed} expired seasons from cache")
        return removed

    async def forget_series(self, series_title: str) -> int:
        """Remove every cached season of a series."""
        await self._ensure_initialized()

        async with self.database.session() as session:
            return await SeasonCacheRepository(session).delete_series(series_title)
