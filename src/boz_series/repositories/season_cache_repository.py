"""Season cache repository for database operations."""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models.season_cache import EpisodeCacheORM, SeasonCacheORM
from ..models.media import TVEpisode, TVSeason
from ..models.series import normalize_title
from .base import BaseRepository


def season_cache_id(series_title: str, season_number: int) -> str:
    return f"{normalize_title(series_title)}:s{season_number}"


class SeasonCacheRepository(BaseRepository[SeasonCacheORM]):
    """Repository for cached season metadata."""

    def __init__(self, session: AsyncSession):
        """Initialize season cache repository."""
        super().__init__(SeasonCacheORM, session)

    async def get_with_episodes(self, series_title: str, season_number: int) -> Optional[SeasonCacheORM]:
        """
        Get a cached season with episodes eagerly loaded.

        Args:
            series_title: Series title (any case)
            season_number: Season number

        Returns:
            Season ORM with episodes or None
        """
        found = await self.find(
            SeasonCacheORM.season_id == season_cache_id(series_title, season_number),
            options=[selectinload(SeasonCacheORM.episodes)],
        )
        return found[0] if found else None

    def to_pydantic(self, season_orm: SeasonCacheORM) -> TVSeason:
        """
        Convert ORM model to Pydantic model.

        Args:
            season_orm: ORM season instance

        Returns:
            Pydantic TVSeason model
        """
        episodes = [
            TVEpisode(
                episode_number=ep.episode_number,
                episode_name=ep.episode_name,
                season_number=ep.season_number,
                external_id=ep.external_id,
                runtime=ep.runtime,
                overview=ep.overview,
            )
            for ep in sorted(season_orm.episodes, key=lambda e: e.episode_number)
        ]

        return TVSeason(
            series_title=season_orm.series_title,
            season_number=season_orm.season_number,
            external_id=season_orm.external_id,
            episodes=episodes,
            fetched_at=season_orm.fetched_at,
        )

    async def upsert(self, season: TVSeason) -> SeasonCacheORM:
        """
        Store a season, replacing any cached episodes.

        Args:
            season: Season as fetched from the metadata service

        Returns:
            Stored season ORM
        """
        season_id = season_cache_id(season.series_title, season.season_number)
        season_orm = await self.get_with_episodes(season.series_title, season.season_number)

        if season_orm is None:
            season_orm = SeasonCacheORM(
                season_id=season_id,
                series_title=season.series_title,
                season_number=season.season_number,
            )
            self.session.add(season_orm)

        season_orm.external_id = season.external_id
        season_orm.fetched_at = season.fetched_at

        # Replace episodes
        season_orm.episodes = [
            EpisodeCacheORM(
                season_id=season_id,
                episode_number=episode.episode_number,
                episode_name=episode.episode_name,
                season_number=episode.season_number,
                external_id=episode.external_id,
                runtime=episode.runtime,
                overview=episode.overview,
            )
            for episode in season.episodes
        ]

        await self.session.flush()
        return season_orm

    async def delete_fetched_before(self, cutoff: datetime) -> int:
        """
        Delete seasons fetched before a cutoff.

        Returns:
            Number of seasons deleted
        """
        stale = await self.find(
            SeasonCacheORM.fetched_at < cutoff,
            options=[selectinload(SeasonCacheORM.episodes)],
        )
        return await self.delete_all(stale)

    async def delete_series(self, series_title: str) -> int:
        """Delete every cached season of a series."""
        seasons = await self.find(
            SeasonCacheORM.season_id.startswith(f"{normalize_title(series_title)}:s"),
            options=[selectinload(SeasonCacheORM.episodes)],
        )
        return await self.delete_all(seasons)
