"""Database ORM models."""

from .season_cache import EpisodeCacheORM, SeasonCacheORM

__all__ = [
    "SeasonCacheORM",
    "EpisodeCacheORM",
]
