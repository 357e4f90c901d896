"""Repository layer for database operations."""

from .season_cache_repository import SeasonCacheRepository

__all__ = [
    "SeasonCacheRepository",
]
