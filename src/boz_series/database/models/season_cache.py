"""Cached season metadata ORM models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base


class SeasonCacheORM(Base):
    """ORM model for season_cache table."""

    __tablename__ = "season_cache"

    # Primary key: "<normalized title>:s<season>"
    season_id: Mapped[str] = mapped_column(String(300), primary_key=True)

    series_title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    season_number: Mapped[int] = mapped_column(Integer, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(50))

    # Freshness
    fetched_at: Mapped[datetime] = mapped_column(default=func.now(), index=True)

    episodes: Mapped[list["EpisodeCacheORM"]] = relationship(
        "EpisodeCacheORM", back_populates="season", cascade="all, delete-orphan"
    )


class EpisodeCacheORM(Base):
    """ORM model for episode_cache table."""

    __tablename__ = "episode_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    season_id: Mapped[str] = mapped_column(
        String(300),
        ForeignKey("season_cache.season_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    episode_number: Mapped[int] = mapped_column(Integer, nullable=False)
    episode_name: Mapped[str] = mapped_column(String(255), nullable=False)
    season_number: Mapped[int] = mapped_column(Integer, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(50))
    runtime: Mapped[Optional[int]] = mapped_column(Integer)  # minutes
    overview: Mapped[Optional[str]] = mapped_column(Text)

    season: Mapped["SeasonCacheORM"] = relationship("SeasonCacheORM", back_populates="episodes")
