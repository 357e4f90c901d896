"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from boz_series.models.series import DoubleEpisodeHandling, TrackSortingStrategy


class MakeMKVConfig(BaseModel):
    """MakeMKV configuration."""

    executable: str = "makemkvcon"
    temp_dir: str = "/data/temp"
    min_title_length: int = 120  # seconds; shorter titles are menus/extras


class DiscDetectionConfig(BaseModel):
    """Disc detection settings."""

    enabled: bool = True
    poll_interval: int = 5
    ignore_drives: list[str] = Field(default_factory=list)


class StateConfig(BaseModel):
    """Where durable state lives."""

    state_dir: str = "state"
    season_cache_url: Optional[str] = None  # Defaults to sqlite in state_dir
    season_cache_days: int = 30

    def resolved_season_cache_url(self) -> str:
        """Return the season cache database URL."""
        if self.season_cache_url:
            return self.season_cache_url
        return f"sqlite+aiosqlite:///{Path(self.state_dir) / 'season_cache.db'}"


class OMDbConfig(BaseModel):
    """OMDb metadata service settings."""

    api_key: Optional[str] = None
    base_url: str = "https://www.omdbapi.com"
    timeout: float = 30.0


class LibraryConfig(BaseModel):
    """Output library layout."""

    output_dir: str = "/data/output"
    movies_dir: str = "Movies"
    tv_dir: str = "TV Shows"


class ContinuityConfig(BaseModel):
    """Defaults for new series and confirmation behaviour."""

    default_sorting_strategy: TrackSortingStrategy = TrackSortingStrategy.BY_TRACK_ORDER
    default_double_handling: DoubleEpisodeHandling = DoubleEpisodeHandling.ALWAYS_ASK
    double_length_factor: float = 1.5  # Longer than this x shortest track = double candidate
    confirm_every_disc: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None
    max_size: int = 10  # MB
    backup_count: int = 5


class Settings(BaseSettings):
    """Main settings container."""

    model_config = SettingsConfigDict(
        env_prefix="BOZ_SERIES_",
        env_nested_delimiter="__",
    )

    makemkv: MakeMKVConfig = Field(default_factory=MakeMKVConfig)
    disc_detection: DiscDetectionConfig = Field(default_factory=DiscDetectionConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    omdb: OMDbConfig = Field(default_factory=OMDbConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    continuity: ContinuityConfig = Field(default_factory=ContinuityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f)

        return cls(**data) if data else cls()
