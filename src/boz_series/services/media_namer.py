"""Library file naming and moving ripped files into place."""

import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from boz_series.core.config import LibraryConfig

logger = logging.getLogger(__name__)


class MediaNamer:
    """Generates Plex-compatible filenames and paths."""

    def __init__(self, config: LibraryConfig):
        """
        Initialize media namer.

        Args:
            config: Library layout (output dir, movie and TV folder names)
        """
        self.base_path = Path(config.output_dir)
        self.tv_path = self.base_path / config.tv_dir
        self.movies_path = self.base_path / config.movies_dir

    @staticmethod
    def sanitize_filename(name: str) -> str:
        """
        Sanitize filename by removing invalid characters.

        Args:
            name: Raw filename

        Returns:
            Sanitized filename safe for filesystem
        """
        sanitized = re.sub(r'[<>:"/\\|?*]', "", name)
        sanitized = re.sub(r"\s+", " ", sanitized)
        # Windows shares reject trailing dots
        return sanitized.strip().rstrip(".").strip()

    @staticmethod
    def episode_tag(season_number: int, episode_numbers: list[int]) -> str:
        """S01E03, or S01E03-E04 for a track holding two episodes."""
        first = min(episode_numbers)
        tag = f"S{season_number:02d}E{first:02d}"
        last = max(episode_numbers)
        if last != first:
            tag += f"-E{last:02d}"
        return tag

    def generate_tv_filename(
        self,
        show_name: str,
        season_number: int,
        episode_numbers: list[int],
        episode_title: Optional[str] = None,
    ) -> str:
        """
        Generate TV episode filename.

        Format: ShowName - S01E01 - EpisodeTitle.mkv
        """
        sanitized_show = self.sanitize_filename(show_name)
        season_ep = self.episode_tag(season_number, episode_numbers)

        if episode_title:
            sanitized_title = self.sanitize_filename(episode_title)
            if sanitized_title:
                return f"{sanitized_show} - {season_ep} - {sanitized_title}.mkv"
        return f"{sanitized_show} - {season_ep}.mkv"

    def generate_tv_path(
        self,
        show_name: str,
        season_number: int,
        episode_numbers: list[int],
        episode_title: Optional[str] = None,
    ) -> Path:
        """
        Generate full TV episode path.

        Format: <tv_dir>/ShowName/Season 01/ShowName - S01E01 - EpisodeTitle.mkv
        """
        season_folder = f"Season {season_number:02d}"
        filename = self.generate_tv_filename(show_name, season_number, episode_numbers, episode_title)
        return self.tv_path / self.sanitize_filename(show_name) / season_folder / filename

    def generate_movie_filename(self, movie_name: str, year: Optional[int] = None) -> str:
        """Format: MovieName (Year).mkv"""
        sanitized_name = self.sanitize_filename(movie_name)
        if year:
            return f"{sanitized_name} ({year}).mkv"
        return f"{sanitized_name}.mkv"

    def generate_movie_path(self, movie_name: str, year: Optional[int] = None) -> Path:
        """
        Generate full movie path.

        Format: <movies_dir>/MovieName (Year)/MovieName (Year).mkv
        """
        filename = self.generate_movie_filename(movie_name, year)
        return self.movies_path / Path(filename).stem / filename

    async def move_file(
        self,
        source: Path,
        destination: Path,
        retries: int = 3,
        retry_delay: float = 2.0,
    ) -> Path:
        """
        Move a ripped file into the library.

        An existing file at the destination is never overwritten; a
        " (2)", " (3)", ... suffix is added instead.

        Args:
            source: Ripped file
            destination: Target path
            retries: Attempts before giving up
            retry_delay: Seconds between attempts

        Returns:
            Final path of the file

        Raises:
            OSError: If the file could not be moved after all attempts
        """
        target = self._free_path(destination)

        for attempt in range(1, retries + 1):
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                await asyncio.to_thread(shutil.move, str(source), str(target))
                logger.info(f"Moved {source.name} -> {target}")
                return target
            except OSError as e:
                if attempt >= retries:
                    logger.error(f"Failed to move {source} to {target} after {attempt} attempts: {e}")
                    raise
                logger.warning(f"Move attempt {attempt} failed for {source.name}: {e}")
                await asyncio.sleep(retry_delay)

        return target

    @staticmethod
    def _free_path(destination: Path) -> Path:
        if not destination.exists():
            return destination
        counter = 2
        while True:
            candidate = destination.with_name(f"{destination.stem} ({counter}){destination.suffix}")
            if not candidate.exists():
                return candidate
            counter += 1
