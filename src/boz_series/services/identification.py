"""Working out what a disc is: a series, a movie, or something to ask about."""

import re
from typing import Optional

import structlog

from boz_series.models.media import MediaIdentity, MediaType
from boz_series.services.confirmation import Confirmer
from boz_series.services.disc_parser import parse_disc_name
from boz_series.services.omdb_client import OMDbClient
from boz_series.services.state_store import SeriesStateStore

logger = structlog.get_logger()

# Below this, an OMDb match is not trusted without asking
MIN_IDENTITY_CONFIDENCE = 0.7

YEAR_PATTERN = re.compile(r"(?:^|[\s_.(\[-])((?:19|20)\d{2})(?:$|[\s_.)\]-])")


class MediaIdentifier:
    """Identifies discs, remembering manual answers for recurring labels."""

    def __init__(
        self,
        store: SeriesStateStore,
        client: Optional[OMDbClient],
        confirmer: Confirmer,
    ):
        self.store = store
        self.client = client
        self.confirmer = confirmer

    async def identify(self, disc_name: str) -> Optional[MediaIdentity]:
        """
        Identify a disc.

        Order: manual identification cache, OMDb series search, OMDb movie
        search (with a year from the label when it carries one), then the
        user. A user answer is cached for the disc's name pattern.

        Returns:
            MediaIdentity, or None if nobody could tell
        """
        cached = self.store.get_manual_identification(disc_name)
        if cached is not None:
            logger.info("identification_cache_hit", disc=disc_name, title=cached.media_title)
            return cached.to_identity()

        parsed = parse_disc_name(disc_name)
        search_title = parsed.series_name

        if self.client is not None and self.client.enabled:
            identity = await self._search(disc_name, search_title, parsed.has_explicit_markers)
            if identity is not None:
                return identity

        identity = await self.confirmer.identify_media(disc_name, search_title)
        if identity is None:
            logger.warning("disc_unidentified", disc=disc_name, search_title=search_title)
            return None

        self.store.save_manual_identification(disc_name, identity)
        return identity

    async def _search(self, disc_name: str, search_title: str, has_markers: bool) -> Optional[MediaIdentity]:
        series = await self.client.search_series(search_title)
        if series is not None and (has_markers or series.confidence >= MIN_IDENTITY_CONFIDENCE):
            logger.info("disc_identified", disc=disc_name, title=series.title,
                        media_type=series.media_type.value, confidence=round(series.confidence, 2))
            return series

        candidates = []
        movie = await self.client.search_movie(search_title)
        if movie is not None:
            candidates.append(movie)

        year = self.extract_year(disc_name)
        if year is not None:
            title_without_year = YEAR_PATTERN.sub(" ", search_title).strip()
            dated = await self.client.search_movie(title_without_year or search_title, year)
            if dated is not None:
                candidates.append(dated)

        if series is not None:
            candidates.append(series)

        best = max(candidates, key=lambda c: c.confidence, default=None)
        if best is None or best.confidence < MIN_IDENTITY_CONFIDENCE:
            logger.info("disc_search_inconclusive", disc=disc_name, search_title=search_title)
            return None

        logger.info("disc_identified", disc=disc_name, title=best.title,
                    media_type=best.media_type.value, confidence=round(best.confidence, 2))
        return best

    @staticmethod
    def extract_year(disc_name: str) -> Optional[int]:
        match = YEAR_PATTERN.search(disc_name)
        return int(match.group(1)) if match else None

    @staticmethod
    def describe(identity: MediaIdentity) -> str:
        media_type = identity.media_type
        if media_type == MediaType.SERIES:
            return f"series '{identity.title}'"
        elif media_type == MediaType.MOVIE:
            return f"movie '{identity.title}'" + (f" ({identity.year})" if identity.year else "")
        elif media_type == MediaType.UNKNOWN:
            return f"'{identity.title}' (unknown type)"
        raise ValueError(f"Unknown media type: {media_type}")
