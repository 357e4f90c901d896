"""OMDb API client for series, movie and season metadata."""

import logging
import re
from typing import Optional

import httpx

from boz_series.core.config import OMDbConfig
from boz_series.models.media import MediaIdentity, MediaType, TVEpisode, TVSeason

logger = logging.getLogger(__name__)

MIN_SEARCH_CONFIDENCE = 0.5


class OMDbClient:
    """Client for OMDb API (Open Movie Database)."""

    def __init__(self, config: OMDbConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize OMDb client.

        Args:
            config: OMDb settings (API key, base URL, timeout)
            transport: Optional httpx transport, used by tests
        """
        self.api_key = config.api_key or ""
        self.base_url = config.base_url
        self._client = httpx.AsyncClient(timeout=config.timeout, transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def search_series(self, title: str) -> Optional[MediaIdentity]:
        """
        Search for a TV series by title.

        Args:
            title: Series title or raw disc name

        Returns:
            MediaIdentity if found, None otherwise
        """
        return await self._search(title, MediaType.SERIES)

    async def search_movie(self, title: str, year: Optional[int] = None) -> Optional[MediaIdentity]:
        """
        Search for a movie by title.

        Args:
            title: Movie title or raw disc name
            year: Optional release year to narrow search

        Returns:
            MediaIdentity if found, None otherwise
        """
        return await self._search(title, MediaType.MOVIE, year)

    async def get_season_episodes(
        self,
        series_title: str,
        season_number: int,
        external_id: Optional[str] = None,
    ) -> Optional[TVSeason]:
        """
        Get the episode list of a season.

        Args:
            series_title: Series title (used when no IMDb ID is known)
            season_number: Season number
            external_id: IMDb ID of the series, preferred over the title

        Returns:
            TVSeason, or None if the season is unknown
        """
        if not self.enabled:
            return None

        logger.info(f"Fetching OMDb episodes for {series_title} season {season_number}")

        params = {"Season": str(season_number)}
        if external_id:
            params["i"] = external_id
        else:
            params["t"] = self._clean_search_title(series_title)

        data = await self._get(params)
        if data is None or data.get("Response") != "True":
            logger.warning(f"No episodes found for {series_title} season {season_number}")
            return None

        episodes = []
        for item in data.get("Episodes", []):
            try:
                number = int(item.get("Episode", ""))
            except ValueError:
                continue
            episodes.append(
                TVEpisode(
                    episode_number=number,
                    episode_name=item.get("Title") or f"Episode {number}",
                    season_number=season_number,
                    external_id=item.get("imdbID"),
                )
            )

        episodes.sort(key=lambda e: e.episode_number)
        logger.info(f"Found {len(episodes)} episodes for {series_title} season {season_number}")
        return TVSeason(
            series_title=series_title,
            season_number=season_number,
            external_id=external_id,
            episodes=episodes,
        )

    async def _search(
        self, title: str, media_type: MediaType, year: Optional[int] = None
    ) -> Optional[MediaIdentity]:
        if not self.enabled:
            logger.debug("OMDb API key not configured, skipping search")
            return None

        search_title = self._clean_search_title(title)
        if not search_title:
            return None

        logger.info(f"Searching OMDb for {media_type.value}: {search_title}" + (f" ({year})" if year else ""))

        # Exact title lookup first
        params = {"t": search_title, "type": media_type.value}
        if year:
            params["y"] = str(year)

        data = await self._get(params)
        if data is None:
            return None

        if data.get("Response") == "True":
            identity = self._parse_identity(data, media_type)
            identity.confidence = self._calculate_confidence(search_title, identity.title, year, identity.year)
            logger.info(
                f"Found {media_type.value}: {identity.title} ({identity.year}) - confidence: {identity.confidence:.2f}"
            )
            return identity

        logger.debug(f"Exact search failed, trying search API for: {search_title}")
        return await self._search_multiple(search_title, media_type, year)

    async def _search_multiple(
        self, search_title: str, media_type: MediaType, year: Optional[int]
    ) -> Optional[MediaIdentity]:
        """Pick the best of the top search results."""
        params = {"s": search_title, "type": media_type.value}
        if year:
            params["y"] = str(year)

        data = await self._get(params)
        if data is None or data.get("Response") != "True" or not data.get("Search"):
            logger.debug(f"No search results found for: {search_title}")
            return None

        best_match: Optional[dict] = None
        best_confidence = 0.0

        for result in data["Search"][:5]:
            confidence = self._calculate_confidence(
                search_title, result.get("Title", ""), year, self._parse_year(result.get("Year"))
            )
            if confidence > best_confidence:
                best_confidence = confidence
                best_match = result

        if best_match is None or best_confidence < MIN_SEARCH_CONFIDENCE:
            return None

        identity = self._parse_identity(best_match, media_type)
        identity.confidence = best_confidence
        logger.info(f"Best search match: {identity.title} ({identity.year}) - confidence: {best_confidence:.2f}")
        return identity

    async def _get(self, params: dict) -> Optional[dict]:
        """GET the API with the key added. None on transport or HTTP errors."""
        try:
            response = await self._client.get(self.base_url, params={"apikey": self.api_key, **params})
        except httpx.HTTPError as e:
            logger.error(f"OMDb request error: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"OMDb request failed: {response.status_code}")
            return None

        try:
            return response.json()
        except ValueError:
            logger.error("OMDb returned invalid JSON")
            return None

    def _parse_identity(self, data: dict, media_type: MediaType) -> MediaIdentity:
        return MediaIdentity(
            title=data.get("Title", "Unknown"),
            year=self._parse_year(data.get("Year")),
            external_id=data.get("imdbID") or None,
            media_type=media_type,
        )

    @staticmethod
    def _parse_year(value: Optional[str]) -> Optional[int]:
        """Parse "2008", "2008-2013" or "2008–" to the first year."""
        if not value or value == "N/A":
            return None
        match = re.match(r"(\d{4})", value)
        return int(match.group(1)) if match else None

    @staticmethod
    def _clean_search_title(title: str) -> str:
        """
        Clean a disc name for searching.

        Removes season/disc markers, disc format words, edition words,
        years in parentheses and leading studio codes.
        """
        cleaned = title.replace("_", " ").replace(".", " ")

        # Season/disc markers ("S1 D2", "Season 1", "Disc 2")
        cleaned = re.sub(r"\bS\d{1,2}\s*D\d{1,2}\b", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\b(SEASON|SERIES)\s*\d+\b", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\bS\d{1,2}\b", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\b(DISC|DISK|DVD|BD|BLURAY|BLU-RAY)\s*\d*\b", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\bD\d{1,2}\b", "", cleaned, flags=re.IGNORECASE)

        cleaned = re.sub(
            r"\b(EXTENDED|UNRATED|DIRECTORS?\s*CUT|SPECIAL\s*EDITION|COLLECTORS?\s*EDITION|ANNIVERSARY|REMASTERED)\b",
            "",
            cleaned,
            flags=re.IGNORECASE,
        )

        cleaned = re.sub(r"\(\d{4}\)", "", cleaned)
        cleaned = re.sub(r"\s+\d+$", "", cleaned)
        cleaned = re.sub(r"^[A-Z]{2,4}[-_]", "", cleaned)

        return re.sub(r"\s+", " ", cleaned).strip()

    def _calculate_confidence(
        self,
        search_title: str,
        result_title: str,
        search_year: Optional[int],
        result_year: Optional[int],
    ) -> float:
        """
        Score a search result between 0 and 1.

        Title similarity, scaled up for an exact year match and down the
        further the years are apart.
        """
        title_similarity = self._string_similarity(
            self._normalize_for_comparison(search_title),
            self._normalize_for_comparison(result_title),
        )

        year_factor = 1.0
        if search_year and result_year:
            year_diff = abs(search_year - result_year)
            if year_diff == 0:
                year_factor = 1.1
            elif year_diff <= 1:
                year_factor = 1.0
            elif year_diff <= 3:
                year_factor = 0.9
            else:
                year_factor = 0.7

        return min(1.0, title_similarity * year_factor)

    @staticmethod
    def _normalize_for_comparison(title: str) -> str:
        normalized = title.lower()
        normalized = re.sub(r"^(the|a|an)\s+", "", normalized)
        normalized = re.sub(r"[^a-z0-9\s]", "", normalized)
        return re.sub(r"\s+", " ", normalized).strip()

    @staticmethod
    def _string_similarity(s1: str, s2: str) -> float:
        """Containment ratio, else word overlap (Jaccard)."""
        if not s1 or not s2:
            return 0.0
        if s1 == s2:
            return 1.0

        if s1 in s2 or s2 in s1:
            return min(len(s1), len(s2)) / max(len(s1), len(s2))

        words1 = set(s1.split())
        words2 = set(s2.split())
        if not words1 or not words2:
            return 0.0
        return len(words1 & words2) / len(words1 | words2)
