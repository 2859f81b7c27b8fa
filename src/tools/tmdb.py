"""
Async TMDB (The Movie Database) API client.

Uses ``httpx`` to call the TMDB v3 REST API.  Two engines rely on it:
the TMDB signal fetcher (trending movies, upcoming releases, trending
people) and the TMDB image provider (posters, backdrops, profiles).

Transient HTTP errors are retried with exponential backoff; a missing
API key raises :class:`SourceUnavailableError` before any request is made.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from src.exceptions import SourceUnavailableError
from src.utils import is_transient_http_error, with_retry

logger = logging.getLogger(__name__)


class TMDBClient:
    """Async wrapper around the TMDB v3 API.

    Args:
        api_key: TMDB API key.  Falls back to the ``TMDB_API_KEY``
            environment variable.
        timeout: Per-request timeout in seconds.

    Usage::

        client = TMDBClient()
        movies = await client.trending_movies("day", language="te-IN")
        images = await client.movie_images(12345)
    """

    BASE_URL: str = "https://api.themoviedb.org/3"
    IMAGE_BASE_URL: str = "https://image.tmdb.org/t/p"
    SITE_URL: str = "https://www.themoviedb.org"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 10.0) -> None:
        self.api_key: str = api_key or os.environ.get("TMDB_API_KEY", "")
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def image_url(cls, file_path: str, size: str = "w500") -> str:
        """Build a CDN URL for an image ``file_path`` at the given size."""
        return f"{cls.IMAGE_BASE_URL}/{size}{file_path}"

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    @with_retry(
        max_attempts=3,
        base_delay=1.0,
        retryable_exceptions=(httpx.HTTPError,),
        retry_if=is_transient_http_error,
        operation_name="tmdb_get",
    )
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise SourceUnavailableError("tmdb", "TMDB_API_KEY not configured")

        query = {"api_key": self.api_key}
        query.update(params or {})

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{self.BASE_URL}{path}", params=query)
            response.raise_for_status()
            data = response.json()

        logger.debug("TMDB GET %s ok", path)
        return data

    # ------------------------------------------------------------------
    # Trending / discovery
    # ------------------------------------------------------------------

    async def trending_movies(
        self, window: str = "day", language: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Trending movies for ``window`` (``"day"`` or ``"week"``)."""
        params = {"language": language} if language else None
        data = await self._get(f"/trending/movie/{window}", params)
        return data.get("results") or []

    async def upcoming_movies(
        self, language: Optional[str] = None, region: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if language:
            params["language"] = language
        if region:
            params["region"] = region
        data = await self._get("/movie/upcoming", params)
        return data.get("results") or []

    async def trending_people(self, window: str = "week") -> List[Dict[str, Any]]:
        data = await self._get(f"/trending/person/{window}")
        return data.get("results") or []

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def movie_images(self, movie_id: int) -> Dict[str, Any]:
        """Posters and backdrops for a movie."""
        return await self._get(f"/movie/{movie_id}/images")

    async def person_images(self, person_id: int) -> Dict[str, Any]:
        """Profile photos for a person."""
        return await self._get(f"/person/{person_id}/images")

    async def search(self, kind: str, query: str) -> List[Dict[str, Any]]:
        """Search ``kind`` (``"person"`` or ``"movie"``) by name."""
        data = await self._get(f"/search/{kind}", {"query": query})
        return data.get("results") or []
