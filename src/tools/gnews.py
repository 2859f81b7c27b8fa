"""
Async GNews search client used by the news signal fetcher.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from src.exceptions import SourceUnavailableError
from src.utils import is_transient_http_error, with_retry

logger = logging.getLogger(__name__)


class GNewsClient:
    """Async wrapper around the GNews v4 search endpoint.

    Args:
        api_key: API key.  Falls back to ``GNEWS_API_KEY``.
        timeout: Per-request timeout in seconds.
    """

    BASE_URL: str = "https://gnews.io/api/v4"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 10.0) -> None:
        self.api_key: str = api_key or os.environ.get("GNEWS_API_KEY", "")
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @with_retry(
        max_attempts=3,
        base_delay=1.0,
        retryable_exceptions=(httpx.HTTPError,),
        retry_if=is_transient_http_error,
        operation_name="gnews_search",
    )
    async def search(
        self,
        query: str,
        lang: str = "en",
        country: str = "in",
        max_results: int = 10,
    ) -> List[Dict[str, Any]]:
        """Search articles.

        Returns:
            Raw ``articles`` list (``title``, ``url``, ``publishedAt``,
            ``source.name``, ...).
        """
        if not self.api_key:
            raise SourceUnavailableError("news_api", "GNEWS_API_KEY not configured")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.BASE_URL}/search",
                params={
                    "q": query,
                    "lang": lang,
                    "country": country,
                    "max": max_results,
                    "apikey": self.api_key,
                },
            )
            response.raise_for_status()
            data = response.json()

        articles = data.get("articles") or []
        logger.debug("GNews search '%s': %d articles", query, len(articles))
        return articles
