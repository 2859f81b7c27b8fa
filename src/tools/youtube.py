"""
Async YouTube Data API v3 client.

Searches recent videos for a term and, when asked, looks up view
statistics so the video fetcher can score by popularity instead of a
flat default.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from src.exceptions import SourceUnavailableError
from src.utils import is_transient_http_error, with_retry

logger = logging.getLogger(__name__)


class YouTubeClient:
    """Async wrapper around the YouTube Data API.

    Args:
        api_key: API key.  Falls back to the ``YOUTUBE_API_KEY``
            environment variable.
        timeout: Per-request timeout in seconds.
    """

    BASE_URL: str = "https://www.googleapis.com/youtube/v3"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 10.0) -> None:
        self.api_key: str = api_key or os.environ.get("YOUTUBE_API_KEY", "")
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @with_retry(
        max_attempts=3,
        base_delay=1.0,
        retryable_exceptions=(httpx.HTTPError,),
        retry_if=is_transient_http_error,
        operation_name="youtube_get",
    )
    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise SourceUnavailableError("youtube", "YOUTUBE_API_KEY not configured")

        query = dict(params)
        query["key"] = self.api_key

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{self.BASE_URL}{path}", params=query)
            response.raise_for_status()
            return response.json()

    async def search_videos(
        self,
        term: str,
        published_after: datetime,
        max_results: int = 10,
        region: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Most-viewed videos matching ``term`` published after a cutoff.

        Returns:
            Raw ``items`` from the search endpoint.
        """
        params: Dict[str, Any] = {
            "part": "snippet",
            "q": term,
            "type": "video",
            "order": "viewCount",
            "publishedAfter": published_after.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "maxResults": max_results,
        }
        if region:
            params["regionCode"] = region
        data = await self._get("/search", params)
        return data.get("items") or []

    async def video_view_counts(self, video_ids: List[str]) -> Dict[str, int]:
        """Map video id to view count.  Unknown ids are simply absent."""
        if not video_ids:
            return {}
        data = await self._get(
            "/videos", {"part": "statistics", "id": ",".join(video_ids)}
        )
        counts: Dict[str, int] = {}
        for item in data.get("items") or []:
            views = (item.get("statistics") or {}).get("viewCount")
            if views is None:
                continue
            try:
                counts[item["id"]] = int(views)
            except (TypeError, ValueError):
                logger.debug("Unparseable viewCount for %s: %r", item.get("id"), views)
        return counts
