"""
Async Unsplash photo search client (generic stock-photo provider).
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from src.exceptions import SourceUnavailableError
from src.utils import is_transient_http_error, with_retry

logger = logging.getLogger(__name__)


class UnsplashClient:
    """Async wrapper around ``/search/photos``.

    Args:
        access_key: Unsplash access key.  Falls back to
            ``UNSPLASH_ACCESS_KEY``.
    """

    BASE_URL: str = "https://api.unsplash.com"

    def __init__(self, access_key: Optional[str] = None, timeout: float = 10.0) -> None:
        self.access_key: str = access_key or os.environ.get("UNSPLASH_ACCESS_KEY", "")
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.access_key)

    @with_retry(
        max_attempts=2,
        base_delay=1.0,
        retryable_exceptions=(httpx.HTTPError,),
        retry_if=is_transient_http_error,
        operation_name="unsplash_search",
    )
    async def search_photos(self, query: str, per_page: int = 3) -> List[Dict[str, Any]]:
        if not self.access_key:
            raise SourceUnavailableError("unsplash", "UNSPLASH_ACCESS_KEY not configured")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.BASE_URL}/search/photos",
                params={"query": query, "per_page": per_page},
                headers={"Authorization": f"Client-ID {self.access_key}"},
            )
            response.raise_for_status()
            data = response.json()
        return data.get("results") or []
