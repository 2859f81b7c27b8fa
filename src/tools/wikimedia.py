"""
Async clients for Wikimedia Commons and the Wikipedia REST API.

Both are keyless public APIs.  Commons is searched in the File
namespace and each hit is expanded with ``imageinfo`` (url, size and
extended license metadata); Wikipedia returns the lead image of the page
summary.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from src.utils import is_transient_http_error, with_retry

logger = logging.getLogger(__name__)

USER_AGENT = "content-intelligence/0.1 (image provider)"

_HTML_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(value: Optional[str]) -> str:
    """Remove HTML tags from a Commons metadata value."""
    if not value:
        return ""
    return _HTML_TAG_RE.sub("", value).strip()


class WikimediaCommonsClient:
    """Async wrapper around the Commons ``api.php`` endpoint."""

    API_URL: str = "https://commons.wikimedia.org/w/api.php"
    WIKI_URL: str = "https://commons.wikimedia.org/wiki"

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    @with_retry(
        max_attempts=2,
        base_delay=1.0,
        retryable_exceptions=(httpx.HTTPError,),
        retry_if=is_transient_http_error,
        operation_name="commons_query",
    )
    async def _query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {"action": "query", "format": "json"}
        query.update(params)
        async with httpx.AsyncClient(
            timeout=self.timeout, headers={"User-Agent": USER_AGENT}
        ) as client:
            response = await client.get(self.API_URL, params=query)
            response.raise_for_status()
            return response.json()

    async def search_files(self, term: str, limit: int = 3) -> List[str]:
        """Return up to ``limit`` File: titles matching ``term``."""
        data = await self._query({
            "list": "search",
            "srsearch": term,
            "srnamespace": 6,
            "srlimit": limit,
        })
        hits = (data.get("query") or {}).get("search") or []
        return [hit["title"] for hit in hits[:limit] if hit.get("title")]

    async def image_info(self, title: str) -> Optional[Dict[str, Any]]:
        """Return the first ``imageinfo`` record for a File: title."""
        data = await self._query({
            "titles": title,
            "prop": "imageinfo",
            "iiprop": "url|size|extmetadata",
        })
        pages = (data.get("query") or {}).get("pages") or {}
        for page in pages.values():
            infos = page.get("imageinfo") or []
            if infos:
                return infos[0]
        return None

    def page_url(self, title: str) -> str:
        return f"{self.WIKI_URL}/{quote(title.replace(' ', '_'))}"


class WikipediaClient:
    """Async wrapper around the Wikipedia REST ``page/summary`` endpoint."""

    REST_URL: str = "https://en.wikipedia.org/api/rest_v1"

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    async def page_summary(self, title: str) -> Optional[Dict[str, Any]]:
        """Return the page summary, or ``None`` when no page exists."""
        slug = quote(title.replace(" ", "_"), safe="")
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as client:
            response = await client.get(f"{self.REST_URL}/page/summary/{slug}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
