"""
Image Intelligence Engine -- picks the best illustrative image for a topic.

Every configured provider is queried concurrently, each under its own
timeout; a provider that errors or hangs contributes zero candidates and
never blocks the others.  Providers only supply a provisional base score;
``score_image`` recomputes every candidate's score with one uniform
function, and the best non-rejected candidate wins.

Provider priority (highest first)
---------------------------------
TMDB (structured metadata) -> Wikimedia Commons (curated media) ->
Wikipedia (encyclopedic, license needs review) -> Unsplash (stock photos)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import httpx

from src.config import ImageConfig
from src.exceptions import SourceUnavailableError
from src.models import (
    ImageCandidate,
    ImageEntityType,
    ImageFetchContext,
    ImageMetadata,
    ImageSelectionResult,
    ImageSource,
    ValidationStatus,
)
from src.tools.tmdb import TMDBClient
from src.tools.unsplash import UnsplashClient
from src.tools.wikimedia import WikimediaCommonsClient, WikipediaClient, strip_html

logger = logging.getLogger("ImageIntelligence")

# =========================================================================
# SCORING
# =========================================================================

SOURCE_PRIORITY: Dict[ImageSource, float] = {
    ImageSource.TMDB: 15,
    ImageSource.WIKIMEDIA: 10,
    ImageSource.WIKIPEDIA: 5,
    ImageSource.UNSPLASH: 0,
    ImageSource.PEXELS: 0,
    ImageSource.AI_GENERATED: -5,
}

FACE_BONUS = 10.0
ASPECT_BONUS = 5.0
ASPECT_RANGE = (1.3, 1.8)
HIGH_RES_WIDTH = 1200
HIGH_RES_BONUS = 5.0
LOW_RES_WIDTH = 500
LOW_RES_PENALTY = 20.0
EMOTION_WEIGHT = 0.1


def score_image(candidate: ImageCandidate, prefer_faces: bool) -> float:
    """Final score for a candidate, clamped to ``[0, 100]``.

    Starts from the provider's base score and applies, in order: face
    bonus (when faces are preferred), landscape aspect bonus, resolution
    bonus/penalty, source priority and emotion-match bonus.
    """
    meta = candidate.metadata
    score = candidate.score

    if prefer_faces and meta.has_face:
        score += FACE_BONUS

    aspect = meta.effective_aspect_ratio
    if aspect is not None and ASPECT_RANGE[0] <= aspect <= ASPECT_RANGE[1]:
        score += ASPECT_BONUS

    if meta.width:
        if meta.width >= HIGH_RES_WIDTH:
            score += HIGH_RES_BONUS
        elif meta.width < LOW_RES_WIDTH:
            score -= LOW_RES_PENALTY

    score += SOURCE_PRIORITY.get(candidate.source, 0)

    if meta.emotion_match:
        score += meta.emotion_match * EMOTION_WEIGHT

    return max(0.0, min(100.0, score))


# =========================================================================
# PROVIDERS
# =========================================================================


class ImageProvider:
    """Base provider.  ``fetch`` may raise; the engine isolates failures."""

    source: ImageSource = ImageSource.UNSPLASH

    def __init__(self, limit: int = 3) -> None:
        self.limit = limit

    async def fetch(self, context: ImageFetchContext) -> List[ImageCandidate]:
        raise NotImplementedError


class TMDBImageProvider(ImageProvider):
    """Posters/backdrops for movies, profiles for people, else a name search."""

    source = ImageSource.TMDB
    LICENSE = "TMDB Terms of Use"
    BACKDROP_LIMIT = 2

    def __init__(self, client: Optional[TMDBClient] = None, limit: int = 3) -> None:
        super().__init__(limit)
        self.client = client or TMDBClient()

    async def fetch(self, context: ImageFetchContext) -> List[ImageCandidate]:
        if not self.client.available:
            raise SourceUnavailableError(self.source.value, "TMDB_API_KEY not configured")

        if context.tmdb_id and context.entity_type == ImageEntityType.MOVIE:
            return await self._movie_images(context.tmdb_id)
        if context.tmdb_id and context.entity_type == ImageEntityType.CELEBRITY:
            return await self._person_images(context.tmdb_id)
        if not context.tmdb_id and (context.celebrity_name or context.movie_title):
            return await self._search(context)
        return []

    def _candidate(
        self, image: Dict, size: str, base: float, source_url: str, has_face: Optional[bool] = None
    ) -> ImageCandidate:
        return ImageCandidate(
            url=self.client.image_url(image["file_path"], size),
            source=self.source,
            score=base,
            metadata=ImageMetadata(
                width=image.get("width"),
                height=image.get("height"),
                aspect_ratio=image.get("aspect_ratio"),
                has_face=has_face,
                license=self.LICENSE,
                source_url=source_url,
            ),
        )

    async def _movie_images(self, movie_id: int) -> List[ImageCandidate]:
        data = await self.client.movie_images(movie_id)
        page = f"{self.client.SITE_URL}/movie/{movie_id}"
        candidates = [
            self._candidate(p, "w500", 85 + (p.get("vote_average") or 0) * 1.5, page)
            for p in (data.get("posters") or [])[: self.limit]
            if p.get("file_path")
        ]
        candidates.extend(
            self._candidate(b, "w1280", 80 + (b.get("vote_average") or 0) * 1.5, page)
            for b in (data.get("backdrops") or [])[: self.BACKDROP_LIMIT]
            if b.get("file_path")
        )
        return candidates

    async def _person_images(self, person_id: int) -> List[ImageCandidate]:
        data = await self.client.person_images(person_id)
        page = f"{self.client.SITE_URL}/person/{person_id}"
        return [
            self._candidate(p, "w500", 90 + (p.get("vote_average") or 0), page, has_face=True)
            for p in (data.get("profiles") or [])[: self.limit]
            if p.get("file_path")
        ]

    async def _search(self, context: ImageFetchContext) -> List[ImageCandidate]:
        kind = "person" if context.celebrity_name else "movie"
        results = await self.client.search(kind, context.celebrity_name or context.movie_title)
        if not results:
            return []
        first = results[0]
        path = first.get("profile_path") or first.get("poster_path")
        if not path:
            return []
        return [
            ImageCandidate(
                url=self.client.image_url(path, "w500"),
                source=self.source,
                score=85,
                metadata=ImageMetadata(
                    has_face=bool(first.get("profile_path")),
                    license=self.LICENSE,
                ),
            )
        ]


class WikimediaImageProvider(ImageProvider):
    """Files from Wikimedia Commons with license and author metadata."""

    source = ImageSource.WIKIMEDIA
    BASE_SCORE = 75

    def __init__(self, client: Optional[WikimediaCommonsClient] = None, limit: int = 3) -> None:
        super().__init__(limit)
        self.client = client or WikimediaCommonsClient()

    async def fetch(self, context: ImageFetchContext) -> List[ImageCandidate]:
        titles = await self.client.search_files(context.search_term, limit=self.limit)
        infos = await asyncio.gather(
            *(self.client.image_info(title) for title in titles), return_exceptions=True
        )

        candidates: List[ImageCandidate] = []
        for title, info in zip(titles, infos):
            if isinstance(info, BaseException):
                logger.debug("[IMAGE] Commons imageinfo failed for %s: %s", title, info)
                continue
            if not info or not info.get("url"):
                continue
            ext = info.get("extmetadata") or {}
            license_name = (ext.get("LicenseShortName") or {}).get("value") or "Wikimedia Commons"
            author = strip_html((ext.get("Artist") or {}).get("value")) or "Unknown"
            candidates.append(ImageCandidate(
                url=info["url"],
                source=self.source,
                score=self.BASE_SCORE,
                metadata=ImageMetadata(
                    width=info.get("width"),
                    height=info.get("height"),
                    license=license_name,
                    author=author,
                    source_url=self.client.page_url(title),
                ),
            ))
        return candidates


class WikipediaImageProvider(ImageProvider):
    """Lead image of the Wikipedia page; always flagged for license review."""

    source = ImageSource.WIKIPEDIA
    LICENSE = "Wikipedia (check individual license)"

    def __init__(self, client: Optional[WikipediaClient] = None) -> None:
        super().__init__(limit=2)
        self.client = client or WikipediaClient()

    async def fetch(self, context: ImageFetchContext) -> List[ImageCandidate]:
        summary = await self.client.page_summary(context.search_term)
        if not summary:
            return []

        page_url = ((summary.get("content_urls") or {}).get("desktop") or {}).get("page")
        candidates: List[ImageCandidate] = []
        for key, base in (("originalimage", 70), ("thumbnail", 65)):
            image = summary.get(key) or {}
            if not image.get("source"):
                continue
            candidates.append(ImageCandidate(
                url=image["source"],
                source=self.source,
                score=base,
                metadata=ImageMetadata(
                    width=image.get("width"),
                    height=image.get("height"),
                    license=self.LICENSE,
                    source_url=page_url,
                ),
                validation_status=ValidationStatus.NEEDS_REVIEW,
            ))
        return candidates


class UnsplashImageProvider(ImageProvider):
    """Generic stock photos; lowest-priority fallback."""

    source = ImageSource.UNSPLASH
    BASE_SCORE = 60

    CATEGORY_QUERIES: Dict[str, str] = {
        "sports": "cricket stadium india",
        "politics": "indian government parliament",
    }
    MOVIE_QUERY = "cinema movie theater"

    def __init__(self, client: Optional[UnsplashClient] = None, limit: int = 3) -> None:
        super().__init__(limit)
        self.client = client or UnsplashClient()

    def build_query(self, context: ImageFetchContext) -> str:
        if context.entity_type == ImageEntityType.MOVIE:
            return self.MOVIE_QUERY
        return self.CATEGORY_QUERIES.get(context.category or "", context.topic)

    async def fetch(self, context: ImageFetchContext) -> List[ImageCandidate]:
        if not self.client.available:
            raise SourceUnavailableError(self.source.value, "UNSPLASH_ACCESS_KEY not configured")

        photos = await self.client.search_photos(self.build_query(context), per_page=self.limit)
        candidates: List[ImageCandidate] = []
        for photo in photos:
            url = (photo.get("urls") or {}).get("regular")
            if not url:
                continue
            width, height = photo.get("width"), photo.get("height")
            candidates.append(ImageCandidate(
                url=url,
                source=self.source,
                score=self.BASE_SCORE,
                metadata=ImageMetadata(
                    width=width,
                    height=height,
                    aspect_ratio=(width / height) if width and height else None,
                    license="Unsplash License",
                    author=(photo.get("user") or {}).get("name"),
                    source_url=(photo.get("links") or {}).get("html"),
                ),
            ))
        return candidates


def default_providers(config: ImageConfig) -> List[ImageProvider]:
    """Providers in priority order, with clients read from the environment."""
    limit = config.candidates_per_provider
    timeout = config.provider_timeout_seconds
    return [
        TMDBImageProvider(TMDBClient(timeout=timeout), limit=limit),
        WikimediaImageProvider(WikimediaCommonsClient(timeout=timeout), limit=limit),
        WikipediaImageProvider(WikipediaClient(timeout=timeout)),
        UnsplashImageProvider(UnsplashClient(timeout=timeout), limit=limit),
    ]


# =========================================================================
# ENGINE
# =========================================================================


class ImageIntelligenceEngine:
    """Runs the provider cascade and selects the best image.

    Args:
        providers: Providers in priority order.  Defaults to
            :func:`default_providers`.
        config: Timeouts and per-provider limits.
    """

    def __init__(
        self,
        providers: Optional[Sequence[ImageProvider]] = None,
        config: Optional[ImageConfig] = None,
    ) -> None:
        self.config = config or ImageConfig()
        self.providers = list(providers) if providers is not None else default_providers(self.config)

    async def _fetch_from(
        self, provider: ImageProvider, context: ImageFetchContext
    ) -> List[ImageCandidate]:
        name = provider.source.value
        try:
            return await asyncio.wait_for(
                provider.fetch(context), timeout=self.config.provider_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "[IMAGE] Provider '%s' timed out after %.1fs",
                name,
                self.config.provider_timeout_seconds,
            )
        except SourceUnavailableError as e:
            logger.info("[IMAGE] Provider '%s' unavailable: %s", name, e.reason)
        except Exception as e:
            logger.warning("[IMAGE] Provider '%s' failed: %s: %s", name, type(e).__name__, e)
        return []

    async def collect_candidates(self, context: ImageFetchContext) -> List[ImageCandidate]:
        """Query every provider concurrently and rescore all candidates.

        Returns:
            All candidates (including rejected ones), best first.  Ties
            keep provider priority order.
        """
        batches = await asyncio.gather(
            *(self._fetch_from(p, context) for p in self.providers)
        )
        candidates = [c for batch in batches for c in batch]

        prefer_faces = context.prefer_faces
        for candidate in candidates:
            candidate.score = score_image(candidate, prefer_faces)

        candidates.sort(key=lambda c: -c.score)
        return candidates

    async def select_best_image(self, context: ImageFetchContext) -> ImageSelectionResult:
        """Pick the best non-rejected candidate, or ``None`` when there is none."""
        candidates = await self.collect_candidates(context)
        selected = next(
            (c for c in candidates if c.validation_status != ValidationStatus.REJECTED),
            None,
        )
        if selected is not None:
            reason = f"Selected {selected.source.value} image with score {selected.score:.1f}"
        else:
            reason = "No suitable image found"

        logger.info(
            "[IMAGE] '%s': %d candidates; %s", context.topic[:60], len(candidates), reason
        )
        return ImageSelectionResult(
            selected_image=selected, candidates=candidates, selection_reason=reason
        )

    async def get_image_options(
        self, context: ImageFetchContext, count: int = 3
    ) -> List[ImageCandidate]:
        """Top ``count`` candidates for variant selection."""
        result = await self.select_best_image(context)
        return result.candidates[:count]

    async def validate_image_url(self, url: str) -> bool:
        """HEAD-check that an image URL is reachable."""
        try:
            async with httpx.AsyncClient(
                timeout=self.config.validate_timeout_seconds, follow_redirects=True
            ) as client:
                response = await client.head(url)
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug("[IMAGE] HEAD %s failed: %s", url, e)
            return False
