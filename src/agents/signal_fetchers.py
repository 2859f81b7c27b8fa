"""
Signal Fetchers -- one per external trend source.

Each fetcher turns a source-native payload into ``TrendSignal`` objects on
the shared 0-100 ``normalized_score`` scale.  The public ``fetch()`` never
raises: timeouts, missing credentials, HTTP and parse errors are logged as
warnings and the fetcher contributes an empty list, so one broken source
never fails an ingestion run.

Sources
-------
- **TMDB** (structured movie database): daily/weekly trending movies,
  upcoming releases and trending people, filtered to the target language
  and a tracked celebrity list.
- **YouTube** (video platform): recent videos for configured search terms,
  scored by view count when statistics are available.
- **Internal** (analytics store): best-performing posts and top site
  search queries of the last day.
- **News** (GNews aggregator): headlines for configured queries, stamped
  with their publication time.

Text heuristics
---------------
Sources without structured types are tagged with simple keyword-list
heuristics (``extract_main_entity``, ``extract_keywords``,
``detect_entity_type``, ``detect_category``).
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.config import IngestionConfig
from src.exceptions import SourceUnavailableError, ValidationError
from src.models import SignalSource, TrendSignal
from src.tools.gnews import GNewsClient
from src.tools.tmdb import TMDBClient
from src.tools.youtube import YouTubeClient
from src.utils import days_ago, parse_timestamp, utc_now

logger = logging.getLogger("SignalFetchers")

Clock = Callable[[], datetime]


# =========================================================================
# TEXT HEURISTICS
# =========================================================================

NOISE_WORDS: List[str] = [
    "official", "trailer", "teaser", "song", "video", "full", "hd",
    "new", "latest", "update", "news", "2024", "2025",
]
_NOISE_RE = re.compile(r"\b(?:" + "|".join(NOISE_WORDS) + r")\b", re.IGNORECASE)
_PHRASE_SPLIT_RE = re.compile(r"[-|:]")
_WHITESPACE_RE = re.compile(r"\s+")

KEYWORD_STOP_WORDS = {"the", "and", "for", "with"}

ENTITY_TYPE_RULES: List[tuple] = [
    (("trailer", "teaser"), "movie_promo"),
    (("song", "lyrical"), "music"),
    (("interview",), "interview"),
    (("review",), "review"),
]

CATEGORY_RULES: List[tuple] = [
    (("movie", "film", "cinema"), "entertainment"),
    (("politics", "election"), "politics"),
    (("cricket", "ipl"), "sports"),
]


def extract_main_entity(title: str) -> str:
    """Extract the headline subject from a video or news title.

    Noise words (``official``, ``trailer``, ...) are dropped, the rest is
    split on ``-``, ``|`` and ``:`` and the first phrase longer than two
    characters wins.  Falls back to the first 50 characters of the title.
    """
    clean = _NOISE_RE.sub(" ", title.lower())
    parts = [
        _WHITESPACE_RE.sub(" ", part).strip()
        for part in _PHRASE_SPLIT_RE.split(clean)
    ]
    parts = [part for part in parts if len(part) > 2]
    if parts:
        return parts[0]
    return title[:50].strip()


def extract_keywords(title: str) -> List[str]:
    """Words longer than three characters, minus stop words, in order."""
    seen: List[str] = []
    for word in title.lower().split():
        if len(word) > 3 and word not in KEYWORD_STOP_WORDS and word not in seen:
            seen.append(word)
    return seen


def detect_entity_type(title: str) -> str:
    lower = title.lower()
    for needles, entity_type in ENTITY_TYPE_RULES:
        if any(needle in lower for needle in needles):
            return entity_type
    return "general"


def detect_category(title: str) -> str:
    lower = title.lower()
    for needles, category in CATEGORY_RULES:
        if any(needle in lower for needle in needles):
            return category
    return "entertainment"


def capped_linear(value: Optional[float], scale: float, cap: float) -> float:
    """Map ``value`` onto ``[0, cap]``: ``value / scale * cap``, clamped."""
    if not value or value <= 0:
        return 0.0
    return min(cap, (value / scale) * cap)


def vote_sentiment(vote_average: Optional[float]) -> Optional[float]:
    """Map a 0-10 vote average onto the [-1, 1] sentiment scale."""
    if vote_average is None:
        return None
    return max(-1.0, min(1.0, (float(vote_average) - 5.0) / 5.0))


# =========================================================================
# BASE FETCHER
# =========================================================================


class SignalFetcher:
    """Base class: bounded, failure-isolated ``fetch()``.

    Subclasses implement ``_fetch()`` and may raise freely; ``fetch()``
    converts every failure into an empty result plus a warning.
    """

    source: SignalSource = SignalSource.INTERNAL

    def __init__(self, config: IngestionConfig, clock: Clock = utc_now) -> None:
        self.config = config
        self.clock = clock
        self.logger = logger
        self.last_error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.source.value

    async def fetch(self) -> List[TrendSignal]:
        """Fetch signals from the source.  Never raises.

        A failure leaves its reason in ``last_error``.
        """
        self.last_error = None
        try:
            signals = await asyncio.wait_for(
                self._fetch(), timeout=self.config.fetcher_timeout_seconds
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                "[INGEST] Source '%s' timed out after %.1fs",
                self.name,
                self.config.fetcher_timeout_seconds,
            )
            self.last_error = f"timed out after {self.config.fetcher_timeout_seconds:.1f}s"
            return []
        except SourceUnavailableError as e:
            self.logger.warning("[INGEST] Source '%s' unavailable: %s", self.name, e.reason)
            self.last_error = f"unavailable: {e.reason}"
            return []
        except Exception as e:
            self.logger.warning(
                "[INGEST] Source '%s' failed: %s: %s", self.name, type(e).__name__, e
            )
            self.last_error = f"{type(e).__name__}: {e}"
            return []

        self.logger.info("[INGEST] Source '%s' returned %d signals", self.name, len(signals))
        return signals

    async def _fetch(self) -> List[TrendSignal]:
        raise NotImplementedError

    def _make_signal(self, **fields: Any) -> Optional[TrendSignal]:
        """Build a signal, dropping items that fail model validation."""
        fields.setdefault("source", self.source)
        fields.setdefault("timestamp", self.clock())
        try:
            return TrendSignal(**fields)
        except ValidationError as e:
            self.logger.debug("[INGEST] Dropped %s item: %s", self.name, e)
            return None


# =========================================================================
# TMDB
# =========================================================================


class TMDBSignalFetcher(SignalFetcher):
    """Trending movies, upcoming releases and trending people from TMDB.

    Normalisation (capped linear on TMDB ``popularity``):
        - daily trending:  ``min(100, popularity)``
        - weekly trending: ``min(80, popularity * 0.8)``
        - upcoming:        ``min(70, popularity * 0.7)``
        - people:          ``min(100, popularity / 50 * 100)``
    """

    source = SignalSource.TMDB

    DAILY_LIMIT = 10
    WEEKLY_LIMIT = 20
    UPCOMING_LIMIT = 10
    PEOPLE_LIMIT = 15

    def __init__(
        self,
        config: IngestionConfig,
        client: Optional[TMDBClient] = None,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(config, clock)
        self.client = client or TMDBClient(timeout=config.fetcher_timeout_seconds)

    @property
    def _language(self) -> str:
        return f"{self.config.target_language}-{self.config.region}"

    async def _fetch(self) -> List[TrendSignal]:
        if not self.client.available:
            raise SourceUnavailableError(self.name, "TMDB_API_KEY not configured")

        requests = {
            "daily": self.client.trending_movies("day", language=self._language),
            "weekly": self.client.trending_movies("week", language=self._language),
            "upcoming": self.client.upcoming_movies(
                language=self._language, region=self.config.region
            ),
            "people": self.client.trending_people("week"),
        }
        results = await asyncio.gather(*requests.values(), return_exceptions=True)

        payloads: Dict[str, List[Dict[str, Any]]] = {}
        for name, result in zip(requests.keys(), results):
            if isinstance(result, BaseException):
                self.logger.warning("[INGEST] TMDB sub-request '%s' failed: %s", name, result)
                payloads[name] = []
            else:
                payloads[name] = result

        signals = self._daily_signals(payloads["daily"])
        seen_ids = {s.entity_id for s in signals}
        signals.extend(self._weekly_signals(payloads["weekly"], seen_ids))
        signals.extend(self._upcoming_signals(payloads["upcoming"]))
        signals.extend(self._people_signals(payloads["people"]))
        return signals

    def _is_target_language(self, movie: Dict[str, Any]) -> bool:
        return movie.get("original_language") == self.config.target_language

    def _daily_signals(self, movies: List[Dict[str, Any]]) -> List[TrendSignal]:
        signals: List[TrendSignal] = []
        for movie in movies[: self.DAILY_LIMIT]:
            title = movie.get("title") or ""
            localized = movie.get("original_title")
            if not (self._is_target_language(movie) or title != localized):
                continue
            popularity = float(movie.get("popularity") or 0)
            signal = self._make_signal(
                keyword=title,
                localized_keyword=localized,
                raw_score=popularity,
                normalized_score=capped_linear(popularity, 100, 100),
                velocity=1.5 if (movie.get("vote_count") or 0) > 100 else 1.0,
                category="entertainment",
                entity_type="movie",
                entity_id=str(movie.get("id")),
                sentiment=vote_sentiment(movie.get("vote_average")),
                raw_data={"tmdb_id": movie.get("id"), "endpoint": "trending/day"},
            )
            if signal:
                signals.append(signal)
        return signals

    def _weekly_signals(
        self, movies: List[Dict[str, Any]], seen_ids: set
    ) -> List[TrendSignal]:
        signals: List[TrendSignal] = []
        for movie in movies[: self.WEEKLY_LIMIT]:
            entity_id = str(movie.get("id"))
            if not self._is_target_language(movie) or entity_id in seen_ids:
                continue
            popularity = float(movie.get("popularity") or 0)
            signal = self._make_signal(
                keyword=movie.get("title") or "",
                localized_keyword=movie.get("original_title"),
                raw_score=popularity,
                normalized_score=capped_linear(popularity, 100, 80),
                category="entertainment",
                entity_type="movie",
                entity_id=entity_id,
                sentiment=vote_sentiment(movie.get("vote_average")),
                raw_data={"tmdb_id": movie.get("id"), "endpoint": "trending/week"},
            )
            if signal:
                seen_ids.add(entity_id)
                signals.append(signal)
        return signals

    def _upcoming_signals(self, movies: List[Dict[str, Any]]) -> List[TrendSignal]:
        signals: List[TrendSignal] = []
        for movie in movies[: self.UPCOMING_LIMIT]:
            if not self._is_target_language(movie) or not movie.get("title"):
                continue
            popularity = float(movie.get("popularity") or 0)
            signal = self._make_signal(
                keyword=f"{movie['title']} release",
                localized_keyword=movie.get("original_title"),
                related_keywords=["upcoming", "release date", "trailer"],
                raw_score=popularity,
                normalized_score=capped_linear(popularity, 100, 70),
                category="entertainment",
                entity_type="movie_upcoming",
                entity_id=str(movie.get("id")),
                raw_data={
                    "tmdb_id": movie.get("id"),
                    "release_date": movie.get("release_date"),
                    "endpoint": "movie/upcoming",
                },
            )
            if signal:
                signals.append(signal)
        return signals

    def _is_tracked(self, name: str) -> bool:
        lower = name.lower()
        return any(celeb.lower() in lower for celeb in self.config.tracked_celebrities)

    def _people_signals(self, people: List[Dict[str, Any]]) -> List[TrendSignal]:
        signals: List[TrendSignal] = []
        for person in people[: self.PEOPLE_LIMIT]:
            name = person.get("name") or ""
            if not name or not self._is_tracked(name):
                continue
            popularity = float(person.get("popularity") or 0)
            department = person.get("known_for_department")
            signal = self._make_signal(
                keyword=name,
                raw_score=popularity,
                normalized_score=capped_linear(popularity, 50, 100),
                category="entertainment",
                entity_type="director" if department == "Directing" else "actor",
                entity_id=str(person.get("id")),
                raw_data={"tmdb_id": person.get("id"), "endpoint": "trending/person"},
            )
            if signal:
                signals.append(signal)
        return signals


# =========================================================================
# YOUTUBE
# =========================================================================


class YouTubeSignalFetcher(SignalFetcher):
    """Recent videos for configured search terms.

    ``normalized_score = min(100, views / 1_000_000 * 100)`` when view
    statistics are available, else a flat default of 50.
    """

    source = SignalSource.YOUTUBE

    DEFAULT_SCORE = 50.0
    VIEWS_FOR_FULL_SCORE = 1_000_000

    def __init__(
        self,
        config: IngestionConfig,
        client: Optional[YouTubeClient] = None,
        clock: Clock = utc_now,
        use_view_counts: bool = True,
    ) -> None:
        super().__init__(config, clock)
        self.client = client or YouTubeClient(timeout=config.fetcher_timeout_seconds)
        self.use_view_counts = use_view_counts

    async def _fetch(self) -> List[TrendSignal]:
        if not self.client.available:
            raise SourceUnavailableError(self.name, "YOUTUBE_API_KEY not configured")

        published_after = days_ago(self.config.video_lookback_days, self.clock())
        items: List[Dict[str, Any]] = []
        for term in self.config.video_search_terms:
            try:
                items.extend(
                    await self.client.search_videos(
                        term,
                        published_after,
                        max_results=self.config.max_results_per_query,
                        region=self.config.region,
                    )
                )
            except Exception as e:
                self.logger.warning("[INGEST] YouTube search '%s' failed: %s", term, e)

        views = await self._view_counts(items)

        signals: List[TrendSignal] = []
        for item in items:
            snippet = item.get("snippet") or {}
            title = html.unescape(snippet.get("title") or "")
            keyword = extract_main_entity(title) if title else ""
            if not keyword:
                continue
            video_id = (item.get("id") or {}).get("videoId")
            view_count = views.get(video_id) if video_id else None
            if view_count is None:
                raw_score, normalized = self.DEFAULT_SCORE, self.DEFAULT_SCORE
            else:
                raw_score = float(view_count)
                normalized = capped_linear(view_count, self.VIEWS_FOR_FULL_SCORE, 100)
            signal = self._make_signal(
                keyword=keyword,
                related_keywords=extract_keywords(title),
                raw_score=raw_score,
                normalized_score=normalized,
                category="entertainment",
                entity_type=detect_entity_type(title),
                raw_data={
                    "video_id": video_id,
                    "title": title,
                    "channel_title": snippet.get("channelTitle"),
                    "published_at": snippet.get("publishedAt"),
                },
            )
            if signal:
                signals.append(signal)
        return signals

    async def _view_counts(self, items: List[Dict[str, Any]]) -> Dict[str, int]:
        if not self.use_view_counts or not items:
            return {}
        video_ids = [
            (item.get("id") or {}).get("videoId")
            for item in items
            if (item.get("id") or {}).get("videoId")
        ]
        try:
            return await self.client.video_view_counts(video_ids[:50])
        except Exception as e:
            self.logger.warning("[INGEST] YouTube statistics lookup failed: %s", e)
            return {}


# =========================================================================
# INTERNAL ANALYTICS
# =========================================================================


class InternalSignalFetcher(SignalFetcher):
    """Best-performing posts and top search queries from our own datastore.

    - content performance: ``min(100, views / 1000 * 100)``,
      ``velocity = engagement_score``
    - search queries: ``min(100, count * 10)``
    """

    source = SignalSource.INTERNAL

    LOOKBACK_DAYS = 1
    LIMIT = 20

    def __init__(self, config: IngestionConfig, db: Any, clock: Clock = utc_now) -> None:
        super().__init__(config, clock)
        self.db = db

    async def _fetch(self) -> List[TrendSignal]:
        since = days_ago(self.LOOKBACK_DAYS, self.clock())
        performance, searches = await asyncio.gather(
            self.db.get_top_content_performance(since, limit=self.LIMIT),
            self.db.get_top_search_queries(since, limit=self.LIMIT),
        )

        signals: List[TrendSignal] = []
        for row in performance:
            post = row.get("posts") or {}
            title = post.get("title")
            if not title:
                continue
            views = float(row.get("views") or 0)
            signal = self._make_signal(
                keyword=extract_main_entity(title),
                raw_score=views,
                normalized_score=capped_linear(views, 1000, 100),
                velocity=float(row.get("engagement_score") or 1.0),
                category=post.get("category"),
                entity_type="trending_topic",
                raw_data={"post_id": row.get("post_id"), "views": views},
            )
            if signal:
                signals.append(signal)

        for row in searches:
            count = float(row.get("count") or 0)
            signal = self._make_signal(
                keyword=row.get("query") or "",
                raw_score=count,
                normalized_score=capped_linear(count, 10, 100),
                category="user_interest",
                entity_type="search_query",
            )
            if signal:
                signals.append(signal)
        return signals


# =========================================================================
# NEWS
# =========================================================================


class NewsSignalFetcher(SignalFetcher):
    """Headlines for configured queries; flat score of 60."""

    source = SignalSource.NEWS_API

    SCORE = 60.0
    MIN_ENTITY_LENGTH = 3

    def __init__(
        self,
        config: IngestionConfig,
        client: Optional[GNewsClient] = None,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(config, clock)
        self.client = client or GNewsClient(timeout=config.fetcher_timeout_seconds)

    async def _fetch(self) -> List[TrendSignal]:
        if not self.client.available:
            raise SourceUnavailableError(self.name, "GNEWS_API_KEY not configured")

        signals: List[TrendSignal] = []
        for query in self.config.news_queries:
            try:
                articles = await self.client.search(
                    query,
                    country=self.config.region.lower(),
                    max_results=self.config.max_results_per_query,
                )
            except Exception as e:
                self.logger.warning("[INGEST] News query '%s' failed: %s", query, e)
                continue

            for article in articles:
                title = article.get("title") or ""
                entity = extract_main_entity(title) if title else ""
                if len(entity) <= self.MIN_ENTITY_LENGTH:
                    continue
                published = parse_timestamp(article.get("publishedAt")) or self.clock()
                signal = self._make_signal(
                    keyword=entity,
                    related_keywords=extract_keywords(title),
                    raw_score=self.SCORE,
                    normalized_score=self.SCORE,
                    category=detect_category(title),
                    entity_type=detect_entity_type(title),
                    timestamp=published,
                    raw_data={
                        "title": title,
                        "source": (article.get("source") or {}).get("name"),
                        "url": article.get("url"),
                        "published_at": article.get("publishedAt"),
                    },
                )
                if signal:
                    signals.append(signal)
        return signals


# =========================================================================
# MODULE-LEVEL FACTORY
# =========================================================================


def create_signal_fetchers(
    config: IngestionConfig, db: Any, clock: Clock = utc_now
) -> List[SignalFetcher]:
    """Build the default fetcher set with clients read from the environment."""
    return [
        TMDBSignalFetcher(config, clock=clock),
        YouTubeSignalFetcher(config, clock=clock),
        InternalSignalFetcher(config, db, clock=clock),
        NewsSignalFetcher(config, clock=clock),
    ]
