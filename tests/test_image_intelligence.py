"""
Tests for src.agents.image_intelligence.

Covers:
    - score_image bonuses, penalties, source priority and clamping
    - provider normalisation (TMDB, Wikimedia Commons, Wikipedia, Unsplash)
    - engine selection: priority + face bonus beating a higher raw score,
      rejected candidates never selected, per-provider timeout and
      failure isolation
    - get_image_options and validate_image_url
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.agents.image_intelligence import (
    ImageIntelligenceEngine,
    ImageProvider,
    TMDBImageProvider,
    UnsplashImageProvider,
    WikimediaImageProvider,
    WikipediaImageProvider,
    score_image,
)
from src.config import ImageConfig
from src.exceptions import SourceUnavailableError
from src.models import (
    ImageCandidate,
    ImageEntityType,
    ImageFetchContext,
    ImageMetadata,
    ImageSource,
    ValidationStatus,
)
from src.tools.tmdb import TMDBClient
from src.tools.unsplash import UnsplashClient
from src.tools.wikimedia import WikimediaCommonsClient, WikipediaClient


def _candidate(source, score, status=ValidationStatus.VALID, **meta):
    return ImageCandidate(
        url=f"https://img.example/{source.value}/{score}.jpg",
        source=source,
        score=score,
        metadata=ImageMetadata(**meta),
        validation_status=status,
    )


class StaticProvider(ImageProvider):
    def __init__(self, source, candidates):
        super().__init__()
        self.source = source
        self.candidates = candidates

    async def fetch(self, context):
        return [
            ImageCandidate(c.url, c.source, c.score, c.metadata, c.validation_status)
            for c in self.candidates
        ]


class FailingProvider(ImageProvider):
    source = ImageSource.WIKIMEDIA

    async def fetch(self, context):
        raise httpx.ConnectError("connection refused")


class HangingProvider(ImageProvider):
    source = ImageSource.WIKIPEDIA

    async def fetch(self, context):
        await asyncio.sleep(5)
        return []


# =========================================================================
# score_image
# =========================================================================


def test_face_bonus_only_when_preferred():
    candidate = _candidate(ImageSource.UNSPLASH, 50, has_face=True)
    assert score_image(candidate, prefer_faces=True) == 60
    assert score_image(candidate, prefer_faces=False) == 50


def test_aspect_and_resolution_bonuses():
    candidate = _candidate(ImageSource.UNSPLASH, 50, width=1600, height=1000)
    assert score_image(candidate, prefer_faces=False) == 60


def test_low_resolution_penalty():
    candidate = _candidate(ImageSource.UNSPLASH, 50, width=400, height=400)
    assert score_image(candidate, prefer_faces=False) == 30


@pytest.mark.parametrize(
    "source, expected",
    [
        (ImageSource.TMDB, 65),
        (ImageSource.WIKIMEDIA, 60),
        (ImageSource.WIKIPEDIA, 55),
        (ImageSource.UNSPLASH, 50),
        (ImageSource.AI_GENERATED, 45),
    ],
)
def test_source_priority(source, expected):
    assert score_image(_candidate(source, 50), prefer_faces=False) == expected


def test_emotion_match_bonus():
    candidate = _candidate(ImageSource.UNSPLASH, 50, emotion_match=80)
    assert score_image(candidate, prefer_faces=False) == pytest.approx(58)


@pytest.mark.parametrize(
    "candidate",
    [
        _candidate(ImageSource.TMDB, 98, has_face=True, width=2000, height=1200, emotion_match=100),
        _candidate(ImageSource.AI_GENERATED, 3, width=100, height=100),
        _candidate(ImageSource.UNSPLASH, 0),
        _candidate(ImageSource.WIKIMEDIA, 100, width=1280, height=720),
    ],
)
def test_scores_are_bounded(candidate):
    assert 0 <= score_image(candidate, prefer_faces=True) <= 100


# =========================================================================
# Providers
# =========================================================================


@pytest.mark.asyncio
async def test_tmdb_movie_posters_and_backdrops():
    client = TMDBClient(api_key="test-key")
    posters = [
        {"file_path": f"/p{i}.jpg", "vote_average": 5.0, "width": 500, "height": 750, "aspect_ratio": 0.667}
        for i in range(4)
    ]
    backdrops = [
        {"file_path": f"/b{i}.jpg", "vote_average": 2.0, "width": 1280, "height": 720, "aspect_ratio": 1.778}
        for i in range(3)
    ]
    client.movie_images = AsyncMock(return_value={"posters": posters, "backdrops": backdrops})
    provider = TMDBImageProvider(client)

    candidates = await provider.fetch(
        ImageFetchContext(topic="Devara", entity_type=ImageEntityType.MOVIE, tmdb_id=811941)
    )

    assert len(candidates) == 5
    assert candidates[0].url == "https://image.tmdb.org/t/p/w500/p0.jpg"
    assert candidates[0].score == 92.5
    assert candidates[3].url == "https://image.tmdb.org/t/p/w1280/b0.jpg"
    assert candidates[3].score == 83.0
    assert candidates[0].metadata.license == "TMDB Terms of Use"
    assert candidates[0].metadata.source_url == "https://www.themoviedb.org/movie/811941"


@pytest.mark.asyncio
async def test_tmdb_person_profiles_have_faces():
    client = TMDBClient(api_key="test-key")
    client.person_images = AsyncMock(return_value={"profiles": [
        {"file_path": "/a.jpg", "vote_average": 4.0, "width": 600, "height": 900},
    ]})
    candidates = await TMDBImageProvider(client).fetch(
        ImageFetchContext(topic="Allu Arjun", entity_type=ImageEntityType.CELEBRITY, tmdb_id=108215)
    )
    assert [(c.score, c.metadata.has_face) for c in candidates] == [(94.0, True)]


@pytest.mark.asyncio
async def test_tmdb_name_search_without_id():
    client = TMDBClient(api_key="test-key")
    client.search = AsyncMock(return_value=[{"id": 1, "profile_path": "/ntr.jpg"}])
    candidates = await TMDBImageProvider(client).fetch(
        ImageFetchContext(topic="NTR birthday", celebrity_name="Jr NTR")
    )
    client.search.assert_awaited_once_with("person", "Jr NTR")
    assert candidates[0].score == 85
    assert candidates[0].metadata.has_face is True


@pytest.mark.asyncio
async def test_tmdb_provider_without_key_is_unavailable():
    with pytest.raises(SourceUnavailableError):
        await TMDBImageProvider(TMDBClient(api_key=None)).fetch(ImageFetchContext(topic="x"))


@pytest.mark.asyncio
async def test_wikimedia_provider_reads_license_and_author():
    client = WikimediaCommonsClient()
    client.search_files = AsyncMock(return_value=["File:Devara poster.jpg", "File:Missing.jpg"])
    client.image_info = AsyncMock(side_effect=[
        {
            "url": "https://upload.wikimedia.org/devara.jpg",
            "width": 2000,
            "height": 1300,
            "extmetadata": {
                "LicenseShortName": {"value": "CC BY-SA 4.0"},
                "Artist": {"value": "<a href=\"//commons.wikimedia.org/wiki/User:Jane\">Jane</a>"},
            },
        },
        None,
    ])

    candidates = await WikimediaImageProvider(client).fetch(ImageFetchContext(topic="Devara"))

    assert len(candidates) == 1
    meta = candidates[0].metadata
    assert candidates[0].score == 75
    assert meta.license == "CC BY-SA 4.0"
    assert meta.author == "Jane"
    assert meta.source_url == client.page_url("File:Devara poster.jpg")


@pytest.mark.asyncio
async def test_wikimedia_defaults_for_missing_metadata():
    client = WikimediaCommonsClient()
    client.search_files = AsyncMock(return_value=["File:X.jpg"])
    client.image_info = AsyncMock(return_value={"url": "https://upload.wikimedia.org/x.jpg"})
    (candidate,) = await WikimediaImageProvider(client).fetch(ImageFetchContext(topic="x"))
    assert candidate.metadata.license == "Wikimedia Commons"
    assert candidate.metadata.author == "Unknown"


@pytest.mark.asyncio
async def test_wikipedia_images_need_review():
    client = WikipediaClient()
    client.page_summary = AsyncMock(return_value={
        "originalimage": {"source": "https://upload.wikimedia.org/orig.jpg", "width": 1800, "height": 1200},
        "thumbnail": {"source": "https://upload.wikimedia.org/thumb.jpg", "width": 320, "height": 213},
        "content_urls": {"desktop": {"page": "https://en.wikipedia.org/wiki/Prabhas"}},
    })
    candidates = await WikipediaImageProvider(client).fetch(ImageFetchContext(topic="Prabhas"))
    assert [c.score for c in candidates] == [70, 65]
    assert all(c.validation_status == ValidationStatus.NEEDS_REVIEW for c in candidates)
    assert candidates[0].metadata.source_url == "https://en.wikipedia.org/wiki/Prabhas"


@pytest.mark.asyncio
async def test_wikipedia_missing_page():
    client = WikipediaClient()
    client.page_summary = AsyncMock(return_value=None)
    assert await WikipediaImageProvider(client).fetch(ImageFetchContext(topic="nope")) == []


@pytest.mark.parametrize(
    "context, query",
    [
        (ImageFetchContext(topic="IPL final", category="sports"), "cricket stadium india"),
        (ImageFetchContext(topic="Assembly", category="politics"), "indian government parliament"),
        (ImageFetchContext(topic="Devara", entity_type=ImageEntityType.MOVIE), "cinema movie theater"),
        (ImageFetchContext(topic="Hyderabad rains"), "Hyderabad rains"),
    ],
)
def test_unsplash_query(context, query):
    assert UnsplashImageProvider(UnsplashClient(access_key="k")).build_query(context) == query


@pytest.mark.asyncio
async def test_unsplash_photo_normalisation():
    client = UnsplashClient(access_key="k")
    client.search_photos = AsyncMock(return_value=[{
        "urls": {"regular": "https://images.unsplash.com/photo-1"},
        "width": 3000,
        "height": 2000,
        "user": {"name": "Ravi"},
        "links": {"html": "https://unsplash.com/photos/1"},
    }])
    (candidate,) = await UnsplashImageProvider(client).fetch(ImageFetchContext(topic="cinema"))
    assert candidate.metadata.aspect_ratio == 1.5
    assert candidate.metadata.author == "Ravi"
    assert candidate.metadata.license == "Unsplash License"
    assert candidate.score == 60


# =========================================================================
# Engine
# =========================================================================


@pytest.mark.asyncio
async def test_priority_and_face_beat_higher_resolution_stock():
    engine = ImageIntelligenceEngine(providers=[
        StaticProvider(ImageSource.TMDB, [_candidate(ImageSource.TMDB, 85, has_face=True, width=500)]),
        StaticProvider(ImageSource.UNSPLASH, [_candidate(ImageSource.UNSPLASH, 60, has_face=False, width=2000)]),
    ])

    result = await engine.select_best_image(ImageFetchContext(topic="Allu Arjun"))

    assert result.selected_image.source == ImageSource.TMDB
    assert result.selected_image.score == 100
    assert result.candidates[1].score == 65
    assert result.selection_reason == "Selected tmdb image with score 100.0"


@pytest.mark.asyncio
async def test_rejected_candidates_never_selected():
    engine = ImageIntelligenceEngine(providers=[
        StaticProvider(ImageSource.TMDB, [_candidate(ImageSource.TMDB, 95, status=ValidationStatus.REJECTED)]),
        StaticProvider(ImageSource.UNSPLASH, [_candidate(ImageSource.UNSPLASH, 40)]),
    ])
    result = await engine.select_best_image(ImageFetchContext(topic="x"))
    assert result.selected_image.source == ImageSource.UNSPLASH
    assert result.candidates[0].validation_status == ValidationStatus.REJECTED


@pytest.mark.asyncio
async def test_all_rejected_gives_no_selection():
    engine = ImageIntelligenceEngine(providers=[
        StaticProvider(ImageSource.TMDB, [_candidate(ImageSource.TMDB, 95, status=ValidationStatus.REJECTED)]),
    ])
    result = await engine.select_best_image(ImageFetchContext(topic="x"))
    assert result.selected_image is None
    assert len(result.candidates) == 1
    assert result.selection_reason == "No suitable image found"


@pytest.mark.asyncio
async def test_no_providers_no_candidates():
    result = await ImageIntelligenceEngine(providers=[]).select_best_image(ImageFetchContext(topic="x"))
    assert result.selected_image is None
    assert result.candidates == []


@pytest.mark.asyncio
async def test_hung_and_failing_providers_are_isolated():
    engine = ImageIntelligenceEngine(
        providers=[
            HangingProvider(),
            FailingProvider(),
            StaticProvider(ImageSource.UNSPLASH, [_candidate(ImageSource.UNSPLASH, 60, width=1600, height=1000)]),
        ],
        config=ImageConfig(provider_timeout_seconds=0.05),
    )
    result = await asyncio.wait_for(engine.select_best_image(ImageFetchContext(topic="x")), timeout=2)
    assert result.selected_image.source == ImageSource.UNSPLASH
    assert len(result.candidates) == 1


@pytest.mark.asyncio
async def test_get_image_options_returns_top_n():
    engine = ImageIntelligenceEngine(providers=[
        StaticProvider(ImageSource.UNSPLASH, [_candidate(ImageSource.UNSPLASH, s) for s in (10, 50, 30, 40)]),
    ])
    options = await engine.get_image_options(ImageFetchContext(topic="x", entity_type=ImageEntityType.MOVIE), count=2)
    assert [o.score for o in options] == [50, 40]


def _patched_async_client(head):
    client = MagicMock()
    client.head = head
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=client)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return patch("src.agents.image_intelligence.httpx.AsyncClient", return_value=ctx)


@pytest.mark.asyncio
async def test_validate_image_url_success():
    with _patched_async_client(AsyncMock(return_value=MagicMock(is_success=True))):
        assert await ImageIntelligenceEngine(providers=[]).validate_image_url("https://x/y.jpg") is True


@pytest.mark.asyncio
async def test_validate_image_url_network_error():
    with _patched_async_client(AsyncMock(side_effect=httpx.ConnectError("refused"))):
        assert await ImageIntelligenceEngine(providers=[]).validate_image_url("https://x/y.jpg") is False
