"""
Tests for src.agents.orchestrator -- the trigger surface.

Covers:
    - full ingestion: per-source counts (including a failed source),
      storage, pruning and clustering
    - stage timeouts and error classification
    - fatigue run
    - validation batch: explicit and default topics, persistence with the
      slug-collision retry, persist=False
    - production wiring refuses to start without a reachable database
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.agents.content_synthesizer import ContentSynthesizer
from src.agents.orchestrator import ContentIntelligencePipeline, build_pipeline
from src.agents.signal_fetchers import SignalFetcher
from src.config import IngestionConfig, Settings
from src.exceptions import DatabaseError, PipelineFatalError, StageTimeoutError
from src.logging import AgentLogger, LogComponent, LogLevel
from src.models import AIGeneration, ContentDraft, ContentSource, SignalSource, TrendSignal

BODY = "తెలుగు సినిమా వార్త. " * 30


class StaticFetcher(SignalFetcher):
    def __init__(self, source, keywords, now, fail=False):
        super().__init__(IngestionConfig())
        self.source = source
        self.keywords = keywords
        self.now = now
        self.fail = fail

    async def _fetch(self):
        if self.fail:
            raise RuntimeError("503 from upstream")
        return [
            TrendSignal(
                source=self.source,
                keyword=k,
                raw_score=70,
                normalized_score=70,
                timestamp=self.now - timedelta(minutes=i),
            )
            for i, k in enumerate(self.keywords)
        ]


def _capability(title="Story"):
    capability = MagicMock()
    capability.generate_content = AsyncMock(return_value=AIGeneration(
        text=f'{{"title": "{title}", "body": "{BODY}", "tags": ["tollywood"], "confidence": 0.8}}'
    ))
    return capability


@pytest.fixture
def agent_logger(tmp_path):
    return AgentLogger(log_dir=str(tmp_path))


def _pipeline(fake_db, agent_logger, clock, fetchers=(), synthesizer=None, settings=None):
    return ContentIntelligencePipeline(
        db=fake_db,
        settings=settings or Settings(),
        agent_logger=agent_logger,
        fetchers=list(fetchers),
        synthesizer=synthesizer,
        clock=clock,
    )


# =========================================================================
# Ingestion
# =========================================================================


@pytest.mark.asyncio
async def test_full_ingestion_counts_and_clusters(fake_db, agent_logger, clock, sample_utc_now):
    fetchers = [
        StaticFetcher(SignalSource.TMDB, ["Pushpa 2", "Devara"], sample_utc_now),
        StaticFetcher(SignalSource.YOUTUBE, ["pushpa 2!!"], sample_utc_now),
        StaticFetcher(SignalSource.NEWS_API, [], sample_utc_now, fail=True),
    ]
    pipeline = _pipeline(fake_db, agent_logger, clock, fetchers)

    result = await pipeline.run_full_ingestion()

    assert result.source_counts == {"tmdb": 2, "youtube": 1, "internal": 0, "news": 0}
    assert result.stored == 3
    assert result.clusters == 2
    assert fake_db.clusters["pushpa 2"]["trend_direction"] == "spiking"
    assert result.completed_at == sample_utc_now
    messages = [e.message for e in agent_logger.get_recent(run_id=result.run_id)]
    assert "Stage completed: cluster (success)" in messages

    (failure,) = agent_logger.get_recent(component=LogComponent.SIGNAL_FETCHER, level=LogLevel.WARNING)
    assert failure.message == "Source 'news_api' contributed no signals"
    assert failure.data == {"error": "RuntimeError: 503 from upstream"}
    assert failure.run_id == result.run_id


@pytest.mark.asyncio
async def test_ingestion_prunes_old_signals(fake_db, agent_logger, clock, sample_utc_now):
    fetchers = [StaticFetcher(SignalSource.TMDB, ["Kalki"], sample_utc_now - timedelta(days=10))]

    result = await _pipeline(fake_db, agent_logger, clock, fetchers).run_full_ingestion()

    assert result.stored == 1
    assert fake_db.signals == {}
    assert result.clusters == 0


@pytest.mark.asyncio
async def test_stage_timeout(fake_db, agent_logger, clock, sample_utc_now):
    settings = Settings()
    settings.stage_timeouts["cluster"] = 0.05
    pipeline = _pipeline(fake_db, agent_logger, clock,
                         [StaticFetcher(SignalSource.TMDB, ["OG"], sample_utc_now)], settings=settings)

    async def hang():
        await asyncio.sleep(5)

    pipeline.clustering.run = hang

    with pytest.raises(StageTimeoutError) as exc_info:
        await pipeline.run_full_ingestion()

    assert exc_info.value.stage == "cluster"
    messages = [e.message for e in agent_logger.get_recent()]
    assert "Stage completed: cluster (timeout)" in messages
    assert "Pipeline run completed: failed" in messages


@pytest.mark.asyncio
async def test_database_error_propagates_unchanged(fake_db, agent_logger, clock, sample_utc_now):
    pipeline = _pipeline(fake_db, agent_logger, clock,
                         [StaticFetcher(SignalSource.TMDB, ["OG"], sample_utc_now)])
    pipeline.store.store = AsyncMock(side_effect=DatabaseError("connection refused"))

    with pytest.raises(DatabaseError):
        await pipeline.run_full_ingestion()


@pytest.mark.asyncio
async def test_unexpected_error_becomes_fatal(fake_db, agent_logger, clock, sample_utc_now):
    pipeline = _pipeline(fake_db, agent_logger, clock,
                         [StaticFetcher(SignalSource.TMDB, ["OG"], sample_utc_now)])
    pipeline.store.store = AsyncMock(side_effect=KeyError("normalized_score"))

    with pytest.raises(PipelineFatalError, match="Stage 'store' failed unexpectedly"):
        await pipeline.run_full_ingestion()


# =========================================================================
# Fatigue
# =========================================================================


@pytest.mark.asyncio
async def test_run_fatigue(fake_db, agent_logger, clock, sample_utc_now):
    fake_db.clusters["og"] = {
        "cluster_name": "og",
        "primary_keyword": "OG",
        "keywords": ["OG"],
        "avg_score": 80,
        "total_signals": 2,
        "trend_direction": "rising",
        "updated_at": sample_utc_now.isoformat(),
    }

    report = await _pipeline(fake_db, agent_logger, clock).run_fatigue()

    assert report.rising == ["OG"]
    assert report.underserved == ["OG"]
    assert fake_db.clusters["og"]["times_covered"] == 0


@pytest.mark.asyncio
async def test_fatigue_report_failure_is_staged(fake_db, agent_logger, clock):
    pipeline = _pipeline(fake_db, agent_logger, clock)
    pipeline.fatigue.report = AsyncMock(side_effect=KeyError("saturation_score"))

    with pytest.raises(PipelineFatalError, match="Stage 'fatigue' failed unexpectedly"):
        await pipeline.run_fatigue()

    messages = [e.message for e in agent_logger.get_recent()]
    assert "Stage completed: fatigue (failed)" in messages
    assert "Pipeline run completed: failed" in messages


# =========================================================================
# Validation batch
# =========================================================================


@pytest.mark.asyncio
async def test_validation_batch_persists_with_slug_retry(fake_db, agent_logger, clock):
    synthesizer = ContentSynthesizer(capability=_capability(), clock=clock)
    pipeline = _pipeline(fake_db, agent_logger, clock, synthesizer=synthesizer)

    run = await pipeline.run_validation_batch(["Devara", "Kalki"])

    assert run.batch.summary.success == 2
    assert run.insert.ok
    assert run.insert.attempts == 2
    slugs = [p["slug"] for p in fake_db.posts]
    assert len(set(slugs)) == 2
    assert all(s.startswith("story-") for s in slugs)
    assert all("confidence" not in p for p in fake_db.posts)
    payload = run.to_dict()
    assert payload["inserted"] == 2
    assert payload["persist_error"] is None


@pytest.mark.asyncio
async def test_validation_batch_without_persist(fake_db, agent_logger, clock):
    synthesizer = ContentSynthesizer(capability=_capability(), clock=clock)
    run = await _pipeline(fake_db, agent_logger, clock, synthesizer=synthesizer).run_validation_batch(
        ["Devara"], persist=False
    )
    assert run.insert is None
    assert fake_db.posts == []


@pytest.mark.asyncio
async def test_validation_batch_rejects_fallback(fake_db, agent_logger, clock):
    run = await _pipeline(fake_db, agent_logger, clock).run_validation_batch(["Hyderabad rains"])

    assert run.batch.summary.failed == 1
    assert run.insert is None
    assert "Fallback template content is not accepted for publication" in run.batch.failed[0].errors

    (rejected,) = agent_logger.get_recent(component=LogComponent.VALIDATION, level=LogLevel.WARNING)
    assert rejected.message == "Topic rejected"
    assert rejected.topic == "Hyderabad rains"
    (fallback,) = agent_logger.get_recent(component=LogComponent.SYNTHESIZER)
    assert fallback.data == {"confidence": 0.3}
    assert agent_logger.get_recent()[-1].topic is None


@pytest.mark.asyncio
async def test_validation_batch_defaults_to_unsaturated_trending(fake_db, agent_logger, clock, sample_utc_now):
    def cluster(key, avg, saturated=False):
        return {
            "cluster_name": key,
            "primary_keyword": key.title(),
            "keywords": [key],
            "avg_score": avg,
            "total_signals": 1,
            "trend_direction": "rising",
            "is_saturated": saturated,
            "category": "movies",
            "updated_at": sample_utc_now.isoformat(),
        }

    fake_db.clusters = {
        "pushpa 2": cluster("pushpa 2", 95, saturated=True),
        "devara": cluster("devara", 80),
        "og": cluster("og", 70),
        "kalki": cluster("kalki", 60),
    }
    seen = []

    class RecordingSynthesizer:
        async def synthesize(self, topic):
            seen.append((topic.title, topic.category))
            return ContentDraft(
                topic=topic.title, title=topic.title, body=BODY, tags=[],
                slug=topic.title.lower(), confidence=0.9, source=ContentSource.AI,
            )

    pipeline = _pipeline(fake_db, agent_logger, clock, synthesizer=RecordingSynthesizer())
    run = await pipeline.run_validation_batch(limit=2, persist=False)

    assert seen == [("Devara", "movies"), ("Og", "movies")]
    assert run.batch.summary.total == 2


@pytest.mark.asyncio
async def test_validation_batch_truncates_explicit_topics(fake_db, agent_logger, clock):
    run = await _pipeline(fake_db, agent_logger, clock).run_validation_batch(
        [f"Topic {i}" for i in range(8)], limit=3, persist=False
    )
    assert run.batch.summary.total == 3


# =========================================================================
# Production wiring
# =========================================================================


@pytest.mark.asyncio
async def test_build_pipeline_fails_fast_without_database():
    db = MagicMock()
    db.ping = AsyncMock(side_effect=DatabaseError("Database unreachable: connection refused"))

    with patch("src.agents.orchestrator.SupabaseDB.create", AsyncMock(return_value=db)):
        with pytest.raises(DatabaseError, match="unreachable"):
            await build_pipeline(Settings())

    db.ping.assert_awaited_once()
