"""
Pipeline Orchestrator -- the trigger surface for schedulers and admin tools.

Three runs are exposed:

    run_full_ingestion   fetch (fan-out) -> store -> prune -> cluster
    run_fatigue          recompute saturation -> fatigue buckets
    run_validation_batch synthesize + validate topics -> persist drafts

Key design decisions
--------------------
- **Injected collaborators**: the data-access object, fetchers, synthesizer
  and structured logger are passed in; ``build_pipeline`` wires the
  production set from settings and owns their lifecycle.
- **Fan-out / fan-in**: every fetcher of an ingestion run is dispatched
  concurrently and the stage waits for all of them to settle.  A failed
  source contributes zero signals.
- **Stage timeouts**: each stage runs under ``asyncio.wait_for`` with the
  configured limit and raises ``StageTimeoutError`` when exceeded.
- **Structured results**: partial failures never raise; every run returns
  counts and outcomes.  Only total inability to run (e.g. no database)
  surfaces as an exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from src.agents.clustering import ClusteringEngine
from src.agents.content_synthesizer import ContentSynthesizer, create_capability
from src.agents.fatigue import FatigueScorer
from src.agents.image_intelligence import ImageIntelligenceEngine
from src.agents.signal_fetchers import SignalFetcher, create_signal_fetchers
from src.agents.validation_pipeline import ValidationPipeline
from src.config import Settings, get_settings
from src.database import SupabaseDB
from src.draft_persistence import DraftPersistenceAdapter
from src.exceptions import (
    ConfigurationError,
    DatabaseError,
    IntelligenceError,
    PipelineFatalError,
    StageTimeoutError,
)
from src.logging import AgentLogger, LogComponent, LogLevel, PipelineRunLogger
from src.models import (
    BatchResult,
    ContentSource,
    FatigueReport,
    IngestionResult,
    InsertResult,
    SignalSource,
    Topic,
    TopicCluster,
    TrendSignal,
)
from src.reporting import ReportingService
from src.signal_store import SignalStore
from src.utils import generate_id, utc_now

logger = logging.getLogger("Orchestrator")

T = TypeVar("T")

# Keys of the per-source counts returned by an ingestion run
SOURCE_COUNT_KEYS: Dict[SignalSource, str] = {
    SignalSource.TMDB: "tmdb",
    SignalSource.YOUTUBE: "youtube",
    SignalSource.INTERNAL: "internal",
    SignalSource.NEWS_API: "news",
}

DEFAULT_BATCH_LIMIT = 5

STAGE_COMPONENTS: Dict[str, LogComponent] = {
    "ingest": LogComponent.SIGNAL_FETCHER,
    "store": LogComponent.SIGNAL_STORE,
    "cluster": LogComponent.CLUSTERING,
    "fatigue": LogComponent.FATIGUE,
    "validate": LogComponent.VALIDATION,
    "persist": LogComponent.PERSISTENCE,
}


@dataclass
class ValidationRunResult:
    """Outcome of ``run_validation_batch``."""

    run_id: str
    batch: BatchResult
    insert: Optional[InsertResult] = None

    def to_dict(self) -> Dict[str, Any]:
        summary = self.batch.summary
        return {
            "run_id": self.run_id,
            "summary": {
                "total": summary.total,
                "success": summary.success,
                "failed": summary.failed,
                "avg_confidence": summary.avg_confidence,
                "halted": summary.halted,
            },
            "successful": [d.slug for d in self.batch.successful],
            "failed": [{"topic": f.topic, "errors": f.errors} for f in self.batch.failed],
            "inserted": len(self.insert.inserted) if self.insert else 0,
            "persist_error": self.insert.error if self.insert else None,
        }


class ContentIntelligencePipeline:
    """Wires the engines together and runs them as timed stages.

    Args:
        db: Data-access object (``SupabaseDB`` or a test double).
        settings: Application settings.
        agent_logger: Structured run logger.
        fetchers: Signal fetchers; defaults to :func:`create_signal_fetchers`.
        synthesizer: Content synthesizer; defaults to one with no AI
            capability and no images.
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        db: Any,
        settings: Settings,
        agent_logger: AgentLogger,
        fetchers: Optional[Sequence[SignalFetcher]] = None,
        synthesizer: Optional[ContentSynthesizer] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.settings = settings
        self.agent_logger = agent_logger
        self.clock = clock

        self.fetchers = (
            list(fetchers)
            if fetchers is not None
            else create_signal_fetchers(settings.ingestion, db, clock=clock)
        )
        self.store = SignalStore(db)
        self.clustering = ClusteringEngine(
            self.store, db, window_days=settings.ingestion.signal_window_days, clock=clock
        )
        self.fatigue = FatigueScorer(db, settings.fatigue, clock=clock)
        self.synthesizer = synthesizer or ContentSynthesizer(
            config=settings.validation, clock=clock
        )
        self.validation = ValidationPipeline(self.synthesizer, settings.validation)
        self.persistence = DraftPersistenceAdapter(db)
        self.reporting = ReportingService(db, settings.fatigue, clock=clock)

    # ------------------------------------------------------------------
    # Stage runner
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        run_logger: PipelineRunLogger,
        stage: str,
        work: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """Run one stage under its timeout, recording it on ``run_logger``.

        Raises:
            StageTimeoutError: If the stage exceeds its timeout.
            PipelineFatalError: For unexpected (non-domain) errors.
        """
        timeout = timeout or self.settings.stage_timeouts.get(stage, 60.0)
        await run_logger.start_stage(stage, STAGE_COMPONENTS.get(stage, LogComponent.ORCHESTRATOR))
        try:
            result = await asyncio.wait_for(work(), timeout=timeout)
        except asyncio.TimeoutError:
            await run_logger.end_stage("timeout")
            await run_logger.finish("failed")
            raise StageTimeoutError(stage, timeout)
        except (IntelligenceError, DatabaseError, ConfigurationError):
            await run_logger.end_stage("failed")
            await run_logger.finish("failed")
            raise
        except Exception as e:
            await run_logger.end_stage("failed")
            await run_logger.finish("failed")
            raise PipelineFatalError(
                f"Stage '{stage}' failed unexpectedly: {type(e).__name__}: {e}"
            ) from e
        return result

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def _fetch_all(self) -> List[List[TrendSignal]]:
        results = await asyncio.gather(
            *(f.fetch() for f in self.fetchers), return_exceptions=True
        )
        batches: List[List[TrendSignal]] = []
        for fetcher, result in zip(self.fetchers, results):
            if isinstance(result, BaseException):
                # fetch() isolates its own failures; this is a last resort
                logger.warning("[INGEST] Fetcher '%s' raised: %s", fetcher.name, result)
                batches.append([])
            else:
                batches.append(result)
        return batches

    async def run_full_ingestion(self) -> IngestionResult:
        """Fetch from every source, store, prune and re-cluster.

        Returns:
            Per-source signal counts and the number of clusters built.
        """
        run_id = generate_id()
        run_logger = PipelineRunLogger(run_id, self.agent_logger)
        logger.info("[INGEST] Starting ingestion run %s (%d sources)", run_id, len(self.fetchers))

        batches = await self._run_stage(run_logger, "ingest", self._fetch_all)
        for fetcher in self.fetchers:
            if fetcher.last_error:
                await self.agent_logger.warning(
                    LogComponent.SIGNAL_FETCHER,
                    f"Source '{fetcher.name}' contributed no signals",
                    data={"error": fetcher.last_error},
                )
        await run_logger.end_stage("success", {
            f.name: len(b) for f, b in zip(self.fetchers, batches)
        })

        source_counts = {key: 0 for key in SOURCE_COUNT_KEYS.values()}
        signals: List[TrendSignal] = []
        for fetcher, batch in zip(self.fetchers, batches):
            key = SOURCE_COUNT_KEYS.get(fetcher.source, fetcher.name)
            source_counts[key] = source_counts.get(key, 0) + len(batch)
            signals.extend(batch)

        async def store_and_prune() -> int:
            stored = await self.store.store(signals)
            await self.store.prune(self.settings.ingestion.retention_days, self.clock())
            return stored

        stored = await self._run_stage(run_logger, "store", store_and_prune)
        await run_logger.end_stage("success", {"fetched": len(signals), "stored": stored})

        clusters = await self._run_stage(run_logger, "cluster", self.clustering.run)
        await run_logger.end_stage("success", {"clusters": len(clusters)})
        await run_logger.finish("success")

        result = IngestionResult(
            source_counts=source_counts,
            stored=stored,
            clusters=len(clusters),
            run_id=run_id,
            completed_at=self.clock(),
        )
        logger.info("[INGEST] Run %s complete: %s", run_id, result.to_dict())
        return result

    # ------------------------------------------------------------------
    # Fatigue
    # ------------------------------------------------------------------

    async def run_fatigue(self) -> FatigueReport:
        """Recompute saturation for active clusters and return the buckets."""
        run_id = generate_id()
        run_logger = PipelineRunLogger(run_id, self.agent_logger)

        async def update_and_report() -> Tuple[List[TopicCluster], FatigueReport]:
            updated = await self.fatigue.update_saturation()
            return updated, await self.fatigue.report()

        updated, report = await self._run_stage(run_logger, "fatigue", update_and_report)
        await run_logger.end_stage("success", {"updated": len(updated), **report.to_dict()})
        await run_logger.finish("success")
        return report

    # ------------------------------------------------------------------
    # Validation batch
    # ------------------------------------------------------------------

    async def _log_topic_outcomes(self, batch: BatchResult) -> None:
        """Per-topic structured entries: fallbacks, missing images, rejections."""
        for result in batch.results:
            self.agent_logger.set_context(topic=result.topic.title)
            draft = result.draft
            if draft is not None and draft.source == ContentSource.FALLBACK:
                await self.agent_logger.info(
                    LogComponent.SYNTHESIZER,
                    "Template fallback used",
                    data={"confidence": draft.confidence},
                )
            if draft is not None and draft.image_url is None:
                await self.agent_logger.info(LogComponent.IMAGE_INTELLIGENCE, "No image attached")
            if not result.accepted:
                await self.agent_logger.warning(
                    LogComponent.VALIDATION,
                    "Topic rejected",
                    data={"errors": list(result.errors)},
                )
        self.agent_logger.clear_topic()

    async def _default_topics(self, limit: int) -> List[Topic]:
        """Top unsaturated trending clusters as topics."""
        clusters = await self.reporting.get_trending_clusters()
        return [
            Topic(title=c.primary_keyword, category=c.category or "trending")
            for c in clusters
            if not c.is_saturated
        ][:limit]

    async def run_validation_batch(
        self,
        topics: Optional[Sequence[Union[Topic, str]]] = None,
        limit: int = DEFAULT_BATCH_LIMIT,
        continue_on_error: bool = True,
        persist: bool = True,
        verbose: bool = False,
    ) -> ValidationRunResult:
        """Synthesize, validate and persist drafts for up to ``limit`` topics.

        When ``topics`` is ``None`` the top unsaturated trending clusters
        are used.
        """
        run_id = generate_id()
        run_logger = PipelineRunLogger(run_id, self.agent_logger)

        if topics is None:
            selected: List[Union[Topic, str]] = list(await self._run_stage(
                run_logger, "select", lambda: self._default_topics(limit)
            ))
            await run_logger.end_stage("success", {"topics": len(selected)})
        else:
            selected = list(topics)[:limit]
        logger.info("[VALIDATE] Run %s: %d topics", run_id, len(selected))

        batch = await self._run_stage(
            run_logger,
            "validate",
            lambda: self.validation.generate_validated_drafts(
                selected, verbose=verbose, continue_on_error=continue_on_error
            ),
            timeout=self.settings.validation.batch_timeout_seconds,
        )
        await run_logger.end_stage("success", {
            "total": batch.summary.total,
            "success": batch.summary.success,
            "failed": batch.summary.failed,
        })
        await self._log_topic_outcomes(batch)

        insert: Optional[InsertResult] = None
        if persist and batch.successful:
            await run_logger.start_stage("persist", LogComponent.PERSISTENCE)
            insert = await self.persistence.insert_drafts(batch.successful)
            if not insert.ok:
                await self.agent_logger.error(
                    LogComponent.PERSISTENCE,
                    "Draft insert failed",
                    data={"attempts": insert.attempts, "error": insert.error},
                )
            await run_logger.end_stage(
                "success" if insert.ok else "failed",
                {"inserted": len(insert.inserted), "attempts": insert.attempts},
            )

        await run_logger.finish("success" if insert is None or insert.ok else "partial")
        return ValidationRunResult(run_id=run_id, batch=batch, insert=insert)


# =========================================================================
# FACTORY
# =========================================================================


async def build_pipeline(settings: Optional[Settings] = None) -> ContentIntelligencePipeline:
    """Production wiring: Supabase, structured logger, AI capability and images.

    Raises:
        DatabaseError: If the datastore cannot be reached.
    """
    settings = settings or get_settings()
    db = await SupabaseDB.create()
    await db.ping()
    agent_logger = AgentLogger(
        log_dir=settings.log_dir,
        db=db,
        min_level=LogLevel.__members__.get(settings.log_level.upper(), LogLevel.INFO),
    )
    synthesizer = ContentSynthesizer(
        capability=create_capability(settings),
        image_engine=ImageIntelligenceEngine(config=settings.images),
        config=settings.validation,
    )
    return ContentIntelligencePipeline(
        db=db,
        settings=settings,
        agent_logger=agent_logger,
        synthesizer=synthesizer,
    )
