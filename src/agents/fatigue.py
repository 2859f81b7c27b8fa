"""
Fatigue / Saturation Scorer -- how much recent content already covers a topic.

For each active cluster the scorer counts posts from the last
``lookback_days`` whose title contains the cluster's primary keyword:

    saturation_score = min(1, count * saturation_step)
    is_saturated     = saturation_score > saturation_threshold

The count is stored as ``times_covered``.  Reporting buckets:

- **saturated**: ``is_saturated``
- **rising**: direction rising/spiking, not saturated, and covered fewer
  than ``max_rising_times_covered`` times
- **underserved**: ``avg_score`` above the floor and covered fewer than
  ``max_underserved_times_covered`` times (i.e. not at all)

Runs independently of (and less often than) clustering.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from src.config import FatigueConfig
from src.models import (
    ContentRecommendation,
    FatigueReport,
    TopicCluster,
    TrendDirection,
)
from src.utils import days_ago, utc_now

logger = logging.getLogger("FatigueScorer")

_RISING_DIRECTIONS = (TrendDirection.RISING, TrendDirection.SPIKING)


def compute_saturation(count: int, step: float = 0.15) -> float:
    """``min(1, count * step)``; negative counts are treated as zero."""
    return min(1.0, max(0, count) * step)


def classify_fatigue(clusters: List[TopicCluster], config: FatigueConfig) -> FatigueReport:
    """Bucket clusters into saturated / rising / underserved.

    Input order is preserved inside each bucket.
    """
    report = FatigueReport()
    for cluster in clusters:
        saturated = cluster.saturation_score > config.saturation_threshold
        if saturated:
            report.saturated.append(cluster.primary_keyword)
        elif (
            cluster.trend_direction in _RISING_DIRECTIONS
            and cluster.times_covered < config.max_rising_times_covered
        ):
            report.rising.append(cluster.primary_keyword)

        if (
            cluster.avg_score > config.underserved_score_floor
            and cluster.times_covered < config.max_underserved_times_covered
        ):
            report.underserved.append(cluster.primary_keyword)
    return report


def build_recommendations(report: FatigueReport, limit: int = 5) -> List[ContentRecommendation]:
    """Turn a fatigue report into prioritised coverage suggestions.

    Top 3 rising topics are high priority for today; top 2 underserved
    topics are medium priority for this week.
    """
    recommendations: List[ContentRecommendation] = []
    for topic in report.rising[:3]:
        recommendations.append(ContentRecommendation(
            topic=topic,
            reason="Trending now with low coverage",
            priority="high",
            suggested_format="news",
            urgency="today",
        ))
    for topic in report.underserved[:2]:
        if any(r.topic == topic for r in recommendations):
            continue
        recommendations.append(ContentRecommendation(
            topic=topic,
            reason="High interest, no recent content",
            priority="medium",
            suggested_format="analysis",
            urgency="this_week",
        ))
    return recommendations[:limit]


class FatigueScorer:
    """Computes and persists per-cluster saturation.

    Args:
        db: Data-access object exposing ``get_active_clusters``,
            ``count_posts_matching`` and ``update_cluster_saturation``.
        config: Fatigue thresholds.
        clock: Source of "now"; injectable for tests.
        concurrency: Maximum concurrent post-count queries.
    """

    def __init__(
        self,
        db: Any,
        config: Optional[FatigueConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        concurrency: int = 5,
    ) -> None:
        self.db = db
        self.config = config or FatigueConfig()
        self.clock = clock
        self.concurrency = concurrency

    async def _active_clusters(self, now: datetime) -> List[TopicCluster]:
        rows = await self.db.get_active_clusters(days_ago(self.config.active_window_days, now))
        return [TopicCluster.from_row(row) for row in rows]

    async def update_saturation(self) -> List[TopicCluster]:
        """Recompute saturation for every active cluster.

        A cluster whose count or update fails keeps its previous values
        and is left out of the returned list.
        """
        now = self.clock()
        clusters = await self._active_clusters(now)
        since = days_ago(self.config.lookback_days, now)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def score_one(cluster: TopicCluster) -> TopicCluster:
            async with semaphore:
                count = await self.db.count_posts_matching(cluster.primary_keyword, since)
                cluster.times_covered = count
                cluster.saturation_score = compute_saturation(count, self.config.saturation_step)
                cluster.is_saturated = cluster.saturation_score > self.config.saturation_threshold
                await self.db.update_cluster_saturation(
                    cluster.cluster_key,
                    cluster.saturation_score,
                    cluster.is_saturated,
                    cluster.times_covered,
                )
                return cluster

        results = await asyncio.gather(
            *(score_one(c) for c in clusters), return_exceptions=True
        )

        updated: List[TopicCluster] = []
        for cluster, result in zip(clusters, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "[FATIGUE] Saturation update failed for '%s': %s",
                    cluster.cluster_key,
                    result,
                )
                continue
            updated.append(result)

        logger.info(
            "[FATIGUE] Updated %d/%d clusters (%d saturated)",
            len(updated),
            len(clusters),
            sum(1 for c in updated if c.is_saturated),
        )
        return updated

    async def report(self) -> FatigueReport:
        """Fatigue buckets over clusters active in the trailing window."""
        clusters = await self._active_clusters(self.clock())
        return classify_fatigue(clusters, self.config)

    async def recommendations(self, limit: int = 5) -> List[ContentRecommendation]:
        return build_recommendations(await self.report(), limit)
