"""
Read models for dashboards and admin tooling.

Plain queries over the persisted cluster and performance tables:

- ``get_trending_clusters``: clusters updated in a trailing window, best
  ``avg_score`` first
- ``get_fatigue_buckets``: saturated / rising / underserved topic lists
- ``get_performance_metrics``: 24h views with day-over-day change,
  average engagement and the number of spiking topics
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from src.agents.fatigue import classify_fatigue
from src.config import FatigueConfig
from src.models import FatigueReport, TopicCluster, TrendDirection
from src.utils import days_ago, utc_now

logger = logging.getLogger("Reporting")

TRENDING_WINDOW_DAYS = 7
TRENDING_LIMIT = 20


@dataclass
class PerformanceMetrics:
    views_today: int
    views_yesterday: int
    views_change_percent: int
    views_trend: str  # "up" | "down" | "stable"
    avg_engagement: float
    spiking_topics: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "views_24h": {
                "value": self.views_today,
                "change": self.views_change_percent,
                "trend": self.views_trend,
            },
            "avg_engagement": self.avg_engagement,
            "spiking_topics": self.spiking_topics,
        }


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _sum_views(rows: List[Dict[str, Any]]) -> int:
    return sum(int(r.get("views") or 0) for r in rows)


class ReportingService:
    """Read-only queries for the UI.

    Args:
        db: Data-access object (see ``SupabaseDB``).
        fatigue_config: Thresholds used for the fatigue buckets.
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        db: Any,
        fatigue_config: Optional[FatigueConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.fatigue_config = fatigue_config or FatigueConfig()
        self.clock = clock

    async def get_trending_clusters(
        self, window_days: float = TRENDING_WINDOW_DAYS, limit: int = TRENDING_LIMIT
    ) -> List[TopicCluster]:
        rows = await self.db.get_active_clusters(days_ago(window_days, self.clock()), limit=limit)
        clusters = [TopicCluster.from_row(row) for row in rows]
        clusters.sort(key=lambda c: -c.avg_score)
        return clusters

    async def get_fatigue_buckets(self) -> FatigueReport:
        now = self.clock()
        rows = await self.db.get_active_clusters(days_ago(self.fatigue_config.active_window_days, now))
        return classify_fatigue([TopicCluster.from_row(r) for r in rows], self.fatigue_config)

    async def get_performance_metrics(self) -> PerformanceMetrics:
        """Today's views against yesterday's, plus engagement and spikes.

        A day with no recorded views counts as 1 for the percentage, so
        the change is always defined.
        """
        now = self.clock()
        today_start = _start_of_day(now)
        yesterday_start = today_start - timedelta(days=1)

        today_rows = await self.db.get_performance_between(today_start)
        yesterday_rows = await self.db.get_performance_between(yesterday_start, today_start)

        views_today = _sum_views(today_rows)
        views_yesterday = _sum_views(yesterday_rows) or 1
        change = round((views_today - views_yesterday) / views_yesterday * 100)

        if change > 0:
            trend = "up"
        elif change < 0:
            trend = "down"
        else:
            trend = "stable"

        engagement = [float(r.get("engagement_score") or 0) for r in today_rows]
        avg_engagement = round(sum(engagement) / len(engagement), 2) if engagement else 0.0

        spiking = await self.db.count_clusters_by_direction(TrendDirection.SPIKING.value)

        metrics = PerformanceMetrics(
            views_today=views_today,
            views_yesterday=views_yesterday,
            views_change_percent=change,
            views_trend=trend,
            avg_engagement=avg_engagement,
            spiking_topics=spiking,
        )
        logger.debug("[REPORT] Metrics: %s", metrics.to_dict())
        return metrics
