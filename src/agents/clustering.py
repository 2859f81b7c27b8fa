"""
Clustering Engine -- groups recent trend signals into topic clusters.

Algorithm
---------
1. Normalise each keyword (lowercase, strip non-alphanumerics, collapse
   whitespace, truncate to 50 chars); the result is the ``cluster_key``.
2. Group signals by key.
3. Per group: ``avg_score`` is the mean ``normalized_score``; ``keywords``
   is the de-duplicated union of member keywords and related keywords.
4. Direction from the count of members in the last 24h (``recent``) vs
   the rest (``older``): ``recent > 2 * older`` is spiking, ``recent >
   older`` rising, ``recent < older`` falling, otherwise stable.  A group
   with only recent members is therefore spiking.
5. Upsert each cluster keyed by ``cluster_key``.

``build_clusters`` is a pure function of the signal list and the
reference instant: members are ordered by a total sort key before any
aggregation, so re-running over the same snapshot yields the same
clusters and scores.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from src.models import TopicCluster, TrendDirection, TrendSignal
from src.signal_store import SignalStore
from src.utils import ensure_utc, utc_now

logger = logging.getLogger("Clustering")

MAX_KEY_LENGTH = 50
RECENT_WINDOW = timedelta(hours=24)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_keyword(keyword: str) -> str:
    """Normalise a raw keyword into a cluster key.

    >>> normalize_keyword("Pushpa 2!!")
    'pushpa 2'
    """
    key = _NON_ALNUM_RE.sub("", keyword.lower())
    key = _WHITESPACE_RE.sub(" ", key).strip()
    # Truncation may leave a trailing space; stored keys keep it.
    return key[:MAX_KEY_LENGTH]


def classify_direction(recent: int, older: int) -> TrendDirection:
    """Directional classification from recent vs older member counts."""
    if recent > 2 * older:
        return TrendDirection.SPIKING
    if recent > older:
        return TrendDirection.RISING
    if recent < older:
        return TrendDirection.FALLING
    return TrendDirection.STABLE


def _member_sort_key(signal: TrendSignal) -> tuple:
    return (-signal.normalized_score, signal.keyword, signal.timestamp, signal.id)


def build_clusters(signals: List[TrendSignal], now: datetime) -> List[TopicCluster]:
    """Group ``signals`` into clusters as seen at ``now``.

    Signals whose keyword normalises to an empty key (e.g. non-Latin
    script only) cannot be clustered and are skipped.

    Returns:
        Clusters ordered by ``avg_score`` descending, then key.
    """
    now = ensure_utc(now)
    recent_cutoff = now - RECENT_WINDOW

    groups: "OrderedDict[str, List[TrendSignal]]" = OrderedDict()
    skipped = 0
    for signal in sorted(signals, key=_member_sort_key):
        key = normalize_keyword(signal.keyword)
        if not key:
            skipped += 1
            continue
        groups.setdefault(key, []).append(signal)

    if skipped:
        logger.debug("[CLUSTER] Skipped %d signals with empty cluster keys", skipped)

    clusters: List[TopicCluster] = []
    for key, members in groups.items():
        keywords: List[str] = []
        for member in members:
            for word in [member.keyword, *member.related_keywords]:
                if word and word not in keywords:
                    keywords.append(word)

        recent = sum(1 for m in members if m.timestamp > recent_cutoff)
        older = len(members) - recent
        clusters.append(
            TopicCluster(
                cluster_key=key,
                primary_keyword=members[0].keyword,
                keywords=keywords,
                avg_score=sum(m.normalized_score for m in members) / len(members),
                signal_count=len(members),
                trend_direction=classify_direction(recent, older),
                category=members[0].category,
                signal_ids=[m.id for m in members],
                updated_at=now,
            )
        )

    clusters.sort(key=lambda c: (-c.avg_score, c.cluster_key))
    return clusters


class ClusteringEngine:
    """Reads a signal snapshot, builds clusters and upserts them.

    Args:
        store: Signal store to snapshot from.
        db: Data-access object exposing ``upsert_topic_clusters``.
        window_days: Signal window (default 3 days).
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        store: SignalStore,
        db: Any,
        window_days: float = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.db = db
        self.window_days = window_days
        self.clock = clock

    async def run(self, as_of: Optional[datetime] = None) -> List[TopicCluster]:
        """Cluster the current window.  Zero signals yields zero clusters."""
        snapshot = await self.store.snapshot(self.window_days, as_of or self.clock())
        clusters = build_clusters(snapshot.signals, snapshot.as_of)

        if clusters:
            await self.db.upsert_topic_clusters([c.to_upsert_row() for c in clusters])

        by_direction: Dict[str, int] = {}
        for cluster in clusters:
            by_direction[cluster.trend_direction.value] = (
                by_direction.get(cluster.trend_direction.value, 0) + 1
            )
        logger.info(
            "[CLUSTER] %d signals -> %d clusters %s",
            len(snapshot),
            len(clusters),
            by_direction,
        )
        return clusters
