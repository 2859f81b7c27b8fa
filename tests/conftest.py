"""Shared fixtures for the content intelligence test suite."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.exceptions import PersistenceConflictError
from src.utils import parse_timestamp


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear all API keys so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ANTHROPIC_API_KEY",
        "TMDB_API_KEY",
        "YOUTUBE_API_KEY",
        "GNEWS_API_KEY",
        "UNSPLASH_ACCESS_KEY",
        "AI_PROVIDER",
        "LOG_LEVEL",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(sample_utc_now):
    """A clock callable frozen at ``sample_utc_now``."""
    return lambda: sample_utc_now


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client.

    ``client.table(...)`` returns a chainable query whose ``execute`` is an
    ``AsyncMock``; set ``query.execute.return_value`` per test.
    """
    client = MagicMock()
    query = MagicMock()
    for method in (
        "select", "insert", "upsert", "update", "delete", "eq", "gte", "lt",
        "lte", "ilike", "order", "limit", "range", "single",
    ):
        getattr(query, method).return_value = query
    query.execute = AsyncMock(return_value=MagicMock(data=[], count=0))
    client.table.return_value = query
    return client


# ---------------------------------------------------------------------------
# In-memory datastore
# ---------------------------------------------------------------------------
class FakeDB:
    """In-memory stand-in for ``SupabaseDB`` with the same async surface."""

    def __init__(self) -> None:
        self.signals: Dict[str, Dict[str, Any]] = {}
        self.clusters: Dict[str, Dict[str, Any]] = {}
        self.posts: List[Dict[str, Any]] = []
        self.performance: List[Dict[str, Any]] = []
        self.search_logs: List[Dict[str, Any]] = []
        self.agent_logs: List[Dict[str, Any]] = []
        self.conflicts_remaining = 0
        self.insert_calls: List[List[Dict[str, Any]]] = []

    # -- signals -----------------------------------------------------------
    async def insert_trend_signals(self, rows):
        written = 0
        for row in rows:
            if row["id"] not in self.signals:
                self.signals[row["id"]] = dict(row)
                written += 1
        return written

    async def get_signals_since(self, since):
        rows = [
            r for r in self.signals.values()
            if parse_timestamp(r["signal_timestamp"]) >= since
        ]
        return sorted(rows, key=lambda r: -r["normalized_score"])

    async def prune_signals_before(self, cutoff):
        stale = [
            k for k, r in self.signals.items()
            if parse_timestamp(r["signal_timestamp"]) < cutoff
        ]
        for key in stale:
            del self.signals[key]
        return len(stale)

    # -- clusters ----------------------------------------------------------
    async def upsert_topic_clusters(self, rows):
        for row in rows:
            existing = self.clusters.get(row["cluster_name"], {})
            existing.update(row)
            self.clusters[row["cluster_name"]] = existing
        return len(rows)

    async def get_active_clusters(self, since, limit=None):
        rows = [
            r for r in self.clusters.values()
            if parse_timestamp(r["updated_at"]) >= since
        ]
        rows.sort(key=lambda r: -r["avg_score"])
        return rows[:limit] if limit is not None else rows

    async def update_cluster_saturation(self, cluster_name, saturation_score, is_saturated, times_covered):
        self.clusters[cluster_name].update({
            "saturation_score": saturation_score,
            "is_saturated": is_saturated,
            "times_covered": times_covered,
        })

    async def count_clusters_by_direction(self, direction):
        return sum(1 for r in self.clusters.values() if r.get("trend_direction") == direction)

    # -- posts -------------------------------------------------------------
    async def count_posts_matching(self, keyword, since):
        return sum(
            1 for p in self.posts
            if keyword.lower() in p["title"].lower()
            and parse_timestamp(p["created_at"]) >= since
        )

    async def insert_posts(self, rows):
        self.insert_calls.append([dict(r) for r in rows])
        existing = {p["slug"] for p in self.posts}
        slugs = [r["slug"] for r in rows]
        if self.conflicts_remaining > 0 or existing.intersection(slugs) or len(set(slugs)) != len(slugs):
            self.conflicts_remaining = max(0, self.conflicts_remaining - 1)
            raise PersistenceConflictError("posts", "duplicate key value violates unique constraint \"posts_slug_key\"")
        self.posts.extend(dict(r) for r in rows)
        return [dict(r) for r in rows]

    # -- analytics ---------------------------------------------------------
    async def get_top_content_performance(self, since, limit=20):
        rows = sorted(self.performance, key=lambda r: -r.get("views", 0))
        return rows[:limit]

    async def get_top_search_queries(self, since, limit=20):
        rows = sorted(self.search_logs, key=lambda r: -r.get("count", 0))
        return rows[:limit]

    async def get_performance_between(self, start, end: Optional[datetime] = None):
        return [
            r for r in self.performance
            if parse_timestamp(r["updated_at"]) >= start
            and (end is None or parse_timestamp(r["updated_at"]) < end)
        ]

    # -- logs --------------------------------------------------------------
    async def save_agent_log(self, log_entry):
        self.agent_logs.append(log_entry)
        return str(len(self.agent_logs))


@pytest.fixture
def fake_db():
    return FakeDB()
