"""
Unified async database client for all pipeline operations.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.
The instance is created by the process entry point and passed into each
component; nothing in the pipeline reaches for a global client.

Usage::

    from src.database import SupabaseDB

    # In async context:
    db = await SupabaseDB.create()
    stored = await db.insert_trend_signals([signal.to_row() for signal in signals])
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from postgrest.exceptions import APIError
from supabase import AsyncClient, create_async_client

from src.exceptions import DatabaseError, PersistenceConflictError, ValidationError
from src.utils import utc_now

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION_CODE = "23505"

# Supabase's default max-rows per response
SIGNAL_PAGE_SIZE = 1000


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def escape_like(value: str) -> str:
    """Escape ILIKE wildcards so a keyword matches as a plain substring."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key for full server-side access

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for all pipeline operations.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.

    Tables used:
        ``trend_signals``, ``topic_clusters``, ``posts``,
        ``content_performance``, ``search_logs``, ``agent_logs``.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.

        Raises:
            DatabaseError: If the client cannot be created.
        """
        config = config or SupabaseConfig.from_env()
        try:
            client = await create_async_client(config.url, config.key)
        except Exception as exc:
            raise DatabaseError(
                f"Could not connect to Supabase at {config.url}: {exc}"
            ) from exc
        return cls(client)

    # -----------------------------------------------------------------
    # TREND SIGNALS
    # -----------------------------------------------------------------

    async def insert_trend_signals(self, rows: List[Dict[str, Any]]) -> int:
        """Persist trend signal rows.

        Signals are keyed by ``id``; re-sending an already stored signal
        is a no-op, so concurrent writers converge.

        Returns:
            Number of rows written.
        """
        if not rows:
            return 0
        for row in rows:
            validate_not_empty(row.get("id"), "trend_signal.id")

        result = await (
            self.client.table("trend_signals")
            .upsert(rows, on_conflict="id", ignore_duplicates=True)
            .execute()
        )
        return len(result.data) if result.data else 0

    async def get_signals_since(self, since: datetime) -> List[Dict[str, Any]]:
        """Get every signal with ``signal_timestamp >= since``.

        PostgREST caps each response at the project's max-rows setting,
        so rows are read in ``SIGNAL_PAGE_SIZE`` pages until a short page
        comes back.

        Returns:
            List of rows ordered by ``normalized_score`` descending.
        """
        rows: List[Dict[str, Any]] = []
        start = 0
        while True:
            result = await (
                self.client.table("trend_signals")
                .select("*")
                .gte("signal_timestamp", since.isoformat())
                .order("normalized_score", desc=True)
                .order("id")
                .range(start, start + SIGNAL_PAGE_SIZE - 1)
                .execute()
            )
            page = result.data or []
            rows.extend(page)
            if len(page) < SIGNAL_PAGE_SIZE:
                return rows
            start += SIGNAL_PAGE_SIZE

    async def prune_signals_before(self, cutoff: datetime) -> int:
        """Delete signals older than *cutoff*.

        Returns:
            Number of rows deleted.
        """
        result = await (
            self.client.table("trend_signals")
            .delete()
            .lt("signal_timestamp", cutoff.isoformat())
            .execute()
        )
        return len(result.data) if result.data else 0

    # -----------------------------------------------------------------
    # TOPIC CLUSTERS
    # -----------------------------------------------------------------

    async def upsert_topic_clusters(self, rows: List[Dict[str, Any]]) -> int:
        """Upsert cluster rows keyed by ``cluster_name``.

        Rows carry only clustering-owned columns; saturation columns are
        left untouched.

        Returns:
            Number of rows upserted.
        """
        if not rows:
            return 0
        for row in rows:
            validate_not_empty(row.get("cluster_name"), "cluster_name")

        result = await (
            self.client.table("topic_clusters")
            .upsert(rows, on_conflict="cluster_name")
            .execute()
        )
        return len(result.data) if result.data else 0

    async def get_active_clusters(
        self, since: datetime, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get clusters updated at or after *since*, best first.

        Args:
            since: Lower bound on ``updated_at``.
            limit: Optional maximum number of rows.

        Returns:
            List of cluster rows ordered by ``avg_score`` descending.
        """
        query = (
            self.client.table("topic_clusters")
            .select("*")
            .gte("updated_at", since.isoformat())
            .order("avg_score", desc=True)
        )
        if limit is not None:
            validate_positive(limit, "limit")
            query = query.limit(limit)

        result = await query.execute()
        return result.data or []

    async def update_cluster_saturation(
        self,
        cluster_name: str,
        saturation_score: float,
        is_saturated: bool,
        times_covered: int,
    ) -> None:
        """Write the fatigue-owned columns of one cluster."""
        validate_not_empty(cluster_name, "cluster_name")

        await (
            self.client.table("topic_clusters")
            .update({
                "saturation_score": saturation_score,
                "is_saturated": is_saturated,
                "times_covered": times_covered,
            })
            .eq("cluster_name", cluster_name)
            .execute()
        )

    async def count_clusters_by_direction(self, direction: str) -> int:
        """Count clusters currently classified as *direction*."""
        result = await (
            self.client.table("topic_clusters")
            .select("id", count="exact")
            .eq("trend_direction", direction)
            .execute()
        )
        return result.count or 0

    # -----------------------------------------------------------------
    # POSTS
    # -----------------------------------------------------------------

    async def count_posts_matching(self, keyword: str, since: datetime) -> int:
        """Count posts created since *since* whose title contains *keyword*.

        Matching is a case-insensitive substring match.
        """
        validate_not_empty(keyword, "keyword")

        result = await (
            self.client.table("posts")
            .select("id", count="exact")
            .ilike("title", f"%{escape_like(keyword)}%")
            .gte("created_at", since.isoformat())
            .execute()
        )
        return result.count or 0

    async def insert_posts(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert draft post rows in a single statement.

        Returns:
            The inserted rows.

        Raises:
            PersistenceConflictError: On a unique-constraint violation
                (e.g. duplicate ``slug``).
            DatabaseError: On any other database error.
        """
        if not rows:
            return []
        for row in rows:
            validate_not_empty(row.get("slug"), "post.slug")
            validate_not_empty(row.get("title"), "post.title")

        try:
            result = await self.client.table("posts").insert(rows).execute()
        except APIError as exc:
            if str(exc.code) == UNIQUE_VIOLATION_CODE:
                raise PersistenceConflictError("posts", exc.message) from exc
            raise DatabaseError(f"Failed to insert posts: {exc.message}") from exc
        return result.data or []

    # -----------------------------------------------------------------
    # INTERNAL ANALYTICS
    # -----------------------------------------------------------------

    async def get_top_content_performance(
        self, since: datetime, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Get best-performing content since *since*, joined with its post.

        Returns:
            Rows with ``post_id``, ``views``, ``engagement_score`` and a
            nested ``posts`` dict (``title``, ``category``).
        """
        validate_positive(limit, "limit")

        result = await (
            self.client.table("content_performance")
            .select("post_id, views, engagement_score, posts!inner(title, category)")
            .gte("created_at", since.isoformat())
            .order("views", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def get_top_search_queries(
        self, since: datetime, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Get the most frequent site search queries since *since*."""
        validate_positive(limit, "limit")

        result = await (
            self.client.table("search_logs")
            .select("query, count")
            .gte("created_at", since.isoformat())
            .order("count", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def get_performance_between(
        self, start: datetime, end: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Get performance rows whose ``updated_at`` falls in ``[start, end)``."""
        query = (
            self.client.table("content_performance")
            .select("views, engagement_score")
            .gte("updated_at", start.isoformat())
        )
        if end is not None:
            query = query.lt("updated_at", end.isoformat())

        result = await query.execute()
        return result.data or []

    # -----------------------------------------------------------------
    # AGENT LOGS
    # -----------------------------------------------------------------

    async def save_agent_log(self, log_entry: Dict[str, Any]) -> str:
        """Save a structured log entry.

        Args:
            log_entry: Log entry dict.  Must contain ``timestamp``
                and ``level``.

        Returns:
            UUID of the inserted log row.

        Raises:
            ValidationError: On missing / invalid fields.
            DatabaseError: When the insert returns no data.
        """
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        if "timestamp" not in log_entry or "level" not in log_entry:
            raise ValidationError(
                "log_entry must have 'timestamp' and 'level'"
            )

        result = await (
            self.client.table("agent_logs").insert(log_entry).execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]

    async def ping(self) -> datetime:
        """Cheap round trip made by ``build_pipeline`` so a missing database
        fails before any stage starts.

        Raises:
            DatabaseError: If the datastore cannot be reached.
        """
        try:
            await self.client.table("topic_clusters").select("id").limit(1).execute()
        except Exception as exc:
            raise DatabaseError(f"Database unreachable: {exc}") from exc
        return utc_now()
