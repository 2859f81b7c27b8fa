"""
Signal Store -- append-only persistence of trend signals.

Signals are written keyed by their ``id`` so concurrent ingestion runs
converge without locking.  Clustering reads a point-in-time snapshot:
every signal in the window whose timestamp is not after the snapshot
instant, read once at run start.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from src.exceptions import ValidationError
from src.models import TrendSignal
from src.utils import days_ago, ensure_utc, utc_now

logger = logging.getLogger("SignalStore")


@dataclass
class SignalSnapshot:
    """Signals visible at ``as_of`` within the trailing window."""

    as_of: datetime
    window_days: float
    signals: List[TrendSignal] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.signals)


class SignalStore:
    """Rolling-window store for ``TrendSignal`` records.

    Args:
        db: Data-access object exposing ``insert_trend_signals``,
            ``get_signals_since`` and ``prune_signals_before``.
    """

    def __init__(self, db: Any) -> None:
        self.db = db

    async def store(self, signals: List[TrendSignal]) -> int:
        """Persist signals.  Returns the number of rows written."""
        if not signals:
            return 0
        written = await self.db.insert_trend_signals([s.to_row() for s in signals])
        logger.info("[STORE] Stored %d/%d signals", written, len(signals))
        return written

    async def snapshot(
        self, window_days: float, as_of: Optional[datetime] = None
    ) -> SignalSnapshot:
        """Read every signal from the last ``window_days`` as of ``as_of``.

        Rows that fail to parse are skipped with a warning.
        """
        as_of = ensure_utc(as_of) if as_of is not None else utc_now()
        rows = await self.db.get_signals_since(days_ago(window_days, as_of))

        signals: List[TrendSignal] = []
        skipped = 0
        for row in rows:
            try:
                signal = TrendSignal.from_row(row)
            except (ValidationError, KeyError, ValueError, TypeError) as e:
                skipped += 1
                logger.warning("[STORE] Skipping malformed signal row %s: %s", row.get("id"), e)
                continue
            if signal.timestamp <= as_of:
                signals.append(signal)

        logger.info(
            "[STORE] Snapshot as of %s: %d signals (%d skipped)",
            as_of.isoformat(),
            len(signals),
            skipped,
        )
        return SignalSnapshot(as_of=as_of, window_days=window_days, signals=signals)

    async def prune(self, retention_days: float, now: Optional[datetime] = None) -> int:
        """Delete signals older than the retention window."""
        cutoff = days_ago(retention_days, now)
        deleted = await self.db.prune_signals_before(cutoff)
        logger.info("[STORE] Pruned %d signals older than %s", deleted, cutoff.isoformat())
        return deleted
