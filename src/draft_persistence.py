"""
Draft Persistence Adapter -- inserts validated drafts into ``posts``.

Slug uniqueness is enforced here, not during synthesis.  On a
unique-constraint violation the whole batch is retried exactly once with
a random suffix appended to every slug; a second failure is reported in
``InsertResult.error`` rather than raised.
"""

import logging
import random
import string
from dataclasses import replace
from typing import Any, List, Optional

from src.exceptions import DatabaseError, PersistenceConflictError
from src.models import InsertResult, ValidatedDraft

logger = logging.getLogger("DraftPersistence")

SUFFIX_LENGTH = 5
MAX_ATTEMPTS = 2

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def random_suffix(length: int = SUFFIX_LENGTH, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(_SUFFIX_ALPHABET) for _ in range(length))


def with_slug_suffix(drafts: List[ValidatedDraft], rng: Optional[random.Random] = None) -> List[ValidatedDraft]:
    """Copies of ``drafts`` with a fresh random suffix on each slug."""
    return [replace(d, slug=f"{d.slug}-{random_suffix(rng=rng)}") for d in drafts]


class DraftPersistenceAdapter:
    """Inserts drafts with a bounded slug-collision retry.

    Args:
        db: Data-access object exposing ``insert_posts``.
        rng: Random source for slug suffixes; injectable for tests.
    """

    def __init__(self, db: Any, rng: Optional[random.Random] = None) -> None:
        self.db = db
        self.rng = rng

    async def insert_drafts(self, drafts: List[ValidatedDraft]) -> InsertResult:
        """Insert ``drafts`` as one batch.

        Returns:
            ``InsertResult`` with the inserted rows, or ``error`` set when
            the insert still conflicts after one retry or fails for any
            other database reason.
        """
        result = InsertResult()
        if not drafts:
            return result

        batch = list(drafts)
        while result.attempts < MAX_ATTEMPTS:
            result.attempts += 1
            try:
                result.inserted = await self.db.insert_posts([d.to_row() for d in batch])
            except PersistenceConflictError as e:
                if result.attempts >= MAX_ATTEMPTS:
                    logger.error("[PERSIST] Slug conflict persisted after retry: %s", e)
                    result.error = str(e)
                    return result
                logger.warning("[PERSIST] Slug conflict (%s); retrying with suffixed slugs", e)
                batch = with_slug_suffix(batch, self.rng)
                continue
            except DatabaseError as e:
                logger.error("[PERSIST] Insert failed: %s", e)
                result.error = str(e)
                return result

            logger.info(
                "[PERSIST] Inserted %d drafts (attempt %d)", len(result.inserted), result.attempts
            )
            return result

        return result
