"""Tests for src.draft_persistence -- slug-collision retry at insert time."""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.draft_persistence import (
    DraftPersistenceAdapter,
    random_suffix,
    with_slug_suffix,
)
from src.exceptions import DatabaseError
from src.models import ValidatedDraft


def _draft(slug, title="Devara review"):
    return ValidatedDraft(
        title=title,
        slug=slug,
        body="తెలుగు కథనం",
        excerpt="excerpt",
        category="movies",
        tags=["tollywood"],
    )


def test_random_suffix_alphabet_and_length():
    suffix = random_suffix(rng=random.Random(7))
    assert len(suffix) == 5
    assert all(c.islower() or c.isdigit() for c in suffix)


def test_with_slug_suffix_leaves_originals_untouched():
    original = [_draft("devara-review-abc")]
    suffixed = with_slug_suffix(original, random.Random(1))
    assert original[0].slug == "devara-review-abc"
    assert suffixed[0].slug.startswith("devara-review-abc-")
    assert len(suffixed[0].slug) == len("devara-review-abc-") + 5


@pytest.mark.asyncio
async def test_insert_succeeds_first_time(fake_db):
    result = await DraftPersistenceAdapter(fake_db).insert_drafts([_draft("a-1"), _draft("b-1")])

    assert result.error is None
    assert result.attempts == 1
    assert [r["slug"] for r in result.inserted] == ["a-1", "b-1"]
    assert fake_db.posts[0]["status"] == "draft"
    assert fake_db.posts[0]["telugu_body"] == "తెలుగు కథనం"


@pytest.mark.asyncio
async def test_conflict_retries_once_with_suffixed_slugs(fake_db):
    fake_db.posts.append({"slug": "devara-review-lx1"})

    result = await DraftPersistenceAdapter(fake_db, rng=random.Random(3)).insert_drafts(
        [_draft("devara-review-lx1"), _draft("kalki-lx2")]
    )

    assert result.error is None
    assert result.attempts == 2
    assert len(fake_db.insert_calls) == 2
    retried = [r["slug"] for r in fake_db.insert_calls[1]]
    assert retried[0].startswith("devara-review-lx1-")
    assert retried[1].startswith("kalki-lx2-")
    assert len(result.inserted) == 2


@pytest.mark.asyncio
async def test_second_conflict_is_reported_not_raised(fake_db):
    fake_db.conflicts_remaining = 2

    result = await DraftPersistenceAdapter(fake_db).insert_drafts([_draft("a-1")])

    assert result.attempts == 2
    assert result.inserted == []
    assert "Unique constraint violated on 'posts'" in result.error
    assert fake_db.posts == []


@pytest.mark.asyncio
async def test_database_error_is_not_retried():
    db = MagicMock()
    db.insert_posts = AsyncMock(side_effect=DatabaseError("connection reset"))

    result = await DraftPersistenceAdapter(db).insert_drafts([_draft("a-1")])

    assert result.attempts == 1
    assert result.error == "connection reset"
    db.insert_posts.assert_awaited_once()


@pytest.mark.asyncio
async def test_empty_input_is_a_no_op(fake_db):
    result = await DraftPersistenceAdapter(fake_db).insert_drafts([])
    assert result.attempts == 0
    assert result.inserted == []
    assert result.error is None
    assert fake_db.insert_calls == []
