"""
Direct service-layer tests — exercises the store and submission logic
without HTTP overhead.
"""
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.models import Article, CommentStatus, User
from article_comments.services import comment_service, comment_store
from article_comments.services.comment_store import InvalidTransitionError, ListFilters


class UnavailableQueue:
    async def enqueue(self, comment_id: str):
        raise ConnectionError("queue down")


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

def test_status_transitions():
    assert CommentStatus.PENDING.can_transition_to(CommentStatus.PUBLISHED)
    assert CommentStatus.PENDING.can_transition_to(CommentStatus.REJECTED)
    assert not CommentStatus.PUBLISHED.can_transition_to(CommentStatus.PENDING)
    assert not CommentStatus.REJECTED.can_transition_to(CommentStatus.PUBLISHED)
    assert CommentStatus.REJECTED.is_terminal
    assert not CommentStatus.PENDING.is_terminal


@pytest.mark.asyncio
async def test_compare_and_set_refuses_illegal_transition(db_session: AsyncSession):
    with pytest.raises(InvalidTransitionError):
        await comment_store.compare_and_set_status(
            db_session, "any", CommentStatus.PUBLISHED, CommentStatus.PENDING
        )


@pytest.mark.asyncio
async def test_compare_and_set_requires_expected_status(
    db_session: AsyncSession, article: Article, user: User, make_comment, status_of
):
    comment = await make_comment(article.id, user.id, "done", CommentStatus.REJECTED)

    changed = await comment_store.compare_and_set_status(
        db_session, comment.id, CommentStatus.PENDING, CommentStatus.PUBLISHED
    )
    await db_session.commit()

    assert changed is False
    assert await status_of(comment.id) is CommentStatus.REJECTED


@pytest.mark.asyncio
async def test_compare_and_set_sets_updated_at(
    db_session: AsyncSession, article: Article, user: User, make_comment
):
    comment = await make_comment(article.id, user.id, "fresh")

    assert await comment_store.compare_and_set_status(
        db_session, comment.id, CommentStatus.PENDING, CommentStatus.PUBLISHED
    )
    await db_session.commit()

    db_session.expire_all()
    reloaded = await comment_store.find_by_id(db_session, comment.id)
    assert reloaded.updated_at is not None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_unknown_article_returns_none(db_session: AsyncSession, user: User):
    assert await comment_service.submit_comment(
        db_session, UnavailableQueue(), 12345, user.id, "Hello there"
    ) is None


@pytest.mark.asyncio
async def test_submit_keeps_comment_when_enqueue_fails(
    db_session: AsyncSession, article: Article, user: User, status_of
):
    comment_id = await comment_service.submit_comment(
        db_session, UnavailableQueue(), article.id, user.id, "Hello there"
    )
    assert comment_id is not None
    assert await status_of(comment_id) is CommentStatus.PENDING


# ---------------------------------------------------------------------------
# Cache keys and paging
# ---------------------------------------------------------------------------

def test_filter_signature_is_deterministic():
    a = ListFilters(search="x", from_date=date(2026, 1, 1))
    b = ListFilters(search="x", from_date=date(2026, 1, 1))
    assert a.signature() == b.signature()


def test_filter_signature_distinguishes_filters():
    signatures = {
        ListFilters().signature(),
        ListFilters(search="x").signature(),
        ListFilters(search="x", to_date=date(2026, 1, 1)).signature(),
        ListFilters(from_date=date(2026, 1, 1)).signature(),
        ListFilters(to_date=date(2026, 1, 1)).signature(),
    }
    assert len(signatures) == 5


def test_comment_list_cache_key_includes_every_dimension():
    filters = ListFilters(search="x")
    key = comment_service.comment_list_cache_key(7, 2, 25, filters)
    assert key.startswith("comments:list:7:2:25:")
    assert key != comment_service.comment_list_cache_key(7, 2, 25, ListFilters())
    assert key != comment_service.comment_list_cache_key(8, 2, 25, filters)


@pytest.mark.parametrize("total, per_page, expected", [
    (0, 10, 1),
    (10, 10, 1),
    (11, 10, 2),
    (15, 10, 2),
])
def test_last_page(total, per_page, expected):
    assert comment_service.last_page(total, per_page) == expected
