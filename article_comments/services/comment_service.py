"""
Comment service — submission (write path) and cached listing (read path).

Submissions never become visible synchronously: a new comment is stored
as ``pending`` and a moderation unit of work is queued.  The moderation
worker later publishes or rejects it and, on publish, flushes the
``article:{id}`` cache tag so every cached page of that article is
recomputed on the next read.
"""
import logging
import math
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.cache import article_tag, cache
from article_comments.config import get_settings
from article_comments.models import Article, Comment, CommentStatus
from article_comments.schemas import CommentPage, CommentResponse, PageMeta
from article_comments.services import comment_store
from article_comments.services.comment_store import ListFilters
from article_comments.work_queue import ModerationQueue

logger = logging.getLogger(__name__)


def last_page(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page))


def comment_list_cache_key(
    article_id: int, page: int, per_page: int, filters: ListFilters
) -> str:
    return f"comments:list:{article_id}:{page}:{per_page}:{filters.signature()}"


async def article_exists(db: AsyncSession, article_id: int) -> bool:
    result = await db.execute(select(Article.id).where(Article.id == article_id))
    return result.scalar_one_or_none() is not None


async def submit_comment(
    db: AsyncSession,
    queue: ModerationQueue,
    article_id: int,
    user_id: int,
    content: str,
) -> str | None:
    """
    Persist a pending comment and queue it for moderation.

    Returns the new comment id, or None when the article does not exist.

    The comment is committed *before* it is enqueued so a worker can never
    receive an id it cannot load; a persistence failure propagates and
    nothing is enqueued.  If the enqueue itself fails the comment stays
    pending and the failure is logged for reconciliation; the caller
    still gets the id, since the comment was accepted.
    """
    if not await article_exists(db, article_id):
        return None

    comment = await comment_store.insert(
        db,
        Comment(
            article_id=article_id,
            user_id=user_id,
            content=content,
            status=CommentStatus.PENDING,
        ),
    )
    comment_id = comment.id
    await db.commit()

    try:
        await queue.enqueue(comment_id)
    except Exception:
        logger.exception(
            "Failed to enqueue moderation for comment %s; left pending for reconciliation",
            comment_id,
        )
    else:
        logger.info("Comment %s on article %s queued for moderation", comment_id, article_id)
    return comment_id


async def list_comments(
    db: AsyncSession,
    article_id: int,
    page: int = 1,
    per_page: int = 10,
    search: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
) -> dict:
    """
    Return ``{"items": [...], "meta": {...}}`` for the published comments
    of *article_id*, served through the tagged cache.

    ``meta`` is computed by the same query as the items, so a cached page
    is internally consistent as of its population time.
    """
    filters = ListFilters(search=search or None, from_date=from_date, to_date=to_date)
    key = comment_list_cache_key(article_id, page, per_page, filters)

    async def populate() -> dict:
        rows, total = await comment_store.query_page(db, article_id, filters, page, per_page)
        response = CommentPage(
            items=[CommentResponse.model_validate(c) for c in rows],
            meta=PageMeta(
                current_page=page,
                last_page=last_page(total, per_page),
                per_page=per_page,
                total=total,
            ),
        )
        return response.model_dump(mode="json")

    return await cache.get_or_populate(
        key,
        tags=[article_tag(article_id)],
        ttl=get_settings().CACHE_TTL_COMMENTS,
        populate=populate,
    )
