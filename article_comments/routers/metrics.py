from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.cache import cache
from article_comments.database import get_db
from article_comments.dependencies import get_queue
from article_comments.models import Article
from article_comments.schemas import MetricsResponse
from article_comments.services import comment_store
from article_comments.work_queue import ModerationQueue

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
async def get_metrics(
    db: AsyncSession = Depends(get_db),
    queue: ModerationQueue = Depends(get_queue),
):
    total_articles = (await db.execute(select(func.count()).select_from(Article))).scalar_one()

    # A growing "pending" count alongside dead-lettered jobs means comments
    # stuck in moderation that need an operator.
    return MetricsResponse(
        total_articles=total_articles,
        comments_by_status=await comment_store.count_by_status(db),
        cache_info=cache.stats,
        queue_info=await queue.stats(),
    )
