from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.database import get_db
from article_comments.dependencies import ListParams, comment_rate_limit, get_queue
from article_comments.models import User
from article_comments.schemas import CommentAccepted, CommentCreate, CommentPage
from article_comments.services import comment_service
from article_comments.work_queue import ModerationQueue

router = APIRouter(prefix="/api/v1/articles/{article_id}/comments", tags=["comments"])


@router.post("", status_code=202, response_model=CommentAccepted)
async def submit_comment(
    article_id: int,
    data: CommentCreate,
    user: User = Depends(comment_rate_limit),
    db: AsyncSession = Depends(get_db),
    queue: ModerationQueue = Depends(get_queue),
):
    comment_id = await comment_service.submit_comment(db, queue, article_id, user.id, data.content)
    if comment_id is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return CommentAccepted(comment_id=comment_id)


@router.get("", response_model=CommentPage)
async def list_comments(
    article_id: int,
    params: ListParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.list_comments(
        db, article_id, params.page, params.per_page, **params.filters
    )
