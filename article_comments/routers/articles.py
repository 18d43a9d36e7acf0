from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.auth import get_current_user
from article_comments.database import get_db
from article_comments.dependencies import ListParams
from article_comments.models import User
from article_comments.schemas import ArticleCreate, ArticlePage, ArticleResponse
from article_comments.services import article_service

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])


@router.get("", response_model=ArticlePage)
async def list_articles(
    params: ListParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.list_articles(
        db, params.page, params.per_page, **params.filters
    )


@router.get("/{article_id}", response_model=ArticleResponse)
async def get_article(article_id: int, db: AsyncSession = Depends(get_db)):
    article = await article_service.get_article(db, article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return article


@router.post("", status_code=201, response_model=ArticleResponse)
async def create_article(
    data: ArticleCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.create_article(db, data, user.id)
