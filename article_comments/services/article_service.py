"""
Article service — business logic for the Article aggregate.

Design notes
------------
- List reads go through the tagged cache.  Cache keys encode every
  dimension that affects the result (page, page size, filter digest), and
  all list entries share the ``articles`` tag, which ``create_article``
  flushes so a new article is visible on the next read.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.cache import cache
from article_comments.config import get_settings
from article_comments.models import Article
from article_comments.schemas import ArticleCreate, ArticlePage, ArticleResponse, PageMeta
from article_comments.services.comment_service import last_page
from article_comments.services.comment_store import ListFilters, apply_date_bounds

ARTICLES_TAG = "articles"


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _article_to_dict(article: Article) -> dict:
    return ArticleResponse.model_validate(article).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_articles(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 10,
    search: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
) -> dict:
    """
    Return a page of articles, newest first, optionally filtered by a
    case-insensitive search over title and body and by creation date.

    Two SQL statements are issued on a cache miss: a COUNT and a
    LIMIT/OFFSET SELECT sharing the same filters.
    """
    filters = ListFilters(search=search or None, from_date=from_date, to_date=to_date)
    cache_key = f"articles:list:{page}:{per_page}:{filters.signature()}"

    async def populate() -> dict:
        q = select(Article)
        if filters.search:
            needle = filters.search.lower()
            q = q.where(
                or_(
                    func.lower(Article.title).contains(needle, autoescape=True),
                    func.lower(Article.body).contains(needle, autoescape=True),
                )
            )
        q = apply_date_bounds(q, Article.created_at, filters.from_date, filters.to_date)

        total: int = (
            await db.execute(select(func.count()).select_from(q.subquery()))
        ).scalar_one()
        result = await db.execute(
            q.order_by(Article.created_at.desc(), Article.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return ArticlePage(
            items=[ArticleResponse.model_validate(a) for a in result.scalars().all()],
            meta=PageMeta(
                current_page=page,
                last_page=last_page(total, per_page),
                per_page=per_page,
                total=total,
            ),
        ).model_dump(mode="json")

    return await cache.get_or_populate(
        cache_key,
        tags=[ARTICLES_TAG],
        ttl=get_settings().CACHE_TTL_ARTICLES,
        populate=populate,
    )


async def get_article(db: AsyncSession, article_id: int) -> dict | None:
    """Return the article as a dict, or None when it does not exist."""
    result = await db.execute(select(Article).where(Article.id == article_id))
    article = result.scalar_one_or_none()
    if article is None:
        return None
    return _article_to_dict(article)


async def create_article(db: AsyncSession, data: ArticleCreate, user_id: int) -> dict:
    article = Article(title=data.title, body=data.body, user_id=user_id)
    db.add(article)
    await db.flush()

    await cache.flush_tag(ARTICLES_TAG)
    return _article_to_dict(article)
