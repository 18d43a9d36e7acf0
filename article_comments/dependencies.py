from datetime import date

from fastapi import Depends, HTTPException, Query, Request, status

from article_comments.auth import get_current_user
from article_comments.cache import cache
from article_comments.config import get_settings, settings
from article_comments.models import User
from article_comments.work_queue import ModerationQueue


class ListParams:
    """
    Reusable FastAPI dependency that parses the shared list query string:
    ``search``, ``from``, ``to``, ``page`` and ``per_page``.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    per_page:
        Items per page, clamped to ``settings.MAX_PAGE_SIZE`` regardless
        of the value supplied by the caller.
    search:
        Optional case-insensitive substring filter.
    from_date / to_date:
        Optional inclusive creation-date bounds (``YYYY-MM-DD``).
    """

    def __init__(
        self,
        search: str | None = Query(None, description="Case-insensitive substring filter."),
        from_date: date | None = Query(None, alias="from", description="Created on or after."),
        to_date: date | None = Query(None, alias="to", description="Created on or before."),
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        per_page: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
    ) -> None:
        self.search = search
        self.from_date = from_date
        self.to_date = to_date
        self.page = page
        self.per_page = min(per_page, settings.MAX_PAGE_SIZE)

    @property
    def filters(self) -> dict:
        return {"search": self.search, "from_date": self.from_date, "to_date": self.to_date}


def get_queue(request: Request) -> ModerationQueue:
    """The moderation queue opened by the application lifespan."""
    return request.app.state.queue


async def comment_rate_limit(user: User = Depends(get_current_user)) -> User:
    """
    Fixed one-minute window per user for comment submission.

    Counting happens in the shared cache backend; when no backend is
    available the limit is not enforced.
    """
    limit = get_settings().COMMENT_RATE_LIMIT_PER_MINUTE
    hits = await cache.incr(f"ratelimit:comment-post:{user.id}", ttl=60)
    if hits is not None and hits > limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many comments, slow down",
            headers={"Retry-After": "60"},
        )
    return user
