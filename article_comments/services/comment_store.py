"""
Comment persistence — the durable-store operations the moderation
pipeline is built on.

Status changes go exclusively through ``compare_and_set_status``: a
single conditional UPDATE guarded by the expected current status, so two
workers racing on the same comment produce exactly one transition without
any application-level lock.
"""
import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments.models import Comment, CommentStatus


class InvalidTransitionError(ValueError):
    pass


@dataclass(frozen=True)
class ListFilters:
    search: str | None = None
    from_date: date | None = None
    to_date: date | None = None

    def signature(self) -> str:
        """Collision-free digest of the filter values, used in cache keys."""
        canonical = json.dumps(asdict(self), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def apply_date_bounds(query, column, from_date: date | None, to_date: date | None):
    """Restrict *column* to the inclusive calendar-day range [from_date, to_date]."""
    if from_date is not None:
        query = query.where(column >= _day_start(from_date))
    if to_date is not None:
        query = query.where(column < _day_start(to_date + timedelta(days=1)))
    return query


async def find_by_id(db: AsyncSession, comment_id: str) -> Comment | None:
    result = await db.execute(select(Comment).where(Comment.id == comment_id))
    return result.scalar_one_or_none()


async def insert(db: AsyncSession, comment: Comment) -> Comment:
    db.add(comment)
    await db.flush()
    return comment


async def compare_and_set_status(
    db: AsyncSession,
    comment_id: str,
    expected: CommentStatus,
    new: CommentStatus,
) -> bool:
    """
    Atomically move *comment_id* from *expected* to *new*.

    Returns True when this call performed the transition, False when the
    row was missing or no longer had the expected status.
    """
    if not expected.can_transition_to(new):
        raise InvalidTransitionError(f"{expected.value} -> {new.value} is not allowed")

    stmt = (
        update(Comment)
        .where(Comment.id == comment_id, Comment.status == expected)
        .values(status=new, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def query_page(
    db: AsyncSession,
    article_id: int,
    filters: ListFilters,
    page: int,
    per_page: int,
) -> tuple[list[Comment], int]:
    """Published comments for *article_id* matching *filters*, newest first."""
    base = select(Comment).where(
        Comment.article_id == article_id,
        Comment.status == CommentStatus.PUBLISHED,
    )
    if filters.search:
        base = base.where(
            func.lower(Comment.content).contains(filters.search.lower(), autoescape=True)
        )
    base = apply_date_bounds(base, Comment.created_at, filters.from_date, filters.to_date)

    total: int = (
        await db.execute(select(func.count()).select_from(base.subquery()))
    ).scalar_one()

    rows_q = (
        base.order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    rows = (await db.execute(rows_q)).scalars().all()
    return list(rows), total


async def count_by_status(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(Comment.status, func.count()).group_by(Comment.status)
    )
    counts = {status.value: 0 for status in CommentStatus}
    for status, count in result.all():
        counts[CommentStatus(status).value] = count
    return counts
