import pytest
from httpx import AsyncClient

from article_comments.models import Article, CommentStatus, User
from article_comments.work_queue import InMemoryModerationQueue, ModerationJob


@pytest.mark.asyncio
async def test_metrics_report_moderation_backlog(
    async_client: AsyncClient, article: Article, user: User, make_comment,
    moderation_queue: InMemoryModerationQueue
):
    await make_comment(article.id, user.id, "waiting", CommentStatus.PENDING)
    await make_comment(article.id, user.id, "shown", CommentStatus.PUBLISHED)
    await make_comment(article.id, user.id, "shown too", CommentStatus.PUBLISHED)
    await moderation_queue.dead_letter(ModerationJob(comment_id="lost"))

    resp = await async_client.get("/api/v1/metrics")
    assert resp.status_code == 200
    data = resp.json()

    assert data["total_articles"] == 1
    assert data["comments_by_status"] == {"pending": 1, "published": 2, "rejected": 0}
    assert data["queue_info"]["dead_lettered"] == 1
    assert data["cache_info"]["backend"] == "MemoryCacheBackend"
